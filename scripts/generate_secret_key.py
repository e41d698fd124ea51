#!/usr/bin/env python3
"""
Generate a signing key for MailTrack bearer tokens.
Run this and copy the output to your .env file.
"""

import secrets


def generate_secret_key(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


if __name__ == "__main__":
    print("=" * 60)
    print("MailTrack JWT Secret Key Generator")
    print("=" * 60)
    print()
    print(f"JWT_SECRET_KEY={generate_secret_key()}")
    print("TOKEN_EXPIRY_HOURS=24")
    print()
    print("=" * 60)
    print("Copy the lines above to your .env file")
    print("=" * 60)
