"""
JWT authentication helpers and the decorator protecting API endpoints.

The decorator resolves the bearer token to a Principal and hands it to the
view as its first positional argument; nothing is attached to the request.
"""

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import current_app, request

from mailtrack.config import SECRET_KEY, TOKEN_ALGORITHM, TOKEN_EXPIRY_HOURS
from mailtrack.errors import AuthenticationError, Unauthenticated
from mailtrack.models import Principal
from mailtrack.rbac import load_principal

logger = logging.getLogger(__name__)


def generate_token(principal: Principal, secret: str = SECRET_KEY,
                   expiry_hours: int = TOKEN_EXPIRY_HOURS) -> str:
    """Generate a JWT token for an authenticated user."""
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": principal.id,
        "role": principal.role.value,
        "iat": now,
        "exp": now + timedelta(hours=expiry_hours),
    }
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def verify_token(token: str, secret: str = SECRET_KEY) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def bearer_token(header: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        raise Unauthenticated("Access token required")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid authorization header format")
    return parts[1]


def resolve_principal(engine, header: Optional[str], secret: str = SECRET_KEY) -> Principal:
    token = bearer_token(header)
    payload = verify_token(token, secret)
    if not payload or not payload.get("user_id"):
        raise AuthenticationError("Invalid or expired token")
    return load_principal(engine, str(payload["user_id"]))


def token_required(f):
    """Decorator that protects endpoints with JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        services = current_app.extensions["mailtrack"]
        principal = resolve_principal(
            services.engine,
            request.headers.get("Authorization"),
            current_app.config.get("JWT_SECRET_KEY", SECRET_KEY),
        )
        return f(principal, *args, **kwargs)

    return decorated
