#!/usr/bin/env python3
"""
Create a MailTrack account directly in the database.

Used to bootstrap the first administrator, who can then create every other
account through the API:

    python scripts/create_user.py admin "System Admin" --role admin
"""

import argparse
import getpass
import sys

from mailtrack.database import create_schema, init_engine
from mailtrack.directory import DirectoryService
from mailtrack.errors import MailTrackError
from mailtrack.logging_config import setup_logging
from mailtrack.models import Role


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a MailTrack user")
    parser.add_argument("username")
    parser.add_argument("full_name")
    parser.add_argument("--role", choices=[r.value for r in Role], default=Role.ADMIN.value)
    parser.add_argument("--department-id", help="required for managers")
    parser.add_argument("--section-id", help="required for heads")
    parser.add_argument("--password", help="prompted for when omitted")
    args = parser.parse_args(argv)

    setup_logging()
    password = args.password or getpass.getpass("Password: ")

    engine = init_engine()
    create_schema(engine)
    directory = DirectoryService(engine)

    try:
        user = directory.create_user(
            None, args.username, password, args.full_name, Role(args.role),
            department_id=args.department_id, section_id=args.section_id,
        )
    except MailTrackError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        for detail in getattr(e, "errors", []):
            print(f"  - {detail}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"Created {user.role.value} '{user.username}' with id {user.id}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
