"""
Administrative CLI for the Clinic EHR: schema setup and user provisioning.
"""

import argparse
import getpass
import secrets
import sys

from ehr.config import ROLES
from ehr.database import init_engine, create_schema
from ehr.rbac import create_user


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ehr-admin", description=__doc__.strip())
    parser.add_argument("--db", help="Database URL (defaults to $DB_URI)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    create = sub.add_parser("create-user", help="Provision a doctor, nurse or admin")
    create.add_argument("--username", required=True)
    create.add_argument("--role", required=True, choices=ROLES)
    create.add_argument("--password", help="Prompted for when omitted")

    sub.add_parser("generate-secret", help="Print a JWT_SECRET_KEY line for .env")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "generate-secret":
        print(f"JWT_SECRET_KEY={secrets.token_hex(32)}")
        return 0

    engine = init_engine(args.db)
    create_schema(engine)
    if args.command == "init-db":
        print("[init] Tables are ready.")
        return 0

    password = args.password
    if not password:
        try:
            password = getpass.getpass("Password: ")
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            return 1

    try:
        user_id = create_user(engine, args.username, password, args.role)
    except ValueError as e:
        print("[ERROR] Could not create user.", file=sys.stderr)
        print("Details:", e, file=sys.stderr)
        return 1

    print(f"[auth] Created {args.role} '{args.username}' (id={user_id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
