"""Create a user from the command line, optionally with an initial API token."""

import argparse
import sys
from typing import Optional, Sequence

from docshare import auth, credentials
from docshare.database import SessionLocal, init_db
from docshare.errors import DocShareError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docshare-create-user", description=__doc__)
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True, help="at least 6 characters")
    parser.add_argument("--token-name", default="", help="also issue an API token with this name")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    init_db()
    db = SessionLocal()
    try:
        user = auth.register_user(db, args.username, args.email, args.password)
        print("User created")
        print("====================")
        print(f"User ID:  {user.id}")
        print(f"Username: {user.username}")
        print(f"Email:    {user.email}")

        if args.token_name:
            issued = credentials.issue_token(db, user.id, args.token_name)
            print(f"API token ({issued.name}): {issued.token}")
        print("====================")
    except DocShareError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
