"""Operator commands for the library database.

Admin roles are assigned out of band, never through the public API:

    python -m library_api.manage promote admin@example.com
    python -m library_api.manage demote admin@example.com
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from .crud import set_user_role
from .models import Role
from .storage import close_db_connection, get_database, init_db

logger = logging.getLogger(__name__)


async def change_role(email: str, role: Role, url: str = None, db_name: str = None) -> bool:
    client = await init_db(url)
    try:
        db = get_database(client, db_name)
        user = await set_user_role(db, email.strip().lower(), role)
    finally:
        await close_db_connection(client)

    if user is None:
        logger.error(f"No user found with email: {email}")
        return False
    logger.info(f"User {user.email} now has role {user.role}")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Library API operator commands.")
    parser.add_argument("--url", default=None, help="MongoDB URL (default: $MONGODB_URL)")
    parser.add_argument("--db", default=None, help="Database name (default: $MONGODB_DB)")
    commands = parser.add_subparsers(dest="command", required=True)

    promote = commands.add_parser("promote", help="Give a user the admin role")
    promote.add_argument("email")
    promote.set_defaults(role=Role.ADMIN)

    demote = commands.add_parser("demote", help="Reset a user to the regular role")
    demote.add_argument("email")
    demote.set_defaults(role=Role.USER)
    return parser


def main(argv=None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)
    url = args.url or os.getenv("MONGODB_URL")
    db_name = args.db or os.getenv("MONGODB_DB")
    ok = asyncio.run(change_role(args.email, args.role, url, db_name))
    return 0 if ok else 2


if __name__ == "__main__":
    sys.exit(main())
