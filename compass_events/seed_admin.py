"""seed_admin.py — Create the first administrator account.

Usage:
    compass-events-seed-admin --email admin@example.com --password AdminPassword123
    compass-events-seed-admin --in-memory      # dry run against a throwaway store
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from compass_events.app import AppContext
from compass_events.config import ROLE_ADMIN
from compass_events.errors import DomainError
from compass_events.validation import validate_email, validate_password

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed an administrator user.")
    parser.add_argument("--name", default="Admin User")
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL", "admin@example.com"))
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD", ""),
        help="Defaults to $ADMIN_PASSWORD.",
    )
    parser.add_argument("--phone", default="0000000000")
    parser.add_argument("--in-memory", action="store_true", help="Use a process-local store (no AWS calls).")
    return parser.parse_args(argv)


def seed_admin(ctx: AppContext, *, name: str, email: str, password: str, phone: str) -> dict:
    """Admins are created active; no verification email is sent."""
    return ctx.users.create(
        name=name,
        email=validate_email(email),
        password=validate_password(password),
        phone=phone,
        role=ROLE_ADMIN,
        is_active=True,
    )


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = _parse_args(argv)
    if not args.password:
        logger.error("No password given (use --password or ADMIN_PASSWORD)")
        return 2

    ctx = AppContext.in_memory() if args.in_memory else AppContext.from_env()
    try:
        user = seed_admin(ctx, name=args.name, email=args.email, password=args.password, phone=args.phone)
    except DomainError as exc:
        logger.error("Seeding admin failed: %s", exc.message)
        return 1
    finally:
        ctx.close()

    logger.info("Admin user seeded with email %s (id %s)", user["email"], user["id"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
