"""Operator commands: create tables, create/verify users, generate a SECRET_KEY, clear the cache.

Usage:
    python manage.py init-db
    python manage.py create-user "Jane Doe" jane@example.com secret123 --verified
    python manage.py verify-user jane@example.com
    python manage.py generate-key
    python manage.py clear-cache
"""
import argparse
import logging
import secrets
import sys

import config
from auth import get_user_by_email
from cache import USER_INDEX_PREFIX, DatabaseCache
from database import Base, SessionLocal, engine
from logging_config import setup_logging
from media import media_store
from models import utcnow
from repositories import UserRepository

logger = logging.getLogger("manage")


def init_db(args):
    """Initialize the database by creating all tables defined in the models"""
    logger.info("Creating tables on the database...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully!")


def create_user(args):
    db = SessionLocal()
    try:
        if get_user_by_email(db, args.email):
            logger.warning(f"User '{args.email}' already exists")
            return 1
        user = UserRepository(db, media_store).create(args.name, args.email, args.password, commit=False)
        if args.verified:
            user.email_verified_at = utcnow()
        db.commit()
        DatabaseCache(db).delete_by_prefix(USER_INDEX_PREFIX)
        logger.info(f"User created successfully: {user.id} / {user.email}")
    finally:
        db.close()
    return 0


def verify_user(args):
    """Mark a user's email as verified so they can log in"""
    db = SessionLocal()
    try:
        user = get_user_by_email(db, args.email)
        if user is None:
            logger.error(f"No user with email '{args.email}'")
            return 1
        if user.email_verified_at is None:
            user.email_verified_at = utcnow()
            db.commit()
        logger.info(f"User '{args.email}' verified")
    finally:
        db.close()
    return 0


def generate_key(args):
    """Print a secure 64-character secret key."""
    print(secrets.token_hex(32))
    return 0


def clear_cache(args):
    db = SessionLocal()
    try:
        removed = DatabaseCache(db).flush()
        logger.info(f"Removed {removed} cache entries")
    finally:
        db.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manage.py", description="Blog API management commands")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="create all tables").set_defaults(func=init_db)

    create = commands.add_parser("create-user", help="create a user")
    create.add_argument("name")
    create.add_argument("email")
    create.add_argument("password")
    create.add_argument("--verified", action="store_true", help="mark the email as verified")
    create.set_defaults(func=create_user)

    verify = commands.add_parser("verify-user", help="mark a user's email as verified")
    verify.add_argument("email")
    verify.set_defaults(func=verify_user)

    commands.add_parser("generate-key", help="print a new SECRET_KEY").set_defaults(func=generate_key)
    commands.add_parser("clear-cache", help="delete every cache entry").set_defaults(func=clear_cache)
    return parser


def main(argv=None) -> int:
    setup_logging(config.LOG_LEVEL, config.LOG_FILE)
    args = build_parser().parse_args(argv)
    return args.func(args) or 0


if __name__ == "__main__":
    sys.exit(main())
