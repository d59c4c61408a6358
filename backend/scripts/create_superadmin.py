#!/usr/bin/env python3
"""
Bootstrap the first superadmin account. Superadmins cannot register through
the API; they approve admin registrations.

Usage:
    python scripts/create_superadmin.py
"""

import asyncio
import getpass
import logging
import sys

from pymongo.errors import DuplicateKeyError

from engagehub.services.db_service import db_service
from engagehub.services.security_service import SecurityService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


async def create_superadmin(name: str, email: str, password: str) -> str:
    await db_service.create_indexes()
    return await db_service.create_superadmin({
        "name": name,
        "email_id": email,
        "password": SecurityService.hash_password(password),
    })


def main() -> int:
    name = input("Name: ").strip()
    email = input("Email: ").strip()
    password = getpass.getpass("Password: ")
    if not name or "@" not in email:
        logger.error("A name and a valid email are required.")
        return 1
    if len(password) < MIN_PASSWORD_LENGTH:
        logger.error(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return 1
    if password != getpass.getpass("Confirm password: "):
        logger.error("Passwords do not match.")
        return 1

    try:
        superadmin_id = asyncio.run(create_superadmin(name, email, password))
    except DuplicateKeyError:
        logger.error(f"A superadmin with email {email} already exists.")
        return 1
    finally:
        if db_service.client:
            db_service.client.close()

    logger.info(f"Superadmin created with id {superadmin_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
