#!/usr/bin/env python3
"""
Create or maintain an admin account for the Cancha Leconte admin panel.

Prompts for the password unless --generate-password is given, in which case
a strong random password is generated and printed once. --reset-password
replaces the password of an existing account and signs out all of its
sessions; --deactivate and --activate toggle login access.

Usage:
    python scripts/create_admin_user.py santiago --name "Santiago" --email santi@example.com
    python scripts/create_admin_user.py agustin --name "Agustín" --generate-password
    python scripts/create_admin_user.py santiago --reset-password --generate-password
    python scripts/create_admin_user.py agustin --deactivate
"""

import argparse
import asyncio
import getpass
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from cancha.database import db
from cancha.database.models import AdminRole
from cancha.services import password_service, user_service
from cancha.utils.errors import HashingError


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create or maintain a Cancha Leconte admin user")
    parser.add_argument("username", help="Username (or email when maintaining an account)")
    parser.add_argument("--name", help="Display name (required when creating)")
    parser.add_argument("--email", default=None)
    parser.add_argument(
        "--role", default=AdminRole.ADMIN.value, choices=[role.value for role in AdminRole]
    )
    parser.add_argument(
        "--generate-password",
        action="store_true",
        help="Generate a strong password instead of prompting for one",
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "--reset-password",
        action="store_true",
        help="Set a new password for an existing admin and end all of their sessions",
    )
    action.add_argument("--deactivate", action="store_true", help="Block login and end all sessions")
    action.add_argument("--activate", action="store_true", help="Allow login again")

    args = parser.parse_args(argv)
    creating = not (args.reset_password or args.deactivate or args.activate)
    if creating and not args.name:
        parser.error("--name is required when creating an admin")
    return args


def read_password(generate: bool) -> str:
    if generate:
        return password_service.generate_secure_password()
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise SystemExit("❌ Passwords do not match")
    return password


async def _find_admin_id(session, identifier: str) -> int:
    user = await user_service.get_admin_for_login(session, identifier)
    if user is None:
        raise SystemExit(f"❌ Admin user {identifier!r} not found")
    return user["id"]


async def _create(session, args, password: str) -> None:
    user_id = await user_service.create_admin_user(
        session,
        username=args.username,
        password=password,
        name=args.name,
        email=args.email,
        role=args.role,
    )
    print(f"\n✅ Created admin {args.username!r} (user #{user_id})")


async def _reset_password(session, args, password: str) -> None:
    user_id = await _find_admin_id(session, args.username)
    await user_service.update_admin_password(session, user_id, password)
    print(f"\n✅ Password reset for {args.username!r}; all sessions were signed out")


async def _set_active(session, args) -> None:
    user_id = await _find_admin_id(session, args.username)
    await user_service.set_admin_active(session, user_id, args.activate)
    print(f"\n✅ {args.username!r} {'activated' if args.activate else 'deactivated'}")


async def main(argv=None):
    args = parse_args(argv)
    toggling = args.deactivate or args.activate
    password = None if toggling else read_password(args.generate_password)

    await db.init_database()
    try:
        async with db.AsyncSessionLocal() as session:
            if toggling:
                await _set_active(session, args)
            elif args.reset_password:
                await _reset_password(session, args, password)
            else:
                await _create(session, args, password)
    except (ValueError, HashingError) as e:
        raise SystemExit(f"❌ {e}")
    finally:
        await db.close_database()

    if password and args.generate_password:
        print(f"🔑 Password: {password}")
        print("💡 Store it now; it will not be shown again.\n")


if __name__ == "__main__":
    asyncio.run(main())
