#!/usr/bin/env python3
"""
Create a user for the Gatherly events service and print an access token.

Tokens normally come from the auth service; this script is for operators
seeding organizers and admins in development.
"""

import asyncio
import sys
import os

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from gatherly_events.database import init_database, close_database, get_db_session
from gatherly_events.models.user import User, UserRole
from gatherly_events.utils.auth import create_user_token


async def create_user():
    """Create a user interactively, or issue a token for an existing one."""
    print("Gatherly Events - User Creation")
    print("=" * 40)

    email = input("Enter email: ").strip().lower()
    if not email:
        print("Email is required!")
        return

    roles = ", ".join(role.value for role in UserRole)
    role_name = input(f"Enter role ({roles}) [organizer]: ").strip().lower() or "organizer"
    try:
        role = UserRole(role_name)
    except ValueError:
        print(f"Unknown role: {role_name}")
        return

    await init_database()
    try:
        async with get_db_session() as db:
            result = await db.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

            if user:
                print(f"User {email} already exists with role {user.role.value}")
                if user.role != role and input(f"Change role to {role.value}? (y/N): ").strip().lower() == "y":
                    user.role = role
            else:
                full_name = input("Enter full name: ").strip()
                if not full_name:
                    print("Full name is required!")
                    return
                user = User(email=email, full_name=full_name, role=role, is_active=True)
                db.add(user)

            await db.flush()
            token = create_user_token(user)

        print(f"\nUser ready: {user.email} ({user.role.value})")
        print(f"   ID: {user.id}")
        print(f"   Access token (expires in {token.expires_in}s):")
        print(f"   {token.access_token}")
    finally:
        await close_database()


async def list_users():
    """List organizers and admins."""
    await init_database()
    try:
        async with get_db_session() as db:
            result = await db.execute(
                select(User)
                .where(User.role.in_([UserRole.ORGANIZER, UserRole.ADMIN]))
                .order_by(User.email)
            )
            users = result.scalars().all()

        if not users:
            print("No organizers or admins found.")
        for user in users:
            status = "Active" if user.is_active else "Inactive"
            print(f"{user.email}  {user.role.value}  {status}  {user.id}")
    finally:
        await close_database()


async def main():
    """Main function."""
    if len(sys.argv) > 1 and sys.argv[1] == "list":
        await list_users()
    else:
        await create_user()


if __name__ == "__main__":
    print("Usage:")
    print("  python miscellaneous/create_user.py        # Create a user and print a token")
    print("  python miscellaneous/create_user.py list   # List organizers and admins")
    print()

    asyncio.run(main())
