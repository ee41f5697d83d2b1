"""
Script to create a local user (optionally a super-admin and an organisation
they own) and print an access token for manual testing.
"""

import argparse
import asyncio
from typing import Optional

from sqlmodel import select

from engage_server.core.auth import create_jwt
from engage_server.core.database import async_session_factory, init_db
from engage_server.models.user import User
from engage_server.services.membership_store import get_membership_store


async def create_user(email: str, super_admin: bool, org_slug: Optional[str]):
    await init_db()

    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if not user:
            user = User(email=email, is_super_admin=super_admin)
            session.add(user)
            await session.commit()
            print(f"Created user: {email}")
        else:
            print(f"User {email} already exists.")

    if org_slug:
        store = get_membership_store()
        org, _ = await store.create_organisation(org_slug, org_slug, user.id)
        print(f"Created organisation {org.slug} ({org.id}) owned by {email}")

    print(f"Access token: {create_jwt(user.id)}")


def main():
    parser = argparse.ArgumentParser(description="Create a local Engage Hub user")
    parser.add_argument("email", help="User email")
    parser.add_argument("--super-admin", action="store_true", help="Grant the global super-admin flag")
    parser.add_argument("--org", dest="org_slug", default=None, help="Also create an organisation with this slug")
    args = parser.parse_args()

    asyncio.run(create_user(args.email, args.super_admin, args.org_slug))


if __name__ == "__main__":
    main()
