import asyncio
import os
import uuid

from app.core.auth.service import Caller
from app.core.provisioning.service import provision_account
from app.db.session import AsyncSessionLocal
from app.logging_config import configure_logging


async def seed() -> None:
    user_id = uuid.UUID(os.getenv("SEED_USER_ID", "00000000-0000-4000-8000-000000000001"))
    email = os.getenv("SEED_EMAIL", "demo@example.com")
    username = os.getenv("SEED_USERNAME", "demo-user")

    caller = Caller(user_id=user_id, email=email.lower(), first_name="Demo", last_name="User")
    result = await provision_account(caller, username, AsyncSessionLocal)
    account = result.data

    if account.created:
        print(f"Provisioned {account.username}: workspace {account.workspace_id}, link /{account.username}/{account.link_slug}")
    else:
        print(f"Already provisioned: {account.username} ({account.workspace_id})")
    for warning in result.warnings:
        print(f"warning: {warning.message}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(seed())
