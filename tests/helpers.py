import asyncio
import uuid

from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.db.models  # noqa
from app.core.errors import StorageError
from app.core.provisioning.identity import IdentityProviderError
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from app.db.base import Base


def make_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite/aiosqlite transaction handling breaks SAVEPOINT; take it over.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def run(scenario):
    """Runs ``scenario(session_factory)`` against a fresh in-memory schema."""
    async def main():
        engine = make_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
        try:
            return await scenario(factory)
        finally:
            await engine.dispose()

    return asyncio.run(main())


async def create_account(db, username: str = "alice", email: str | None = None) -> Workspace:
    user = User(id=uuid.uuid4(), email=email or f"{username}@example.com", username=username, first_name=username.title())
    db.add(user)
    await db.flush()
    workspace = Workspace(user_id=user.id, name=f"{user.first_name}'s Workspace")
    db.add(workspace)
    await db.flush()
    return workspace


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_puts = False
        self.fail_deletes: set[str] = set()
        self.deleted: list[str] = []

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_puts:
            raise StorageError("Could not store file")
        self.objects[key] = data
        return key

    async def delete(self, key: str) -> None:
        if key in self.fail_deletes:
            raise StorageError("Could not delete stored file")
        self.objects.pop(key, None)
        self.deleted.append(key)


class FakeNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send_code(self, email, code, expires_at) -> None:
        self.sent.append((email, code))


class FakeIdentityClient:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[uuid.UUID, str]] = []

    async def update_username(self, user_id: uuid.UUID, username: str) -> None:
        self.calls.append((user_id, username))
        if self.fail:
            raise IdentityProviderError("identity provider unavailable")
