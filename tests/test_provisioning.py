import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.auth.service import Caller
from app.core.errors import Conflict, TransactionFailed, ValidationFailed
from app.core.links.models import Link
from app.core.permissions.models import Permission, ROLE_OWNER
from app.core.provisioning import service
from app.core.users.models import User
from app.core.workspaces.models import Workspace
from helpers import FakeIdentityClient, create_account, run


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(service.settings, "PROVISION_BACKOFF_SECONDS", 0)


def _caller(email="jordan@example.com"):
    return Caller(user_id=uuid.uuid4(), email=email, first_name="Jordan", last_name="Lee")


async def _counts(factory):
    async with factory() as db:
        counts = {}
        for model in (User, Workspace, Link, Permission):
            counts[model.__tablename__] = (await db.execute(select(func.count()).select_from(model))).scalar_one()
        return counts


def test_sanitize_username():
    assert service.sanitize_username("Test-USER_123!") == "Test-USER_123"
    assert service.sanitize_username("  jo.rdan  ") == "jordan"
    assert len(service.sanitize_username("x" * 50)) == service.USERNAME_MAX_LENGTH
    with pytest.raises(ValidationFailed):
        service.sanitize_username("a!b")


def test_first_link_slug():
    assert service.first_link_slug("Test-USER_123") == "test-user_123-first-link"


def test_provision_creates_account_graph():
    async def scenario(factory):
        caller = _caller()
        identity = FakeIdentityClient()
        result = await service.provision_account(caller, "Jordan!", factory, identity)

        assert result.success is True
        assert result.warnings == []
        account = result.data
        assert account.created is True
        assert account.username == "Jordan"
        assert account.link_slug == "jordan-first-link"
        assert identity.calls == [(caller.user_id, "Jordan")]

        async with factory() as db:
            user = await db.get(User, caller.user_id)
            assert (user.email, user.username, user.first_name) == ("jordan@example.com", "Jordan", "Jordan")
            workspace = await db.get(Workspace, account.workspace_id)
            assert workspace.user_id == caller.user_id
            assert workspace.name == "Jordan's Workspace"
            link = await db.get(Link, account.link_id)
            assert (link.is_public, link.is_active, link.name) == (True, True, "Jordan's First Link")
            owner = (await db.execute(select(Permission).where(Permission.link_id == link.id))).scalar_one()
            assert (owner.email, owner.role, owner.is_verified) == ("jordan@example.com", ROLE_OWNER, True)

    run(scenario)


def test_provision_is_idempotent():
    async def scenario(factory):
        caller = _caller()
        identity = FakeIdentityClient()
        first = await service.provision_account(caller, "jordan", factory, identity)
        before = await _counts(factory)

        second = await service.provision_account(caller, "someone-else", factory, identity)
        assert second.success is True
        assert second.data.created is False
        assert second.data.workspace_id == first.data.workspace_id
        assert second.data.username == "jordan"
        assert await _counts(factory) == before
        assert len(identity.calls) == 1

    run(scenario)


def test_failure_midway_leaves_nothing_behind(monkeypatch):
    async def broken(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(service, "_create_owner_permission", broken)

    async def scenario(factory):
        identity = FakeIdentityClient()
        with pytest.raises(TransactionFailed):
            await service.provision_account(_caller(), "jordan", factory, identity)
        assert await _counts(factory) == {"users": 0, "workspaces": 0, "links": 0, "permissions": 0}
        assert identity.calls == []

    run(scenario)


def test_transient_failure_is_retried(monkeypatch):
    original = service._create_owner_permission
    attempts = []

    async def flaky(db, link, email):
        attempts.append(link.slug)
        if len(attempts) == 1:
            raise SQLAlchemyError("deadlock detected")
        return await original(db, link, email)

    monkeypatch.setattr(service, "_create_owner_permission", flaky)

    async def scenario(factory):
        result = await service.provision_account(_caller(), "jordan", factory)
        assert result.data.created is True
        assert len(attempts) == 2
        assert await _counts(factory) == {"users": 1, "workspaces": 1, "links": 1, "permissions": 1}

    run(scenario)


def test_identity_sync_failure_is_a_warning():
    async def scenario(factory):
        result = await service.provision_account(_caller(), "jordan", factory, FakeIdentityClient(fail=True))
        assert result.success is True
        assert result.data.created is True
        assert [w.code for w in result.warnings] == ["external_sync_warning"]
        assert (await _counts(factory))["workspaces"] == 1

    run(scenario)


def test_unexpected_sync_error_is_still_a_warning():
    class BrokenClient:
        async def update_username(self, user_id, username):
            raise RuntimeError("malformed provider url")

    async def scenario(factory):
        result = await service.provision_account(_caller(), "jordan", factory, BrokenClient())
        assert result.success is True
        assert [w.code for w in result.warnings] == ["external_sync_warning"]
        assert (await _counts(factory))["permissions"] == 1

    run(scenario)


def test_username_taken_case_insensitively():
    async def scenario(factory):
        async with factory() as db, db.begin():
            await create_account(db, "jordan")

        with pytest.raises(Conflict):
            await service.provision_account(_caller("other@example.com"), "JORDAN", factory)
        assert (await _counts(factory))["workspaces"] == 1

        async with factory() as db:
            assert await service.is_username_available(db, "Jordan") is False
            assert await service.is_username_available(db, "casey") is True

    run(scenario)


def test_email_already_registered():
    async def scenario(factory):
        async with factory() as db, db.begin():
            await create_account(db, "jordan", "shared@example.com")

        with pytest.raises(Conflict):
            await service.provision_account(_caller("shared@example.com"), "casey", factory)

    run(scenario)
