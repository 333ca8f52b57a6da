from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import Conflict, NotFound, ValidationFailed
from app.core.links.schemas import LinkCreate
from app.core.links.service import create_link
from app.core.permissions import service
from app.core.permissions.models import Permission, ROLE_EDITOR, ROLE_OWNER, ROLE_UPLOADER
from app.db.base import utcnow
from helpers import FakeNotifier, create_account, run


async def _link(db, slug="client-docs", is_public=False):
    ws = await create_account(db)
    return await create_link(db, ws.id, LinkCreate(name="Client docs", slug=slug, is_public=is_public))


async def _rows_for(db, link):
    return (await db.execute(select(func.count()).select_from(Permission).where(Permission.link_id == link.id))).scalar_one()


def test_effective_role():
    assert Permission(role=ROLE_EDITOR, is_verified=False).effective_role == ROLE_UPLOADER
    assert Permission(role=ROLE_EDITOR, is_verified=True).effective_role == ROLE_EDITOR
    assert Permission(role=ROLE_UPLOADER, is_verified=False).effective_role == ROLE_UPLOADER
    assert service.has_role(Permission(role=ROLE_OWNER, is_verified=True), ROLE_EDITOR)
    assert not service.has_role(Permission(role=ROLE_EDITOR, is_verified=False), ROLE_EDITOR)


def test_one_permission_per_link_and_email():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            p = await service.create_permission(db, link.id, " Pat@Example.com ")
            assert (p.email, p.role, p.is_verified) == ("pat@example.com", ROLE_UPLOADER, False)
            with pytest.raises(Conflict):
                await service.create_permission(db, link.id, "pat@example.com", ROLE_EDITOR)
            with pytest.raises(ValidationFailed):
                await service.create_permission(db, link.id, "sam@example.com", "admin")
            # owner + pat
            assert await _rows_for(db, link) == 2

    run(scenario)


def test_promote_and_verify_editor():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            notifier = FakeNotifier()
            p = await service.create_permission(db, link.id, "pat@example.com")

            p = await service.promote_to_editor(db, p, notifier)
            assert p.role == ROLE_EDITOR
            assert p.effective_role == ROLE_UPLOADER
            [(email, code)] = notifier.sent
            assert email == "pat@example.com"
            assert len(code) == 6 and code.isdigit()
            assert p.verification_code_hash != code

            wrong = "000000" if code != "000000" else "111111"
            with pytest.raises(ValidationFailed):
                await service.verify_and_activate(db, p, wrong)
            assert p.is_verified is False

            p = await service.verify_and_activate(db, p, code)
            assert p.is_verified is True
            assert p.effective_role == ROLE_EDITOR
            assert p.verification_code_hash is None

            with pytest.raises(ValidationFailed):
                await service.verify_and_activate(db, p, code)

    run(scenario)


def test_expired_code_is_rejected():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            notifier = FakeNotifier()
            p = await service.create_permission(db, link.id, "pat@example.com")
            p = await service.promote_to_editor(db, p, notifier)
            p.verification_expires_at = utcnow() - timedelta(minutes=1)
            await db.flush()

            with pytest.raises(ValidationFailed):
                await service.verify_and_activate(db, p, notifier.sent[0][1])
            assert p.is_verified is False

    run(scenario)


def test_update_role_demotes_and_promotes():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            notifier = FakeNotifier()
            p = await service.create_permission(db, link.id, "pat@example.com")

            p = await service.update_role(db, p, ROLE_EDITOR, notifier)
            assert len(notifier.sent) == 1
            p = await service.update_role(db, p, ROLE_UPLOADER, notifier)
            assert (p.role, p.verification_code_hash) == (ROLE_UPLOADER, None)
            with pytest.raises(ValidationFailed):
                await service.update_role(db, p, ROLE_OWNER, notifier)

    run(scenario)


def test_owner_permission_is_protected():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            notifier = FakeNotifier()
            [owner] = await service.list_permissions(db, link.id)
            assert owner.role == ROLE_OWNER

            with pytest.raises(Conflict):
                await service.promote_to_editor(db, owner, notifier)
            with pytest.raises(Conflict):
                await service.update_role(db, owner, ROLE_UPLOADER, notifier)
            with pytest.raises(Conflict):
                await service.remove_permission(db, owner)
            assert notifier.sent == []

    run(scenario)


def test_remove_permission():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            p = await service.create_permission(db, link.id, "pat@example.com")
            await service.remove_permission(db, p)
            assert await service.get_permission_for_email(db, link.id, "pat@example.com") is None

    run(scenario)


def test_public_link_records_contributor_once():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db, is_public=True)
            first = await service.authorize_contribution(db, link, "Pat@Example.com")
            second = await service.authorize_contribution(db, link, "pat@example.com")
            assert first.id == second.id
            assert first.role == ROLE_UPLOADER
            assert first.last_activity_at is not None
            assert await _rows_for(db, link) == 2

    run(scenario)


def test_dedicated_link_requires_listed_email():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db, is_public=False)
            with pytest.raises(NotFound):
                await service.authorize_contribution(db, link, "stranger@example.com")
            assert await _rows_for(db, link) == 1

            await service.create_permission(db, link.id, "pat@example.com")
            p = await service.authorize_contribution(db, link, "PAT@example.com")
            assert p.email == "pat@example.com"

    run(scenario)


def test_permission_lookup_is_workspace_scoped():
    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db)
            stranger = await create_account(db, "bobby")
            p = await service.create_permission(db, link.id, "pat@example.com")
            assert (await service.require_permission(db, link.workspace_id, p.id)).id == p.id
            with pytest.raises(NotFound):
                await service.require_permission(db, stranger.id, p.id)

    run(scenario)


def test_lost_enrolment_race_rereads_the_winner(monkeypatch):
    real_lookup = service.get_permission_for_email
    calls = []

    async def stale_first_lookup(db, link_id, email):
        calls.append(email)
        if len(calls) == 1:
            return None
        return await real_lookup(db, link_id, email)

    async def scenario(factory):
        async with factory() as db, db.begin():
            link = await _link(db, is_public=True)
            winner = await service.create_permission(db, link.id, "pat@example.com")

            monkeypatch.setattr(service, "get_permission_for_email", stale_first_lookup)
            p = await service.ensure_uploader_permission(db, link.id, "pat@example.com")

            assert p.id == winner.id
            assert len(calls) == 2
            assert await _rows_for(db, link) == 2

    run(scenario)
