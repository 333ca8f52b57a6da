import pytest
from sqlalchemy import func, select

from app.core.auth.security import create_editor_token
from app.core.errors import Forbidden, LinkInactive, NotFound, StorageError, Unauthorized, ValidationFailed
from app.core.files.models import File
from app.core.files.schemas import FileCreate
from app.core.files.service import create_file
from app.core.folders.models import Folder
from app.core.folders.schemas import FolderCreate
from app.core.folders.service import create_folder
from app.core.links.schemas import LinkConfigPatch, LinkCreate
from app.core.links.service import create_link, set_active, share_folder_with_new_link, update_config
from app.core.permissions.models import ROLE_EDITOR, ROLE_UPLOADER
from app.core.permissions.service import create_permission, get_permission_for_email, promote_to_editor, update_role
from app.core.uploads import service
from app.core.uploads.schemas import ContributorDetails, IncomingFile
from app.core.users.models import User
from helpers import FakeNotifier, FakeStorage, create_account, run


def _incoming(*names):
    return [IncomingFile(filename=n, content_type="text/plain", content=n.encode()) for n in names]


async def _public_link(db, slug="client-docs"):
    ws = await create_account(db, "alice")
    link = await create_link(db, ws.id, LinkCreate(name="Client docs", slug=slug, is_public=True))
    return ws, link


def test_contribution_lands_in_workspace_and_updates_counters():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws, link = await _public_link(db)
            storage = FakeStorage()
            details = ContributorDetails(email="Pat@Example.com", name="Pat", message="Q3 receipts")

            result = await service.contribute(db, "alice", "client-docs", details, _incoming("a.txt", "bb.txt"), storage)

            assert result.link_id == link.id
            assert result.folder_id is None
            assert sorted(f.filename for f in result.files) == ["a.txt", "bb.txt"]
            assert all(f.workspace_id == ws.id and f.link_id == link.id for f in result.files)
            assert all(f.uploader_email == "pat@example.com" for f in result.files)
            assert len(storage.objects) == 2
            assert (link.total_uploads, link.total_files, link.total_size) == (1, 2, 11)

            permission = await get_permission_for_email(db, link.id, "pat@example.com")
            assert permission is not None
            used = (await db.execute(select(User.storage_used).where(User.id == ws.user_id))).scalar_one()
            assert used == 11

    run(scenario)


def test_repeated_names_are_suffixed():
    async def scenario(factory):
        async with factory() as db, db.begin():
            await _public_link(db)
            details = ContributorDetails(email="pat@example.com")
            storage = FakeStorage()
            await service.contribute(db, "alice", "client-docs", details, _incoming("scan.pdf"), storage)
            result = await service.contribute(db, "alice", "client-docs", details, _incoming("scan.pdf", "scan.pdf"), storage)
            assert [f.filename for f in result.files] == ["scan (1).pdf", "scan (2).pdf"]

    run(scenario)


def test_paused_link_refuses_contributions():
    async def scenario(factory):
        async with factory() as db, db.begin():
            _, link = await _public_link(db)
            await set_active(db, link, False)
            storage = FakeStorage()
            with pytest.raises(LinkInactive):
                await service.contribute(
                    db, "alice", "client-docs", ContributorDetails(email="pat@example.com"), _incoming("a.txt"), storage,
                )
            assert storage.objects == {}

    run(scenario)


def test_unknown_address_and_empty_upload():
    async def scenario(factory):
        async with factory() as db, db.begin():
            await _public_link(db)
            details = ContributorDetails(email="pat@example.com")
            with pytest.raises(NotFound):
                await service.contribute(db, "alice", "nope", details, _incoming("a.txt"), FakeStorage())
            with pytest.raises(ValidationFailed):
                await service.contribute(db, "alice", "client-docs", details, [], FakeStorage())

    run(scenario)


def test_required_name_and_message():
    async def scenario(factory):
        async with factory() as db, db.begin():
            _, link = await _public_link(db)
            await update_config(db, link, LinkConfigPatch(requires_name=True, requires_message=True))
            storage = FakeStorage()

            with pytest.raises(ValidationFailed):
                await service.contribute(
                    db, "alice", "client-docs", ContributorDetails(email="pat@example.com", message="hi"), _incoming("a.txt"), storage,
                )
            with pytest.raises(ValidationFailed):
                await service.contribute(
                    db, "alice", "client-docs", ContributorDetails(email="pat@example.com", name="Pat"), _incoming("a.txt"), storage,
                )
            result = await service.contribute(
                db, "alice", "client-docs", ContributorDetails(email="pat@example.com", name="Pat", message="hi"), _incoming("a.txt"), storage,
            )
            assert len(result.files) == 1

    run(scenario)


def test_dedicated_link_only_admits_listed_emails():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db, "alice")
            link = await create_link(db, ws.id, LinkCreate(name="Private", slug="private-docs"))
            storage = FakeStorage()

            with pytest.raises(NotFound):
                await service.contribute(db, "alice", "private-docs", ContributorDetails(email="pat@example.com"), _incoming("a.txt"), storage)
            assert storage.objects == {}

            await create_permission(db, link.id, "pat@example.com")
            result = await service.contribute(db, "alice", "private-docs", ContributorDetails(email="pat@example.com"), _incoming("a.txt"), storage)
            assert len(result.files) == 1

    run(scenario)


def test_shared_folder_and_contributor_subfolder():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db, "alice")
            top = await create_folder(db, ws.id, FolderCreate(name="Clients"))
            link = await share_folder_with_new_link(db, ws.id, top)
            unrelated = await create_folder(db, ws.id, FolderCreate(name="Personal"))
            storage = FakeStorage()

            details = ContributorDetails(email="pat@example.com", name="Pat / Co", create_contributor_folder=True)
            first = await service.contribute(db, "alice", link.slug, details, _incoming("a.txt"), storage)
            second = await service.contribute(db, "alice", link.slug, details, _incoming("b.txt"), storage)

            assert first.folder_id == second.folder_id
            sub = await db.get(Folder, first.folder_id)
            assert (sub.name, sub.parent_folder_id, sub.link_id) == ("Pat - Co", top.id, link.id)
            assert sub.uploader_email == "pat@example.com"

            plain = await service.contribute(db, "alice", link.slug, ContributorDetails(email="pat@example.com"), _incoming("c.txt"), storage)
            assert plain.folder_id == top.id

            with pytest.raises(NotFound):
                await service.contribute(
                    db, "alice", link.slug, ContributorDetails(email="pat@example.com", folder_id=unrelated.id), _incoming("d.txt"), storage,
                )

    run(scenario)


def test_verify_editor_through_public_address():
    async def scenario(factory):
        async with factory() as db, db.begin():
            _, link = await _public_link(db)
            notifier = FakeNotifier()
            p = await create_permission(db, link.id, "pat@example.com")
            await promote_to_editor(db, p, notifier)
            code = notifier.sent[0][1]

            with pytest.raises(NotFound):
                await service.verify_editor(db, "alice", "client-docs", "stranger@example.com", code)
            p = await service.verify_editor(db, "alice", "client-docs", "PAT@example.com", code)
            assert p.is_verified is True
            assert p.effective_role == ROLE_EDITOR

    run(scenario)


class FlakyStorage(FakeStorage):
    """Fails the n-th put."""

    def __init__(self, fail_on_put):
        super().__init__()
        self.fail_on_put = fail_on_put
        self.puts = 0

    async def put(self, key, data, content_type):
        self.puts += 1
        if self.puts == self.fail_on_put:
            raise StorageError("Could not store file")
        return await super().put(key, data, content_type)


def test_failed_file_discards_objects_of_earlier_files():
    async def scenario(factory):
        async with factory() as db, db.begin():
            await _public_link(db)

        storage = FlakyStorage(fail_on_put=2)
        with pytest.raises(StorageError):
            async with factory() as db, db.begin():
                await service.contribute(
                    db, "alice", "client-docs", ContributorDetails(email="pat@example.com"), _incoming("a.txt", "b.txt"), storage,
                )

        async with factory() as db:
            rows = (await db.execute(select(func.count()).select_from(File))).scalar_one()
        assert rows == 0
        assert storage.objects == {}

    run(scenario)


def test_editor_actions_follow_the_effective_role():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws, link = await _public_link(db)
            other = await create_link(db, ws.id, LinkCreate(name="Other", slug="other-docs", is_public=True))
            storage = FakeStorage()
            result = await service.contribute(
                db, "alice", "client-docs", ContributorDetails(email="sam@example.com"), _incoming("a.txt"), storage,
            )
            [contributed] = result.files
            private = await create_file(db, ws.id, FileCreate(filename="private.txt"), storage, b"p")

            notifier = FakeNotifier()
            p = await create_permission(db, link.id, "pat@example.com")
            await promote_to_editor(db, p, notifier)
            token = create_editor_token(p.id, link.id)

            # Pending promotion: still an uploader.
            with pytest.raises(Forbidden):
                await service.delete_link_file(db, "alice", "client-docs", token, contributed.id, storage)
            assert contributed.storage_path in storage.objects

            await service.verify_editor(db, "alice", "client-docs", "pat@example.com", notifier.sent[0][1])
            files = await service.list_link_files(db, "alice", "client-docs", token)
            assert [f.id for f in files] == [contributed.id]

            with pytest.raises(NotFound):
                await service.delete_link_file(db, "alice", "client-docs", token, private.id, storage)
            with pytest.raises(Unauthorized):
                await service.list_link_files(db, "alice", "other-docs", token)
            with pytest.raises(Unauthorized):
                await service.list_link_files(db, "alice", "other-docs", create_editor_token(p.id, other.id))
            with pytest.raises(Unauthorized):
                await service.list_link_files(db, "alice", "client-docs", None)

            await service.delete_link_file(db, "alice", "client-docs", token, contributed.id, storage)
            assert contributed.storage_path not in storage.objects
            assert private.storage_path in storage.objects

            await update_role(db, p, ROLE_UPLOADER, notifier)
            with pytest.raises(Forbidden):
                await service.list_link_files(db, "alice", "client-docs", token)

    run(scenario)


def test_expired_editor_session_is_rejected():
    async def scenario(factory):
        async with factory() as db, db.begin():
            _, link = await _public_link(db)
            p = await create_permission(db, link.id, "pat@example.com", ROLE_EDITOR)
            with pytest.raises(Unauthorized):
                await service.list_link_files(db, "alice", "client-docs", create_editor_token(p.id, link.id, expires_minutes=-1))
            with pytest.raises(Unauthorized):
                await service.list_link_files(db, "alice", "client-docs", "not-a-token")

    run(scenario)
