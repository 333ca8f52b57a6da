import pytest
from sqlalchemy import select

from app.core.errors import Conflict, CyclicMove, DepthExceeded, NotFound
from app.core.files.schemas import FileCreate
from app.core.files.service import create_file, get_file
from app.core.folders import service
from app.core.folders.models import Folder
from app.core.folders.schemas import FolderCreate
from app.core.links.models import Link
from helpers import FakeStorage, create_account, run


async def _chain(db, workspace_id, names, parent_id=None):
    folders = []
    for name in names:
        f = await service.create_folder(db, workspace_id, FolderCreate(name=name, parent_folder_id=parent_id))
        folders.append(f)
        parent_id = f.id
    return folders


def test_breadcrumb_and_depth():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            taxes, year = await _chain(db, ws.id, ["Taxes", "2024"])
            await create_file(db, ws.id, FileCreate(filename="w2.pdf", parent_folder_id=year.id), FakeStorage(), b"%PDF")

            path = await service.get_ancestor_path(db, year.id)
            assert [f.name for f in path] == ["Taxes", "2024"]
            assert await service.get_depth(db, taxes.id) == 0
            assert await service.get_depth(db, year.id) == 1

            tree = await service.get_tree_files(db, taxes)
            assert [(t.filename, t.folder_path) for t in tree] == [("w2.pdf", ["Taxes", "2024"])]

    run(scenario)


def test_duplicate_root_name_conflicts():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            await service.create_folder(db, ws.id, FolderCreate(name="Docs"))
            with pytest.raises(Conflict):
                await service.create_folder(db, ws.id, FolderCreate(name="Docs"))

            # Same name under a different parent is fine, and the session is still usable.
            parent = await service.create_folder(db, ws.id, FolderCreate(name="Archive"))
            nested = await service.create_folder(db, ws.id, FolderCreate(name="Docs", parent_folder_id=parent.id))
            assert nested.parent_folder_id == parent.id

            roots = await service.list_folders(db, ws.id, None)
            assert sorted(f.name for f in roots) == ["Archive", "Docs"]

    run(scenario)


def test_same_root_name_allowed_in_other_workspace():
    async def scenario(factory):
        async with factory() as db, db.begin():
            alice = await create_account(db, "alice")
            bob = await create_account(db, "bobby")
            await service.create_folder(db, alice.id, FolderCreate(name="Docs"))
            await service.create_folder(db, bob.id, FolderCreate(name="Docs"))

    run(scenario)


def test_depth_limit_on_create():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            # depths 0..20
            chain = await _chain(db, ws.id, [f"level-{n}" for n in range(21)])
            assert await service.get_depth(db, chain[-1].id) == 20
            with pytest.raises(DepthExceeded):
                await service.create_folder(db, ws.id, FolderCreate(name="too-deep", parent_folder_id=chain[-1].id))

    run(scenario)


def test_move_into_own_subtree_is_cyclic():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            a, b, c = await _chain(db, ws.id, ["A", "B", "C"])
            with pytest.raises(CyclicMove):
                await service.move_folder(db, ws.id, a.id, c.id)
            with pytest.raises(CyclicMove):
                await service.move_folder(db, ws.id, a.id, a.id)

    run(scenario)


def test_move_checks_depth_of_whole_subtree():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            a, b, _ = await _chain(db, ws.id, ["A", "B", "C"])
            deep = await _chain(db, ws.id, [f"d{n}" for n in range(19)])  # deepest at depth 18

            with pytest.raises(DepthExceeded):
                await service.move_folder(db, ws.id, a.id, deep[-1].id)

            moved = await service.move_folder(db, ws.id, b.id, deep[-1].id)
            assert moved.parent_folder_id == deep[-1].id
            assert await service.get_depth(db, b.id) == 19

    run(scenario)


def test_move_to_root_and_name_collision():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            await service.create_folder(db, ws.id, FolderCreate(name="Reports"))
            parent = await service.create_folder(db, ws.id, FolderCreate(name="Old"))
            nested = await service.create_folder(db, ws.id, FolderCreate(name="Reports", parent_folder_id=parent.id))
            other = await service.create_folder(db, ws.id, FolderCreate(name="Other", parent_folder_id=parent.id))

            with pytest.raises(Conflict):
                await service.move_folder(db, ws.id, nested.id, None)

            moved = await service.move_folder(db, ws.id, other.id, None)
            assert moved.parent_folder_id is None
            # Already there: no-op.
            same = await service.move_folder(db, ws.id, other.id, None)
            assert same.id == other.id

    run(scenario)


def test_rename_checks_siblings():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            await service.create_folder(db, ws.id, FolderCreate(name="One"))
            two = await service.create_folder(db, ws.id, FolderCreate(name="Two"))
            with pytest.raises(Conflict):
                await service.rename_folder(db, two, "One")
            renamed = await service.rename_folder(db, two, "  Three ")
            assert renamed.name == "Three"

    run(scenario)


def test_delete_detaches_children_to_root():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            storage = FakeStorage()
            parent, child = await _chain(db, ws.id, ["Parent", "Child"])
            grandchild = await service.create_folder(db, ws.id, FolderCreate(name="Grandchild", parent_folder_id=child.id))
            f = await create_file(db, ws.id, FileCreate(filename="a.txt", parent_folder_id=parent.id), storage, b"a")

            await service.delete_folder(db, parent)

            assert await service.get_folder(db, ws.id, parent.id) is None
            child = await service.require_folder(db, ws.id, child.id)
            assert child.parent_folder_id is None
            grandchild = await service.require_folder(db, ws.id, grandchild.id)
            assert grandchild.parent_folder_id == child.id
            f = await get_file(db, ws.id, f.id)
            assert f.parent_folder_id is None
            assert f.storage_path in storage.objects

    run(scenario)


def test_delete_blocked_when_children_collide_at_root():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            await service.create_folder(db, ws.id, FolderCreate(name="Shared"))
            parent = await service.create_folder(db, ws.id, FolderCreate(name="Parent"))
            await service.create_folder(db, ws.id, FolderCreate(name="Shared", parent_folder_id=parent.id))

            with pytest.raises(Conflict):
                await service.delete_folder(db, parent)
            assert await service.get_folder(db, ws.id, parent.id) is not None

    run(scenario)


def test_other_workspace_folders_are_not_found():
    async def scenario(factory):
        async with factory() as db, db.begin():
            alice = await create_account(db, "alice")
            bob = await create_account(db, "bobby")
            private = await service.create_folder(db, alice.id, FolderCreate(name="Private"))

            with pytest.raises(NotFound):
                await service.require_folder(db, bob.id, private.id)
            with pytest.raises(NotFound):
                await service.create_folder(db, bob.id, FolderCreate(name="Sneaky", parent_folder_id=private.id))
            with pytest.raises(NotFound):
                await service.move_folder(db, bob.id, private.id, None)

    run(scenario)


def test_subfolder_inherits_link_and_top_folder_delete_pauses_link():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            link = Link(workspace_id=ws.id, slug="client-uploads", name="Client uploads", is_public=True)
            db.add(link)
            await db.flush()

            top = await service.create_folder(db, ws.id, FolderCreate(name="Client", link_id=link.id))
            sub = await service.create_folder(db, ws.id, FolderCreate(name="Invoices", parent_folder_id=top.id))
            assert sub.link_id == link.id

            descendants = await service.get_descendants(db, top.id)
            assert [d.id for d in descendants] == [sub.id]

            # A linked subfolder going away leaves the link alone.
            await service.delete_folder(db, sub)
            assert (await db.get(Link, link.id)).is_active

            await service.delete_folder(db, top)
            refreshed = (await db.execute(select(Link).where(Link.id == link.id))).scalar_one()
            assert refreshed.is_active is False

    run(scenario)


def test_no_folder_is_its_own_ancestor_after_moves():
    async def scenario(factory):
        async with factory() as db, db.begin():
            ws = await create_account(db)
            a, b = await _chain(db, ws.id, ["A", "B"])
            c = await service.create_folder(db, ws.id, FolderCreate(name="C"))
            await service.move_folder(db, ws.id, a.id, c.id)
            with pytest.raises(CyclicMove):
                await service.move_folder(db, ws.id, c.id, b.id)

            for folder in (await db.execute(select(Folder).where(Folder.workspace_id == ws.id))).scalars():
                path = await service.get_ancestor_path(db, folder.id)
                ids = [p.id for p in path]
                assert ids.count(folder.id) == 1
                assert ids[-1] == folder.id

    run(scenario)
