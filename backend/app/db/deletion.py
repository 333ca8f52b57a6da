"""
Deletion policies.

Every foreign key in the schema declares what happens to the referencing row
when the referenced row goes away, using ``OnDelete`` as its ``ondelete``:

    CASCADE  – the child row is deleted too (and its own children follow
               their own policies)
    DETACH   – the reference is nulled, the child row survives

``delete_with_policies`` applies the same table of rules at the application
level so the outcome does not depend on the database enforcing foreign keys.
"""
import enum
import logging
import uuid
from typing import Iterable

from sqlalchemy import ForeignKey, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class OnDelete(str, enum.Enum):
    CASCADE = "CASCADE"
    DETACH = "SET NULL"

    @classmethod
    def of(cls, fk: ForeignKey) -> "OnDelete":
        if not fk.ondelete:
            raise RuntimeError(f"Foreign key {fk.parent} has no deletion policy")
        return cls(fk.ondelete.upper())


def policies_for(model) -> list[tuple[type, str, OnDelete]]:
    """(child model, child attribute, policy) for every FK pointing at ``model``, dependents first."""
    import app.db.models  # noqa: F401  registers every mapped table

    parent = model.__table__
    classes = {m.local_table: m.class_ for m in model.registry.mappers}
    found = []
    for table in reversed(model.metadata.sorted_tables):
        for fk in table.foreign_keys:
            if fk.column.table is parent:
                found.append((classes[table], fk.parent.key, OnDelete.of(fk)))
    return found


async def delete_with_policies(db: AsyncSession, model, ids: Iterable[uuid.UUID]) -> int:
    ids = list(ids)
    if not ids:
        return 0

    for child, attr, policy in policies_for(model):
        column = getattr(child, attr)
        if policy is OnDelete.DETACH:
            q = update(child).where(column.in_(ids))
            if child is model:
                # Rows deleted in this same call are not detached first.
                q = q.where(child.id.not_in(ids))
            await db.execute(q.values({attr: None}))
        else:
            result = await db.execute(select(child.id).where(column.in_(ids)))
            await delete_with_policies(db, child, result.scalars().all())

    await db.execute(delete(model).where(model.id.in_(ids)))
    logger.debug("Deleted %d %s row(s)", len(ids), model.__tablename__)
    return len(ids)
