from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from packages.db.models import DepartmentSequenceTable, OutboxSequenceTable

_SEQUENCES = DepartmentSequenceTable.__table__
_OUTBOX_SEQUENCES = OutboxSequenceTable.__table__

_UPSERT_FACTORIES: Mapping[str, Callable[[Any], Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _upsert_factory(session: AsyncSession) -> Callable[[Any], Any]:
    dialect = session.get_bind().dialect.name
    insert_factory = _UPSERT_FACTORIES.get(dialect)
    if insert_factory is None:
        raise RuntimeError(f"Ticket sequencing is not supported on the '{dialect}' dialect")
    return insert_factory


class DepartmentSequencer:
    """Issue strictly increasing ticket numbers per department.

    The increment is a single ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``
    statement, so concurrent requests (even from other service instances)
    serialize on the department's sequence row. The statement runs in the
    caller's transaction: if ticket creation rolls back, so does the number.
    """

    async def next_number(self, session: AsyncSession, department_id: int) -> int:
        insert_factory = _upsert_factory(session)
        now = datetime.now(timezone.utc)
        statement = insert_factory(_SEQUENCES).values(department_id=department_id, last_number=1, updated_at=now)
        statement = statement.on_conflict_do_update(
            index_elements=[_SEQUENCES.c.department_id],
            set_={"last_number": _SEQUENCES.c.last_number + 1, "updated_at": now},
        ).returning(_SEQUENCES.c.last_number)

        result = await session.execute(statement)
        return int(result.scalar_one())

    async def current_number(self, session: AsyncSession, department_id: int) -> int:
        """Return the last number issued for the department, ``0`` if none."""

        result = await session.execute(
            select(_SEQUENCES.c.last_number).where(_SEQUENCES.c.department_id == department_id)
        )
        value = result.scalar_one_or_none()
        return int(value) if value is not None else 0


class OutboxSequencer:
    """Hand out event ids for an outbox in commit order.

    Reserving a block locks the outbox row until the caller's transaction
    ends, so a later writer cannot commit a smaller id after a poller has
    already moved past it.
    """

    def __init__(self, name: str = "ticket_events") -> None:
        self.name = name

    async def reserve(self, session: AsyncSession, count: int) -> range:
        if count < 1:
            raise ValueError("count must be at least 1")
        insert_factory = _upsert_factory(session)
        now = datetime.now(timezone.utc)
        statement = insert_factory(_OUTBOX_SEQUENCES).values(name=self.name, last_id=count, updated_at=now)
        statement = statement.on_conflict_do_update(
            index_elements=[_OUTBOX_SEQUENCES.c.name],
            set_={"last_id": _OUTBOX_SEQUENCES.c.last_id + count, "updated_at": now},
        ).returning(_OUTBOX_SEQUENCES.c.last_id)

        last_id = int((await session.execute(statement)).scalar_one())
        return range(last_id - count + 1, last_id + 1)
