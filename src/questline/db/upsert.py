"""Dialect-aware INSERT ... ON CONFLICT helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, model: type) -> Any:
    """Return an ``insert()`` construct supporting ``on_conflict_*`` for the session's dialect."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


async def insert_ignore(
    db: AsyncSession,
    model: type,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> int | None:
    """Insert a row unless it collides with ``conflict_columns``.

    Returns the new primary key, or None when the row already existed.
    """
    stmt = (
        insert_for(db, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(model.id)  # type: ignore[attr-defined]
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
