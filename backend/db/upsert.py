"""
Dialect-aware INSERT ... ON CONFLICT builder.

Upserts here are concurrency primitives: the unique index named by
``conflict_columns`` is what makes two racing writers converge on one row.
"""

from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_statement(
    dialect_name: str,
    table: Table,
    values: dict[str, Any],
    *,
    conflict_columns: list[str],
    update_columns: list[str],
):
    """Insert ``values``; on a unique conflict update only ``update_columns``."""
    if dialect_name == "postgresql":
        stmt = postgresql.insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: stmt.excluded[col] for col in update_columns},
        )
    if dialect_name == "sqlite":
        stmt = sqlite.insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: stmt.excluded[col] for col in update_columns},
        )
    if dialect_name in ("mysql", "mariadb"):
        stmt = mysql.insert(table).values(**values)
        return stmt.on_duplicate_key_update(**{col: stmt.inserted[col] for col in update_columns})
    raise NotImplementedError(f"No upsert support for dialect {dialect_name!r}")


async def execute_upsert(
    db: AsyncSession,
    table: Table,
    values: dict[str, Any],
    *,
    conflict_columns: list[str],
    update_columns: list[str],
) -> None:
    dialect_name = db.get_bind().dialect.name
    stmt = upsert_statement(
        dialect_name,
        table,
        values,
        conflict_columns=conflict_columns,
        update_columns=update_columns,
    )
    await db.execute(stmt)
