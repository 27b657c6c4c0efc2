# backend/valuation_engine/utils/sql.py
"""
SQL utility functions.

This module provides dialect-aware statement construction:
- upsert_statement: INSERT ... ON CONFLICT for PostgreSQL and SQLite
- chunked: split row batches to keep statements a sensible size

Production runs on PostgreSQL; the test suite runs on in-memory SQLite.
Both dialects support ON CONFLICT with the same semantics, only the
insert construct differs.

Usage:
    from valuation_engine.utils.sql import upsert_statement

    stmt = upsert_statement(db, PriceBar, records, ["symbol", "date", "region"])
    db.execute(stmt)
"""

from collections.abc import Iterator, Sequence
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def upsert_statement(
        db: Session,
        model: type,
        values: dict[str, Any] | list[dict[str, Any]],
        index_elements: list[str],
        update_columns: Sequence[str] | None = None,
        set_overrides: dict[str, Any] | None = None,
):
    """
    Build an INSERT ... ON CONFLICT DO UPDATE for the session's dialect.

    Args:
        db: Session whose bind decides the dialect
        model: Mapped class to insert into
        values: One row or a list of rows
        index_elements: Columns of the unique constraint to conflict on
        update_columns: Columns to overwrite from the incoming row.
            Defaults to every inserted column that is not a conflict key.
        set_overrides: Explicit SET expressions (e.g. counters) that
            replace or extend the excluded-column updates

    Returns:
        Executable insert statement

    Raises:
        ValueError: If the dialect has no ON CONFLICT support here
    """
    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise ValueError(f"Upsert is not supported for dialect '{dialect}'")

    stmt = insert(model).values(values)

    if update_columns is None:
        first = values[0] if isinstance(values, list) else values
        update_columns = [c for c in first if c not in index_elements and c != "id"]

    set_ = {col: stmt.excluded[col] for col in update_columns}
    if set_overrides:
        set_.update(set_overrides)

    if not set_:
        return stmt.on_conflict_do_nothing(index_elements=index_elements)

    return stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)


def chunked(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most size rows."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]
