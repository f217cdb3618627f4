from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def not_deleted(alias: str | None = None) -> str:
    """Return the predicate that hides soft-deleted rows.

    Every listing query appends this at the query boundary so business logic
    never sees rows whose ``deleted_at`` is set.
    """
    column = f"{alias}.deleted_at" if alias else "deleted_at"
    return f"{column} IS NULL"
