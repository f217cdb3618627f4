"""asyncpg writers that apply contribution changes to entity tables."""

from __future__ import annotations

from typing import Any, Mapping, Optional

import asyncpg

from chirisu.moderation.domain.change_applier import EntitySchema


class PostgresEntityWriter:
    """Writes allow-listed columns on the caller's transaction connection.

    Column names come from :class:`EntitySchema`, never from the payload, so
    interpolating them into SQL is safe.
    """

    def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
        self.pool = pool

    async def create(
        self,
        schema: EntitySchema,
        values: Mapping[str, Any],
        *,
        conn: Optional[asyncpg.Connection] = None,
    ) -> str:
        columns = sorted(key for key in values if key in schema.fields)
        placeholders = ", ".join(f"${idx}" for idx in range(1, len(columns) + 1))
        query = f"""
        INSERT INTO {schema.table} ({', '.join(columns)}, created_at, updated_at)
        VALUES ({placeholders}, now(), now())
        RETURNING id
        """
        entity_id = await self._fetchval(conn, query, *[values[column] for column in columns])
        if entity_id is None:
            raise RuntimeError(f"insert into {schema.table} returned no id")
        return str(entity_id)

    async def update(
        self,
        schema: EntitySchema,
        entity_id: str,
        values: Mapping[str, Any],
        *,
        conn: Optional[asyncpg.Connection] = None,
    ) -> None:
        columns = sorted(key for key in values if key in schema.fields)
        assignments = ", ".join(f"{column} = ${idx}" for idx, column in enumerate(columns, start=1))
        id_idx = len(columns) + 1
        query = f"""
        UPDATE {schema.table}
        SET {assignments}, updated_at = now()
        WHERE id::text = ${id_idx} AND deleted_at IS NULL
        RETURNING id
        """
        updated = await self._fetchval(conn, query, *[values[column] for column in columns], entity_id)
        if updated is None:
            raise LookupError(f"{schema.table}/{entity_id} not found")

    async def _fetchval(self, conn: Optional[asyncpg.Connection], query: str, *args: Any) -> Any:
        if conn is not None:
            return await conn.fetchval(query, *args)
        if self.pool is None:
            raise RuntimeError("PostgresEntityWriter needs a connection or a pool")
        return await self.pool.fetchval(query, *args)
