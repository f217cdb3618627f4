"""Resolve usernames and subject ownership from the site's user, review and comment tables."""

from __future__ import annotations

from typing import Iterable, Optional

import asyncpg


class PostgresUserDirectory:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted({str(uid) for uid in user_ids if uid})
        if not ids:
            return {}
        records = await self.pool.fetch(
            "SELECT id::text AS id, username FROM users WHERE id::text = ANY($1::text[])",
            ids,
        )
        return {record["id"]: record["username"] for record in records if record["username"]}


class PostgresSubjectResolver:
    """Best-effort subject ownership: reviews and comments by author, users by themselves."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def resolve_owner(self, subject_type: str, subject_id: str) -> Optional[str]:
        if subject_type == "user":
            return subject_id
        if subject_type == "review":
            owner = await self.pool.fetchval(
                "SELECT user_id::text FROM reviews WHERE id::text = $1 AND deleted_at IS NULL",
                subject_id,
            )
            return str(owner) if owner is not None else None
        if subject_type == "comment":
            author = await self.pool.fetchval(
                "SELECT user_id::text FROM comments WHERE id::text = $1 AND deleted_at IS NULL",
                subject_id,
            )
            return str(author) if author is not None else None
        return None
