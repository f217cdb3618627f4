"""PostgreSQL-backed repositories for the moderation work-queue."""

from __future__ import annotations

import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

import asyncpg

from chirisu.infra.soft_delete import not_deleted
from chirisu.moderation.domain import pagination
from chirisu.moderation.domain.audit import AuditEntry
from chirisu.moderation.domain.errors import DuplicateReportError
from chirisu.moderation.domain.repository import ListQuery
from chirisu.moderation.domain.visibility import Viewer
from chirisu.moderation.domain.work_items import (
    OPEN_STATUSES,
    ItemKind,
    ItemStatus,
    SubjectType,
    WorkItem,
)

_TABLES: Mapping[ItemKind, str] = {kind: f"{kind.value}s" for kind in ItemKind}

_COLUMNS = """
    w.id, w.subject_type, w.subject_id, w.submitter_id, w.payload, w.status,
    w.created_at, w.updated_at, w.assigned_to, w.assigned_at, w.reviewed_by,
    w.reviewed_at, w.resolution_notes, w.action_taken, w.deleted_at
"""

_OPEN = [status.value for status in OPEN_STATUSES]


def _uuid_or_none(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def visibility_predicate(
    params: list[Any],
    *,
    viewer: Viewer,
    stale_before: datetime,
    alias: str = "w",
) -> str:
    """SQL form of :func:`chirisu.moderation.domain.visibility.is_visible`.

    ``stale_before`` is ``now - window`` computed once per request by the caller.
    """
    if viewer.is_admin:
        return not_deleted(alias)
    params.append(viewer.actor_id)
    viewer_idx = len(params)
    params.append(stale_before)
    stale_idx = len(params)
    params.append(_OPEN)
    open_idx = len(params)
    return (
        f"{not_deleted(alias)} AND ("
        f"{alias}.assigned_to IS NULL"
        f" OR {alias}.assigned_to = ${viewer_idx}"
        f" OR ({alias}.assigned_at < ${stale_idx} AND {alias}.status = ANY(${open_idx}::text[]))"
        ")"
    )


class PostgresUnitOfWork:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    @property
    def connection(self) -> asyncpg.Connection:
        return self._conn

    async def lock(self, kind: ItemKind, item_id: str) -> Optional[WorkItem]:
        item_uuid = _uuid_or_none(item_id)
        if item_uuid is None:
            return None
        record = await self._conn.fetchrow(
            f"SELECT {_COLUMNS} FROM {_TABLES[kind]} w WHERE w.id = $1 FOR UPDATE",
            item_uuid,
        )
        return _item_from_record(record, kind) if record else None

    async def save_review(self, item: WorkItem) -> WorkItem:
        record = await self._conn.fetchrow(
            f"""
            UPDATE {_TABLES[item.kind]} w
            SET status = $2,
                subject_id = $3,
                reviewed_by = $4,
                reviewed_at = $5,
                resolution_notes = $6,
                action_taken = $7,
                updated_at = $8
            WHERE w.id = $1
            RETURNING {_COLUMNS}
            """,
            uuid.UUID(item.item_id),
            item.status.value,
            item.subject_id,
            item.reviewed_by,
            item.reviewed_at,
            item.resolution_notes,
            item.action_taken,
            item.updated_at,
        )
        if record is None:
            raise KeyError(item.item_id)
        return _item_from_record(record, item.kind)


class PostgresWorkItemRepository:
    """Persists work items using asyncpg, one table per kind."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, kind: ItemKind, item_id: str) -> Optional[WorkItem]:
        item_uuid = _uuid_or_none(item_id)
        if item_uuid is None:
            return None
        record = await self.pool.fetchrow(
            f"SELECT {_COLUMNS} FROM {_TABLES[kind]} w WHERE w.id = $1",
            item_uuid,
        )
        return _item_from_record(record, kind) if record else None

    async def insert(self, item: WorkItem) -> WorkItem:
        query = f"""
        INSERT INTO {_TABLES[item.kind]} AS w
            (id, subject_type, subject_id, submitter_id, payload, status, created_at, updated_at)
        VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8)
        RETURNING {_COLUMNS}
        """
        try:
            record = await self.pool.fetchrow(
                query,
                uuid.UUID(item.item_id),
                item.subject_type.value,
                item.subject_id,
                item.submitter_id,
                dict(item.payload),
                item.status.value,
                item.created_at,
                item.updated_at,
            )
        except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
            raise DuplicateReportError() from exc
        assert record is not None
        return _item_from_record(record, item.kind)

    async def claim(
        self,
        kind: ItemKind,
        item_id: str,
        *,
        moderator_id: str,
        now: datetime,
        stale_before: datetime,
        override: bool,
    ) -> Optional[WorkItem]:
        item_uuid = _uuid_or_none(item_id)
        if item_uuid is None:
            return None
        query = f"""
        UPDATE {_TABLES[kind]} w
        SET assigned_to = $2,
            assigned_at = $3,
            status = 'in_review',
            updated_at = $3
        WHERE w.id = $1
          AND w.deleted_at IS NULL
          AND w.status = ANY($6::text[])
          AND (
            w.assigned_to IS NULL
            OR w.assigned_to = $2
            OR $4::boolean
            OR w.assigned_at < $5
          )
        RETURNING {_COLUMNS}
        """
        record = await self.pool.fetchrow(query, item_uuid, moderator_id, now, override, stale_before, _OPEN)
        return _item_from_record(record, kind) if record else None

    async def release(
        self,
        kind: ItemKind,
        item_id: str,
        *,
        expected_assignee: str,
        now: datetime,
    ) -> Optional[WorkItem]:
        item_uuid = _uuid_or_none(item_id)
        if item_uuid is None:
            return None
        query = f"""
        UPDATE {_TABLES[kind]} w
        SET assigned_to = NULL,
            assigned_at = NULL,
            status = 'pending',
            updated_at = $3
        WHERE w.id = $1
          AND w.deleted_at IS NULL
          AND w.status = 'in_review'
          AND w.assigned_to = $2
        RETURNING {_COLUMNS}
        """
        record = await self.pool.fetchrow(query, item_uuid, expected_assignee, now)
        return _item_from_record(record, kind) if record else None

    async def list_visible(self, kind: ItemKind, query: ListQuery) -> tuple[list[WorkItem], int]:
        params: list[Any] = []
        conditions = [visibility_predicate(params, viewer=query.viewer, stale_before=query.stale_before)]
        params.append([status.value for status in query.statuses])
        conditions.append(f"w.status = ANY(${len(params)}::text[])")
        if query.subject_type is not None:
            params.append(query.subject_type.value)
            conditions.append(f"w.subject_type = ${len(params)}")
        table = _TABLES[kind]
        count_sql = f"SELECT COUNT(*) FROM {table} w WHERE {' AND '.join(conditions)}"
        count_params = list(params)
        if query.cursor is not None:
            conditions.append(pagination.build_keyset_predicate(query.cursor, params))
        sql = f"""
        SELECT {_COLUMNS}
        FROM {table} w
        WHERE {' AND '.join(conditions)}
        ORDER BY w.created_at DESC, w.id DESC
        LIMIT {int(query.limit) + 1}
        """
        async with self.pool.acquire() as conn:
            records = await conn.fetch(sql, *params)
            total = await conn.fetchval(count_sql, *count_params)
        return [_item_from_record(record, kind) for record in records], int(total or 0)

    async def count_open(
        self,
        kind: ItemKind,
        *,
        viewer: Viewer,
        now: datetime,
        stale_before: datetime,
    ) -> dict[str, int]:
        params: list[Any] = []
        predicate = visibility_predicate(params, viewer=viewer, stale_before=stale_before)
        params.append(_OPEN)
        sql = f"""
        SELECT w.subject_type, COUNT(*) AS total
        FROM {_TABLES[kind]} w
        WHERE {predicate} AND w.status = ANY(${len(params)}::text[])
        GROUP BY w.subject_type
        """
        records = await self.pool.fetch(sql, *params)
        return {str(record["subject_type"]): int(record["total"]) for record in records}

    async def list_by_submitter(self, submitter_id: str, *, limit: int) -> list[WorkItem]:
        items: list[WorkItem] = []
        async with self.pool.acquire() as conn:
            for kind, table in _TABLES.items():
                records = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS}
                    FROM {table} w
                    WHERE w.submitter_id = $1 AND {not_deleted('w')}
                    ORDER BY w.created_at DESC, w.id DESC
                    LIMIT $2
                    """,
                    submitter_id,
                    limit,
                )
                items.extend(_item_from_record(record, kind) for record in records)
        items.sort(key=pagination.sort_key, reverse=True)
        return items[:limit]

    async def submission_exists(
        self,
        kind: ItemKind,
        *,
        submitter_id: str,
        subject_id: str,
        open_only: bool,
    ) -> bool:
        sql = f"""
        SELECT 1 FROM {_TABLES[kind]} w
        WHERE w.submitter_id = $1 AND w.subject_id = $2 AND {not_deleted('w')}
        """
        params: list[Any] = [submitter_id, subject_id]
        if open_only:
            params.append(_OPEN)
            sql += " AND w.status = ANY($3::text[])"
        row = await self.pool.fetchrow(sql + " LIMIT 1", *params)
        return row is not None

    async def soft_delete(self, kind: ItemKind, item_id: str, *, now: datetime) -> Optional[WorkItem]:
        item_uuid = _uuid_or_none(item_id)
        if item_uuid is None:
            return None
        record = await self.pool.fetchrow(
            f"""
            UPDATE {_TABLES[kind]} w
            SET deleted_at = $2, updated_at = $2
            WHERE w.id = $1 AND w.deleted_at IS NULL
            RETURNING {_COLUMNS}
            """,
            item_uuid,
            now,
        )
        return _item_from_record(record, kind) if record else None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresUnitOfWork]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresUnitOfWork(conn)


class PostgresAuditRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def write(self, entry: AuditEntry) -> None:
        query = """
        INSERT INTO mod_audit(actor_id, action, item_kind, item_id, before, after, meta, created_at)
        VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7::jsonb, $8)
        """
        await self.pool.execute(
            query,
            entry.actor_id,
            entry.action,
            entry.item_kind.value,
            entry.item_id,
            dict(entry.before),
            dict(entry.after),
            dict(entry.meta),
            entry.created_at,
        )

    async def list_for_item(self, kind: ItemKind, item_id: str) -> Sequence[AuditEntry]:
        query = """
        SELECT actor_id, action, item_kind, item_id, before, after, meta, created_at
        FROM mod_audit
        WHERE item_kind = $1 AND item_id = $2
        ORDER BY created_at ASC, id ASC
        """
        records = await self.pool.fetch(query, kind.value, item_id)
        return [_audit_from_record(record) for record in records]


def _json_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            loaded = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return loaded if isinstance(loaded, dict) else {}
    return dict(value)


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _item_from_record(record: asyncpg.Record, kind: ItemKind) -> WorkItem:
    return WorkItem(
        item_id=str(record["id"]),
        kind=kind,
        subject_type=SubjectType(record["subject_type"]),
        subject_id=_opt_str(record["subject_id"]),
        submitter_id=_opt_str(record["submitter_id"]),
        payload=_json_dict(record["payload"]),
        status=ItemStatus(record["status"]),
        created_at=record["created_at"],
        updated_at=record["updated_at"],
        assigned_to=_opt_str(record["assigned_to"]),
        assigned_at=record["assigned_at"],
        reviewed_by=_opt_str(record["reviewed_by"]),
        reviewed_at=record["reviewed_at"],
        resolution_notes=_opt_str(record["resolution_notes"]),
        action_taken=_opt_str(record["action_taken"]),
        deleted_at=record["deleted_at"],
    )


def _audit_from_record(record: asyncpg.Record) -> AuditEntry:
    return AuditEntry(
        actor_id=_opt_str(record["actor_id"]),
        action=str(record["action"]),
        item_kind=ItemKind(record["item_kind"]),
        item_id=str(record["item_id"]),
        before=_json_dict(record["before"]),
        after=_json_dict(record["after"]),
        meta=_json_dict(record["meta"]),
        created_at=record["created_at"],
    )
