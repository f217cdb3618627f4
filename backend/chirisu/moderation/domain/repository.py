"""Work item storage contracts and the in-memory implementation."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Optional, Protocol, Sequence

from chirisu.moderation.domain import pagination, visibility
from chirisu.moderation.domain.work_items import (
    OPEN_STATUSES,
    ItemKind,
    ItemStatus,
    SubjectType,
    WorkItem,
)


@dataclass(slots=True)
class ListQuery:
    viewer: visibility.Viewer
    now: datetime
    stale_before: datetime
    statuses: frozenset[ItemStatus]
    subject_type: Optional[SubjectType] = None
    cursor: Optional[pagination.KeysetCursor] = None
    limit: int = 50


class UnitOfWork(Protocol):
    """Row-locked view of the store for one transaction."""

    @property
    def connection(self) -> Any:
        ...

    async def lock(self, kind: ItemKind, item_id: str) -> Optional[WorkItem]:
        ...

    async def save_review(self, item: WorkItem) -> WorkItem:
        ...


class WorkItemRepository(Protocol):
    async def get(self, kind: ItemKind, item_id: str) -> Optional[WorkItem]:
        ...

    async def insert(self, item: WorkItem) -> WorkItem:
        ...

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
        """Atomically take the item; ``None`` when the conditional write matched nothing."""
        ...

    async def release(
        self,
        kind: ItemKind,
        item_id: str,
        *,
        expected_assignee: str,
        now: datetime,
    ) -> Optional[WorkItem]:
        ...

    async def list_visible(self, kind: ItemKind, query: ListQuery) -> tuple[list[WorkItem], int]:
        ...

    async def count_open(
        self,
        kind: ItemKind,
        *,
        viewer: visibility.Viewer,
        now: datetime,
        stale_before: datetime,
    ) -> dict[str, int]:
        ...

    async def list_by_submitter(self, submitter_id: str, *, limit: int) -> list[WorkItem]:
        ...

    async def submission_exists(
        self,
        kind: ItemKind,
        *,
        submitter_id: str,
        subject_id: str,
        open_only: bool,
    ) -> bool:
        ...

    async def soft_delete(self, kind: ItemKind, item_id: str, *, now: datetime) -> Optional[WorkItem]:
        ...

    def transaction(self) -> Any:
        """Async context manager yielding a :class:`UnitOfWork`."""
        ...


def _claimable(item: WorkItem, moderator_id: str, stale_before: datetime, override: bool) -> bool:
    if item.is_deleted or item.status not in OPEN_STATUSES:
        return False
    if item.assigned_to is None or item.assigned_to == moderator_id or override:
        return True
    return item.assigned_at is not None and item.assigned_at < stale_before


class _InMemoryUnitOfWork:
    def __init__(self, repo: "InMemoryWorkItemRepository") -> None:
        self._repo = repo

    @property
    def connection(self) -> Any:
        return None

    async def lock(self, kind: ItemKind, item_id: str) -> Optional[WorkItem]:
        item = self._repo._items.get((kind, item_id))
        return item.copy() if item else None

    async def save_review(self, item: WorkItem) -> WorkItem:
        self._repo._items[(item.kind, item.item_id)] = item.copy()
        return item.copy()


class Snapshotting(Protocol):
    """In-memory state that rolls back together with a repository transaction."""

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


class InMemoryWorkItemRepository:
    """Dict-backed store with the same atomicity as the Postgres repository.

    One lock serialises every mutation; transactions snapshot the store and
    every enlisted participant, restoring all of them when the body raises.
    """

    def __init__(self, items: Iterable[WorkItem] = (), *, enlisted: Iterable[Snapshotting] = ()) -> None:
        self._items: dict[tuple[ItemKind, str], WorkItem] = {}
        self._lock = asyncio.Lock()
        self._enlisted: list[Snapshotting] = []
        for item in items:
            self._items[(item.kind, item.item_id)] = item.copy()
        for participant in enlisted:
            self.enlist(participant)

    def enlist(self, participant: Snapshotting) -> None:
        if not any(existing is participant for existing in self._enlisted):
            self._enlisted.append(participant)

    async def get(self, kind: ItemKind, item_id: str) -> Optional[WorkItem]:
        item = self._items.get((kind, item_id))
        return item.copy() if item else None

    async def insert(self, item: WorkItem) -> WorkItem:
        async with self._lock:
            self._items[(item.kind, item.item_id)] = item.copy()
        return item.copy()

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
        async with self._lock:
            item = self._items.get((kind, item_id))
            if item is None or not _claimable(item, moderator_id, stale_before, override):
                return None
            item.assigned_to = moderator_id
            item.assigned_at = now
            item.status = ItemStatus.IN_REVIEW
            item.updated_at = now
            return item.copy()

    async def release(
        self,
        kind: ItemKind,
        item_id: str,
        *,
        expected_assignee: str,
        now: datetime,
    ) -> Optional[WorkItem]:
        async with self._lock:
            item = self._items.get((kind, item_id))
            if (
                item is None
                or item.is_deleted
                or item.status != ItemStatus.IN_REVIEW
                or item.assigned_to != expected_assignee
            ):
                return None
            item.assigned_to = None
            item.assigned_at = None
            item.status = ItemStatus.PENDING
            item.updated_at = now
            return item.copy()

    async def list_visible(self, kind: ItemKind, query: ListQuery) -> tuple[list[WorkItem], int]:
        window = query.now - query.stale_before
        matching = [
            item
            for (item_kind, _), item in self._items.items()
            if item_kind == kind
            and item.status in query.statuses
            and (query.subject_type is None or item.subject_type == query.subject_type)
            and visibility.is_visible(item, query.viewer, query.now, window)
        ]
        matching.sort(key=pagination.sort_key, reverse=True)
        total = len(matching)
        if query.cursor is not None:
            matching = [item for item in matching if pagination.is_after(item, query.cursor)]
        return [item.copy() for item in matching[: query.limit + 1]], total

    async def count_open(
        self,
        kind: ItemKind,
        *,
        viewer: visibility.Viewer,
        now: datetime,
        stale_before: datetime,
    ) -> dict[str, int]:
        window = now - stale_before
        counts: dict[str, int] = {}
        for (item_kind, _), item in self._items.items():
            if item_kind != kind or item.status not in OPEN_STATUSES:
                continue
            if not visibility.is_visible(item, viewer, now, window):
                continue
            key = item.subject_type.value
            counts[key] = counts.get(key, 0) + 1
        return counts

    async def list_by_submitter(self, submitter_id: str, *, limit: int) -> list[WorkItem]:
        mine = [
            item
            for item in self._items.values()
            if item.submitter_id == submitter_id and not item.is_deleted
        ]
        mine.sort(key=pagination.sort_key, reverse=True)
        return [item.copy() for item in mine[:limit]]

    async def submission_exists(
        self,
        kind: ItemKind,
        *,
        submitter_id: str,
        subject_id: str,
        open_only: bool,
    ) -> bool:
        for (item_kind, _), item in self._items.items():
            if item_kind != kind or item.is_deleted:
                continue
            if item.submitter_id != submitter_id or item.subject_id != subject_id:
                continue
            if open_only and item.status not in OPEN_STATUSES:
                continue
            return True
        return False

    async def soft_delete(self, kind: ItemKind, item_id: str, *, now: datetime) -> Optional[WorkItem]:
        async with self._lock:
            item = self._items.get((kind, item_id))
            if item is None or item.is_deleted:
                return None
            item.deleted_at = now
            item.updated_at = now
            return item.copy()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_InMemoryUnitOfWork]:
        async with self._lock:
            snapshot = {key: item.copy() for key, item in self._items.items()}
            saved = [(participant, participant.snapshot()) for participant in self._enlisted]
            try:
                yield _InMemoryUnitOfWork(self)
            except BaseException:
                self._items = snapshot
                for participant, state in saved:
                    participant.restore(state)
                raise

    def all_items(self) -> Sequence[WorkItem]:
        return [item.copy() for item in self._items.values()]

