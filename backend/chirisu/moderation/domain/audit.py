"""Append-only audit trail for queue mutations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence

from chirisu.moderation.domain.work_items import ItemKind
from chirisu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AuditEntry:
    actor_id: Optional[str]
    action: str
    item_kind: ItemKind
    item_id: str
    before: Mapping[str, Any]
    after: Mapping[str, Any]
    meta: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditRepository(Protocol):
    async def write(self, entry: AuditEntry) -> None:
        ...

    async def list_for_item(self, kind: ItemKind, item_id: str) -> Sequence[AuditEntry]:
        ...


class InMemoryAuditRepository:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    async def list_for_item(self, kind: ItemKind, item_id: str) -> Sequence[AuditEntry]:
        return [entry for entry in self.entries if entry.item_kind == kind and entry.item_id == item_id]


class AuditRecorder:
    """Writes audit entries without ever failing the operation being audited."""

    def __init__(self, repository: AuditRepository) -> None:
        self.repository = repository

    async def record(
        self,
        *,
        actor_id: Optional[str],
        action: str,
        kind: ItemKind,
        item_id: str,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> bool:
        entry = AuditEntry(
            actor_id=actor_id,
            action=action,
            item_kind=kind,
            item_id=item_id,
            before=dict(before or {}),
            after=dict(after or {}),
            meta=dict(meta or {}),
        )
        start = time.perf_counter()
        try:
            await self.repository.write(entry)
        except Exception:
            obs_metrics.inc_audit_failure()
            logger.warning(
                "audit write failed; continuing in degraded mode",
                exc_info=True,
                extra={"audit_action": action, "item_kind": kind.value, "item_id": item_id},
            )
            return False
        obs_metrics.observe_audit_write(time.perf_counter() - start)
        return True

    async def trail(self, kind: ItemKind, item_id: str) -> Sequence[AuditEntry]:
        entries = await self.repository.list_for_item(kind, item_id)
        return sorted(entries, key=lambda entry: entry.created_at)
