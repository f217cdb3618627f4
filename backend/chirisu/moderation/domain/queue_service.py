"""Moderation work-queue orchestration: submission, claims, review and audit."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from chirisu.infra.soft_delete import now_utc
from chirisu.moderation.domain import state_machine, visibility
from chirisu.moderation.domain.audit import AuditEntry, AuditRecorder
from chirisu.moderation.domain.change_applier import ChangeApplier
from chirisu.moderation.domain.directory import SubjectResolver, UserDirectory
from chirisu.moderation.domain.errors import (
    ApplyFailureError,
    AssignmentConflictError,
    DuplicateReportError,
    ForbiddenError,
    ItemClosedError,
    ModerationWorkflowError,
    UnauthorizedError,
    WorkItemNotFoundError,
    WorkflowValidationError,
)
from chirisu.moderation.domain.notifications import Notification, NotificationSink
from chirisu.moderation.domain.pagination import KeysetCursor, decode_cursor, encode_cursor
from chirisu.moderation.domain.rbac import StaffContext
from chirisu.moderation.domain.repository import ListQuery, WorkItemRepository
from chirisu.moderation.domain.work_items import (
    ALLOWED_SUBJECTS,
    OPEN_STATUSES,
    ItemKind,
    ItemStatus,
    QueueCounts,
    QueueEntry,
    QueuePage,
    SubjectType,
    WorkItem,
)
from chirisu.obs import metrics as obs_metrics
from chirisu.settings import settings

logger = logging.getLogger(__name__)

__all__ = [
    "ApplyFailureError",
    "AssignmentConflictError",
    "DuplicateReportError",
    "ForbiddenError",
    "ItemDetail",
    "ModerationWorkflowError",
    "QueueService",
    "REVIEW_REPORT_REASONS",
    "UnauthorizedError",
    "WorkItemNotFoundError",
    "WorkflowValidationError",
]

REVIEW_REPORT_REASONS = frozenset(
    {
        "spam",
        "offensive_language",
        "harassment",
        "spoilers",
        "irrelevant_content",
        "misinformation",
        "other",
    }
)

_CLAIM_FIELDS = ("status", "assigned_to", "assigned_at")
_REVIEW_FIELDS = (
    "status",
    "subject_id",
    "reviewed_by",
    "reviewed_at",
    "resolution_notes",
    "action_taken",
)
_SUBMIT_FIELDS = ("status", "subject_type", "subject_id", "submitter_id")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(slots=True)
class ItemDetail:
    entry: QueueEntry
    audit: Sequence[AuditEntry]


@dataclass
class QueueService:
    repository: WorkItemRepository
    audit: AuditRecorder
    applier: ChangeApplier
    users: UserDirectory
    subject_resolver: SubjectResolver
    notifications: NotificationSink | None = None
    window: timedelta = field(default_factory=visibility.default_window)
    reason_min_length: int = field(default_factory=lambda: settings.moderation_reason_min_length)
    page_size_max: int = field(default_factory=lambda: settings.moderation_page_size_max)
    notify_outcomes: bool = field(default_factory=lambda: settings.moderation_notify_outcomes)
    clock: Callable[[], datetime] = now_utc

    # Submissions

    async def submit(
        self,
        kind: ItemKind,
        *,
        submitter_id: Optional[str],
        subject_type: str,
        subject_id: Optional[str],
        payload: Mapping[str, Any],
    ) -> WorkItem:
        try:
            subject = SubjectType(subject_type)
        except ValueError as exc:
            raise WorkflowValidationError("invalid_subject_type") from exc
        if subject not in ALLOWED_SUBJECTS[kind]:
            raise WorkflowValidationError("invalid_subject_type", f"{subject.value} cannot be used for {kind.value}")
        if submitter_id is None and kind is not ItemKind.CONTENT_REPORT:
            raise UnauthorizedError()
        subject_id = _clean(subject_id)
        if subject_id is None and not kind.is_contribution:
            raise WorkflowValidationError("subject_id_required")

        if kind is ItemKind.CONTENT_REPORT:
            body = self._content_report_payload(payload)
        elif kind is ItemKind.REVIEW_REPORT:
            body = await self._review_report_payload(submitter_id, subject_id, payload)
        elif kind is ItemKind.USER_REPORT:
            body = await self._user_report_payload(submitter_id, subject_id, payload)
        elif kind is ItemKind.COMMENT_REPORT:
            body = await self._comment_report_payload(submitter_id, subject_id, payload)
        else:
            body = self._contribution_payload(payload)

        now = self.clock()
        item = WorkItem(
            item_id=str(uuid.uuid4()),
            kind=kind,
            subject_type=subject,
            subject_id=subject_id,
            submitter_id=submitter_id,
            payload=body,
            status=ItemStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        stored = await self.repository.insert(item)
        await self.audit.record(
            actor_id=submitter_id,
            action="submit",
            kind=kind,
            item_id=stored.item_id,
            after=stored.snapshot(_SUBMIT_FIELDS),
        )
        obs_metrics.inc_submission(kind.value)
        obs_metrics.inc_transition(kind.value, "submitted")
        return stored

    def _content_report_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        title = _clean(payload.get("title"))
        description = _clean(payload.get("description"))
        reason = _clean(payload.get("reason"))
        if reason is None and title:
            reason = f"{title}: {description}" if description else title
        if reason is None:
            raise WorkflowValidationError("reason_required")
        body: dict[str, Any] = {"reason": reason}
        if description:
            body["description"] = description
        return body

    async def _review_report_payload(
        self,
        reporter_id: Optional[str],
        review_id: Optional[str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        assert reporter_id is not None and review_id is not None
        reason = _clean(payload.get("reason"))
        comments = _clean(payload.get("comments") or payload.get("description"))
        if reason not in REVIEW_REPORT_REASONS:
            raise WorkflowValidationError("invalid_reason")
        if reason == "other" and comments is None:
            raise WorkflowValidationError("comments_required")
        owner = await self.subject_resolver.resolve_owner(SubjectType.REVIEW.value, review_id)
        if owner is None:
            raise WorkItemNotFoundError("subject_not_found")
        if owner == reporter_id:
            raise WorkflowValidationError("cannot_report_own_review")
        if await self.repository.submission_exists(
            ItemKind.REVIEW_REPORT, submitter_id=reporter_id, subject_id=review_id, open_only=False
        ):
            raise DuplicateReportError()
        body: dict[str, Any] = {"reason": reason}
        if comments:
            body["description"] = comments
        return body

    async def _user_report_payload(
        self,
        reporter_id: Optional[str],
        user_id: Optional[str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        assert reporter_id is not None and user_id is not None
        if user_id == reporter_id:
            raise WorkflowValidationError("cannot_report_self")
        reason = _clean(payload.get("reason"))
        if reason is None:
            raise WorkflowValidationError("reason_required")
        if await self.repository.submission_exists(
            ItemKind.USER_REPORT, submitter_id=reporter_id, subject_id=user_id, open_only=True
        ):
            raise DuplicateReportError()
        body: dict[str, Any] = {"reason": reason}
        description = _clean(payload.get("description"))
        if description:
            body["description"] = description
        return body

    async def _comment_report_payload(
        self,
        reporter_id: Optional[str],
        comment_id: Optional[str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        assert reporter_id is not None and comment_id is not None
        reason = _clean(payload.get("reason"))
        comments = _clean(payload.get("comments") or payload.get("description"))
        if reason not in REVIEW_REPORT_REASONS:
            raise WorkflowValidationError("invalid_reason")
        if reason == "other" and comments is None:
            raise WorkflowValidationError("comments_required")
        author = await self.subject_resolver.resolve_owner(SubjectType.COMMENT.value, comment_id)
        if author is None:
            raise WorkItemNotFoundError("subject_not_found")
        if author == reporter_id:
            raise WorkflowValidationError("cannot_report_own_comment")
        if await self.repository.submission_exists(
            ItemKind.COMMENT_REPORT, submitter_id=reporter_id, subject_id=comment_id, open_only=False
        ):
            raise DuplicateReportError()
        # Author as of submission time.
        body: dict[str, Any] = {"reason": reason, "reported_user_id": author}
        if comments:
            body["description"] = comments
        return body

    def _contribution_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        changes = payload.get("changes")
        if not isinstance(changes, Mapping) or not changes:
            raise WorkflowValidationError("changes_required")
        body: dict[str, Any] = {"changes": dict(changes)}
        for key in ("previous", "notes", "sources"):
            if payload.get(key):
                body[key] = payload[key]
        return body

    # Claims

    async def assign(self, kind: ItemKind, item_id: str, staff: StaffContext) -> WorkItem:
        item = await self._require(kind, item_id)
        if item.is_terminal:
            raise ItemClosedError()
        if item.assigned_to == staff.actor_id and item.status == ItemStatus.IN_REVIEW:
            return item

        now = self.clock()
        stale_before = now - self.window
        claimed = await self.repository.claim(
            kind,
            item_id,
            moderator_id=staff.actor_id,
            now=now,
            stale_before=stale_before,
            override=staff.is_admin,
        )
        if claimed is None:
            current = await self._require(kind, item_id)
            if current.is_terminal:
                raise ItemClosedError()
            if current.assigned_to == staff.actor_id:
                return current
            obs_metrics.inc_claim_conflict(kind.value)
            holder = current.assigned_to or ""
            names = await self._usernames([holder])
            raise AssignmentConflictError(holder, names.get(holder))

        meta: dict[str, Any] = {}
        previous = item.assigned_to
        if previous and previous != staff.actor_id:
            meta["previous_assignee"] = previous
            stale = item.assigned_at is not None and item.assigned_at < stale_before
            meta["takeover"] = "stale_claim" if stale else "admin_override"
        await self.audit.record(
            actor_id=staff.actor_id,
            action="assign",
            kind=kind,
            item_id=item_id,
            before=item.snapshot(_CLAIM_FIELDS),
            after=claimed.snapshot(_CLAIM_FIELDS),
            meta=meta,
        )
        obs_metrics.inc_transition(kind.value, "assigned")
        return claimed

    async def release(self, kind: ItemKind, item_id: str, staff: StaffContext) -> WorkItem:
        item = await self._require(kind, item_id)
        state_machine.check_release(item, actor_id=staff.actor_id, is_admin=staff.is_admin)
        assert item.assigned_to is not None
        released = await self.repository.release(
            kind,
            item_id,
            expected_assignee=item.assigned_to,
            now=self.clock(),
        )
        if released is None:
            # The claim moved between the read and the conditional write.
            current = await self._require(kind, item_id)
            state_machine.check_release(current, actor_id=staff.actor_id, is_admin=staff.is_admin)
            holder = current.assigned_to or ""
            names = await self._usernames([holder])
            raise AssignmentConflictError(holder, names.get(holder))

        meta: dict[str, Any] = {}
        if item.assigned_to != staff.actor_id:
            meta["released_for"] = item.assigned_to
        await self.audit.record(
            actor_id=staff.actor_id,
            action="release",
            kind=kind,
            item_id=item_id,
            before=item.snapshot(_CLAIM_FIELDS),
            after=released.snapshot(_CLAIM_FIELDS),
            meta=meta,
        )
        obs_metrics.inc_transition(kind.value, "released")
        return released

    # Review

    async def review(
        self,
        kind: ItemKind,
        item_id: str,
        staff: StaffContext,
        *,
        action: str,
        resolution_reason: Optional[str] = None,
        action_taken: Optional[str] = None,
    ) -> WorkItem:
        review_action = state_machine.parse_action(action)
        target = state_machine.target_status(kind, review_action)
        reason = state_machine.validate_reason(
            review_action, resolution_reason, min_length=self.reason_min_length
        )
        now = self.clock()
        try:
            async with self.repository.transaction() as uow:
                item = await uow.lock(kind, item_id)
                if item is None or item.is_deleted:
                    raise WorkItemNotFoundError()
                if not state_machine.check_transition(
                    item, target, actor_id=staff.actor_id, is_admin=staff.is_admin
                ):
                    return item
                before = item.snapshot(_REVIEW_FIELDS)
                if kind.is_contribution and target == ItemStatus.APPROVED:
                    item.subject_id = await self.applier.apply(item, conn=uow.connection)
                item.status = target
                item.reviewed_by = staff.actor_id
                item.reviewed_at = max(now, item.assigned_at) if item.assigned_at else now
                item.resolution_notes = reason
                item.action_taken = _clean(action_taken)
                item.updated_at = now
                saved = await uow.save_review(item)
        except ApplyFailureError as exc:
            logger.warning(
                "approval rolled back",
                extra={"item_kind": kind.value, "item_id": item_id, "apply_reason": exc.reason},
            )
            raise

        await self.audit.record(
            actor_id=staff.actor_id,
            action=review_action.value,
            kind=kind,
            item_id=item_id,
            before=before,
            after=saved.snapshot(_REVIEW_FIELDS),
        )
        obs_metrics.inc_transition(kind.value, target.value)
        await self._notify_outcome(saved, staff.actor_id)
        return saved

    # Reads

    async def list_queue(
        self,
        kind: ItemKind,
        staff: StaffContext,
        *,
        status: Optional[str] = None,
        subject_type: Optional[str] = None,
        limit: int = 50,
        after: Optional[str] = None,
    ) -> QueuePage:
        start = time.perf_counter()
        try:
            statuses = frozenset({ItemStatus(status)}) if status else OPEN_STATUSES
        except ValueError as exc:
            raise WorkflowValidationError("invalid_status") from exc
        try:
            subject = SubjectType(subject_type) if subject_type else None
        except ValueError as exc:
            raise WorkflowValidationError("invalid_subject_type") from exc
        cursor: KeysetCursor | None = None
        if after:
            try:
                cursor = decode_cursor(after)
            except ValueError as exc:
                raise WorkflowValidationError("invalid_cursor") from exc
        limit = max(1, min(limit, self.page_size_max))
        now = self.clock()
        rows, total = await self.repository.list_visible(
            kind,
            ListQuery(
                viewer=staff,
                now=now,
                stale_before=now - self.window,
                statuses=statuses,
                subject_type=subject,
                cursor=cursor,
                limit=limit,
            ),
        )
        has_next = len(rows) > limit
        rows = rows[:limit]
        next_cursor = encode_cursor(KeysetCursor.from_item(rows[-1])) if has_next and rows else None
        entries = await self._entries(rows, staff, now)
        obs_metrics.observe_queue_list((time.perf_counter() - start) * 1000.0)
        return QueuePage(items=entries, next_cursor=next_cursor, total=total)

    async def get_detail(self, kind: ItemKind, item_id: str, staff: StaffContext) -> ItemDetail:
        item = await self._require(kind, item_id)
        now = self.clock()
        if not visibility.is_visible(item, staff, now, self.window):
            raise WorkItemNotFoundError()
        entries = await self._entries([item], staff, now)
        trail = await self.audit.trail(kind, item_id)
        return ItemDetail(entry=entries[0], audit=trail)

    async def counts(self, staff: StaffContext) -> QueueCounts:
        now = self.clock()
        result = QueueCounts()
        for kind in ItemKind:
            per_subject = await self.repository.count_open(
                kind, viewer=staff, now=now, stale_before=now - self.window
            )
            result.by_subject_type[kind.value] = per_subject
            result.by_kind[kind.value] = sum(per_subject.values())
        return result

    async def list_mine(self, submitter_id: str, *, limit: int = 50) -> list[WorkItem]:
        limit = max(1, min(limit, self.page_size_max))
        return await self.repository.list_by_submitter(submitter_id, limit=limit)

    # Soft delete

    async def delete(self, kind: ItemKind, item_id: str, *, actor_id: str, is_admin: bool) -> None:
        item = await self._require(kind, item_id)
        if not is_admin and item.submitter_id != actor_id:
            raise ForbiddenError("not_submitter")
        deleted = await self.repository.soft_delete(kind, item_id, now=self.clock())
        if deleted is None:
            raise WorkItemNotFoundError()
        await self.audit.record(
            actor_id=actor_id,
            action="delete",
            kind=kind,
            item_id=item_id,
            before={"deleted_at": None},
            after=deleted.snapshot(("deleted_at",)),
        )
        obs_metrics.inc_transition(kind.value, "deleted")

    # Helpers

    async def _require(self, kind: ItemKind, item_id: str) -> WorkItem:
        item = await self.repository.get(kind, item_id)
        if item is None or item.is_deleted:
            raise WorkItemNotFoundError()
        return item

    async def _usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = [uid for uid in user_ids if uid]
        if not ids:
            return {}
        try:
            return await self.users.usernames(ids)
        except Exception:  # noqa: BLE001 - usernames are decoration only
            logger.warning("username lookup failed", exc_info=True)
            return {}

    async def _entries(self, items: Sequence[WorkItem], staff: StaffContext, now: datetime) -> list[QueueEntry]:
        names = await self._usernames({item.assigned_to for item in items if item.assigned_to})
        return [
            QueueEntry(
                item=item,
                assigned_to_username=names.get(item.assigned_to) if item.assigned_to else None,
                reassignable=visibility.is_reassignable(item, staff.actor_id, now, self.window),
            )
            for item in items
        ]

    async def _notify_outcome(self, item: WorkItem, actor_id: str) -> None:
        if not self.notifications or not self.notify_outcomes or not item.submitter_id:
            return
        notification = Notification(
            user_id=item.submitter_id,
            type=f"moderation.{item.kind.value}.{item.status.value}",
            ref_id=item.item_id,
            actor_id=actor_id,
            payload={
                "subject_type": item.subject_type.value,
                "subject_id": item.subject_id,
                "status": item.status.value,
                "resolution_notes": item.resolution_notes,
            },
        )
        try:
            await self.notifications.send(notification)
        except Exception:  # noqa: BLE001 - notification failures should not block the transition
            obs_metrics.inc_notify_failure(item.kind.value)
            logger.exception(
                "failed to notify submitter of outcome",
                extra={"item_kind": item.kind.value, "item_id": item.item_id},
            )
