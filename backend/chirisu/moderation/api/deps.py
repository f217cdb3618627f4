"""Shared dependencies and error translation for moderation routers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import Depends, HTTPException, status
from pydantic import BaseModel

from chirisu.infra.auth import AuthenticatedUser, get_current_user
from chirisu.moderation.domain.audit import AuditEntry
from chirisu.moderation.domain.container import get_queue_service
from chirisu.moderation.domain.errors import (
    ApplyFailureError,
    AssignmentConflictError,
    DuplicateReportError,
    ForbiddenError,
    ModerationWorkflowError,
    UnauthorizedError,
    WorkflowValidationError,
    WorkItemNotFoundError,
)
from chirisu.moderation.domain.queue_service import QueueService
from chirisu.moderation.domain.rbac import StaffContext, resolve_staff_context
from chirisu.moderation.domain.work_items import ItemKind, QueueEntry, WorkItem

_STATUS_BY_ERROR: tuple[tuple[type[ModerationWorkflowError], int], ...] = (
    (WorkItemNotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (AssignmentConflictError, status.HTTP_409_CONFLICT),
    (DuplicateReportError, status.HTTP_409_CONFLICT),
    (WorkflowValidationError, status.HTTP_400_BAD_REQUEST),
    (ApplyFailureError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def http_error(exc: ModerationWorkflowError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    detail: Any = exc.code
    if isinstance(exc, AssignmentConflictError):
        detail = {
            "code": exc.code,
            "assigned_to": exc.assigned_to,
            "assigned_to_username": exc.assigned_to_username,
        }
    elif isinstance(exc, ApplyFailureError):
        detail = {"code": exc.code, "reason": exc.reason}
    return HTTPException(status_code=status_code, detail=detail)


def get_queue_service_dep() -> QueueService:
    return get_queue_service()


async def get_staff_context(user: AuthenticatedUser = Depends(get_current_user)) -> StaffContext:
    try:
        return resolve_staff_context(user)
    except ForbiddenError as exc:
        raise http_error(exc) from exc


def parse_kind(kind: str) -> ItemKind:
    try:
        return ItemKind.from_slug(kind)
    except ValueError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="unknown_kind") from exc


class WorkItemOut(BaseModel):
    id: str
    kind: str
    subject_type: str
    subject_id: str | None
    submitter_id: str | None
    payload: dict[str, Any]
    status: str
    assigned_to: str | None = None
    assigned_to_username: str | None = None
    assigned_at: datetime | None = None
    reassignable: bool = False
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    resolution_notes: str | None = None
    action_taken: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, item: WorkItem, *, username: str | None = None, reassignable: bool = False) -> "WorkItemOut":
        return cls(
            id=item.item_id,
            kind=item.kind.value,
            subject_type=item.subject_type.value,
            subject_id=item.subject_id,
            submitter_id=item.submitter_id,
            payload=dict(item.payload),
            status=item.status.value,
            assigned_to=item.assigned_to,
            assigned_to_username=username,
            assigned_at=item.assigned_at,
            reassignable=reassignable,
            reviewed_by=item.reviewed_by,
            reviewed_at=item.reviewed_at,
            resolution_notes=item.resolution_notes,
            action_taken=item.action_taken,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "WorkItemOut":
        return cls.from_model(entry.item, username=entry.assigned_to_username, reassignable=entry.reassignable)


class AuditEntryOut(BaseModel):
    actor_id: str | None
    action: str
    before: dict[str, Any]
    after: dict[str, Any]
    meta: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_model(cls, entry: AuditEntry) -> "AuditEntryOut":
        return cls(
            actor_id=entry.actor_id,
            action=entry.action,
            before=dict(entry.before),
            after=dict(entry.after),
            meta=dict(entry.meta),
            created_at=entry.created_at,
        )
