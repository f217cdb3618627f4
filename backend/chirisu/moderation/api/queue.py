"""Staff-facing moderation queue endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from chirisu.infra.auth import AuthenticatedUser, get_current_user
from chirisu.moderation.api.deps import (
    AuditEntryOut,
    WorkItemOut,
    get_queue_service_dep,
    get_staff_context,
    http_error,
    parse_kind,
)
from chirisu.moderation.domain.errors import ModerationWorkflowError
from chirisu.moderation.domain.queue_service import QueueService
from chirisu.moderation.domain.rbac import ROLE_ADMIN, StaffContext
from chirisu.moderation.domain.work_items import ItemKind
from chirisu.obs import metrics as obs_metrics

router = APIRouter(prefix="/api/mod/v1/queue", tags=["moderation-queue"])


class QueuePageOut(BaseModel):
    items: list[WorkItemOut]
    next: str | None = None
    total: int


class ItemDetailOut(WorkItemOut):
    audit: list[AuditEntryOut]


class QueueCountsOut(BaseModel):
    by_kind: dict[str, int]
    by_subject_type: dict[str, dict[str, int]]
    total: int


class ReviewIn(BaseModel):
    action: str = Field(..., description="approve, reject, needs_changes, resolve or dismiss")
    resolution_reason: str | None = None
    action_taken: str | None = None


@router.get("/counts", response_model=QueueCountsOut)
async def queue_counts(
    context: StaffContext = Depends(get_staff_context),
    service: QueueService = Depends(get_queue_service_dep),
) -> QueueCountsOut:
    counts = await service.counts(context)
    return QueueCountsOut(by_kind=counts.by_kind, by_subject_type=counts.by_subject_type, total=counts.total)


@router.get("/{kind}", response_model=QueuePageOut)
async def list_queue(
    *,
    kind: ItemKind = Depends(parse_kind),
    status_filter: str | None = Query(default=None, alias="status"),
    subject_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    after: str | None = Query(default=None),
    context: StaffContext = Depends(get_staff_context),
    service: QueueService = Depends(get_queue_service_dep),
) -> QueuePageOut:
    try:
        page = await service.list_queue(
            kind,
            context,
            status=status_filter,
            subject_type=subject_type,
            limit=limit,
            after=after,
        )
    except ModerationWorkflowError as exc:
        obs_metrics.inc_admin_request("queue.list", "400")
        raise http_error(exc) from exc
    obs_metrics.inc_admin_request("queue.list", "200")
    return QueuePageOut(
        items=[WorkItemOut.from_entry(entry) for entry in page.items],
        next=page.next_cursor,
        total=page.total,
    )


@router.get("/{kind}/{item_id}", response_model=ItemDetailOut)
async def get_item(
    item_id: str,
    kind: ItemKind = Depends(parse_kind),
    context: StaffContext = Depends(get_staff_context),
    service: QueueService = Depends(get_queue_service_dep),
) -> ItemDetailOut:
    try:
        detail = await service.get_detail(kind, item_id, context)
    except ModerationWorkflowError as exc:
        raise http_error(exc) from exc
    base = WorkItemOut.from_entry(detail.entry)
    return ItemDetailOut(**base.model_dump(), audit=[AuditEntryOut.from_model(entry) for entry in detail.audit])


@router.post("/{kind}/{item_id}/assign", response_model=WorkItemOut)
async def assign_item(
    item_id: str,
    kind: ItemKind = Depends(parse_kind),
    context: StaffContext = Depends(get_staff_context),
    service: QueueService = Depends(get_queue_service_dep),
) -> WorkItemOut:
    try:
        item = await service.assign(kind, item_id, context)
    except ModerationWorkflowError as exc:
        error = http_error(exc)
        obs_metrics.inc_admin_request("queue.assign", str(error.status_code))
        raise error from exc
    obs_metrics.inc_admin_request("queue.assign", "200")
    return WorkItemOut.from_model(item, username=context.username)


@router.delete("/{kind}/{item_id}/assign", response_model=WorkItemOut)
async def release_item(
    item_id: str,
    kind: ItemKind = Depends(parse_kind),
    context: StaffContext = Depends(get_staff_context),
    service: QueueService = Depends(get_queue_service_dep),
) -> WorkItemOut:
    try:
        item = await service.release(kind, item_id, context)
    except ModerationWorkflowError as exc:
        raise http_error(exc) from exc
    obs_metrics.inc_admin_request("queue.release", "200")
    return WorkItemOut.from_model(item)


@router.patch("/{kind}/{item_id}", response_model=WorkItemOut)
async def review_item(
    item_id: str,
    body: ReviewIn,
    kind: ItemKind = Depends(parse_kind),
    context: StaffContext = Depends(get_staff_context),
    service: QueueService = Depends(get_queue_service_dep),
) -> WorkItemOut:
    try:
        item = await service.review(
            kind,
            item_id,
            context,
            action=body.action,
            resolution_reason=body.resolution_reason,
            action_taken=body.action_taken,
        )
    except ModerationWorkflowError as exc:
        error = http_error(exc)
        obs_metrics.inc_admin_request("queue.review", str(error.status_code))
        raise error from exc
    obs_metrics.inc_admin_request("queue.review", "200")
    return WorkItemOut.from_model(item)


@router.delete("/{kind}/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    item_id: str,
    kind: ItemKind = Depends(parse_kind),
    user: AuthenticatedUser = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service_dep),
) -> Response:
    try:
        await service.delete(kind, item_id, actor_id=user.id, is_admin=user.has_role(ROLE_ADMIN))
    except ModerationWorkflowError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
