"""Endpoints for users submitting reports and contributions."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from chirisu.infra.auth import AuthenticatedUser, get_current_user, get_optional_user
from chirisu.moderation.api.deps import WorkItemOut, get_queue_service_dep, http_error, parse_kind
from chirisu.moderation.domain.errors import ModerationWorkflowError
from chirisu.moderation.domain.queue_service import QueueService
from chirisu.moderation.domain.work_items import ItemKind

router = APIRouter(prefix="/api/mod/v1/submissions", tags=["moderation-submissions"])


class SubmissionIn(BaseModel):
    subject_type: str
    subject_id: str | None = None
    reason: str | None = None
    title: str | None = None
    description: str | None = None
    comments: str | None = None
    changes: dict[str, Any] | None = None
    previous: dict[str, Any] | None = None
    notes: str | None = None
    sources: list[str] | None = Field(default=None, max_length=20)

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"subject_type", "subject_id"}, exclude_none=True)


@router.get("/mine", response_model=list[WorkItemOut])
async def list_my_submissions(
    limit: int = Query(default=50, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    service: QueueService = Depends(get_queue_service_dep),
) -> list[WorkItemOut]:
    items = await service.list_mine(user.id, limit=limit)
    return [WorkItemOut.from_model(item) for item in items]


@router.post("/{kind}", response_model=WorkItemOut, status_code=status.HTTP_201_CREATED)
async def submit(
    body: SubmissionIn,
    kind: ItemKind = Depends(parse_kind),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    service: QueueService = Depends(get_queue_service_dep),
) -> WorkItemOut:
    if user is None and kind is not ItemKind.CONTENT_REPORT:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
    try:
        item = await service.submit(
            kind,
            submitter_id=user.id if user else None,
            subject_type=body.subject_type,
            subject_id=body.subject_id,
            payload=body.payload(),
        )
    except ModerationWorkflowError as exc:
        raise http_error(exc) from exc
    return WorkItemOut.from_model(item)
