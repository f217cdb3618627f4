"""Review lifecycle shared by every work item kind.

pending -> in_review happens on assign, in_review -> pending on release. From
in_review the assignee (or an admin) moves the item to one of the terminal
statuses its kind allows. Terminal statuses never change again.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional

from chirisu.moderation.domain.errors import (
    ForbiddenError,
    ItemClosedError,
    WorkflowValidationError,
)
from chirisu.moderation.domain.work_items import ItemKind, ItemStatus, WorkItem


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    NEEDS_CHANGES = "needs_changes"
    RESOLVE = "resolve"
    DISMISS = "dismiss"


ACTION_TARGETS: Mapping[ReviewAction, ItemStatus] = {
    ReviewAction.APPROVE: ItemStatus.APPROVED,
    ReviewAction.REJECT: ItemStatus.REJECTED,
    ReviewAction.NEEDS_CHANGES: ItemStatus.NEEDS_CHANGES,
    ReviewAction.RESOLVE: ItemStatus.RESOLVED,
    ReviewAction.DISMISS: ItemStatus.DISMISSED,
}

_REPORT_TERMINALS = frozenset({ItemStatus.RESOLVED, ItemStatus.DISMISSED})

KIND_TERMINALS: Mapping[ItemKind, frozenset[ItemStatus]] = {
    ItemKind.CONTENT_REPORT: _REPORT_TERMINALS,
    ItemKind.REVIEW_REPORT: _REPORT_TERMINALS,
    ItemKind.USER_REPORT: _REPORT_TERMINALS,
    ItemKind.COMMENT_REPORT: _REPORT_TERMINALS,
    ItemKind.CONTENT_CONTRIBUTION: frozenset(
        {ItemStatus.APPROVED, ItemStatus.REJECTED, ItemStatus.NEEDS_CHANGES}
    ),
}

REASON_REQUIRED = frozenset({ReviewAction.REJECT, ReviewAction.DISMISS, ReviewAction.NEEDS_CHANGES})


def parse_action(value: str) -> ReviewAction:
    try:
        return ReviewAction(value)
    except ValueError as exc:
        raise WorkflowValidationError("invalid_action") from exc


def target_status(kind: ItemKind, action: ReviewAction) -> ItemStatus:
    target = ACTION_TARGETS[action]
    if target not in KIND_TERMINALS[kind]:
        raise WorkflowValidationError("invalid_action", f"{action.value} is not valid for {kind.value}")
    return target


def validate_reason(action: ReviewAction, reason: Optional[str], *, min_length: int) -> Optional[str]:
    """Return the trimmed reason, enforcing the minimum where the action needs one."""
    trimmed = (reason or "").strip() or None
    if action in REASON_REQUIRED and (trimmed is None or len(trimmed) < min_length):
        raise WorkflowValidationError(
            "resolution_reason_required",
            f"a reason of at least {min_length} characters is required",
        )
    return trimmed


def check_transition(item: WorkItem, target: ItemStatus, *, actor_id: str, is_admin: bool) -> bool:
    """Validate ``item -> target`` for the caller.

    Returns False when the item already sits in ``target`` (idempotent repeat),
    True when the transition should be written. Only the assignee or an admin
    gets past the first check; the reviewer stays in ``assigned_to`` after a
    terminal move, so repeats are limited to the same callers.
    """
    if not is_admin and item.assigned_to != actor_id:
        raise ForbiddenError("not_assignee")
    if item.status == target:
        return False
    if item.is_terminal:
        raise ItemClosedError()
    if item.status != ItemStatus.IN_REVIEW:
        raise WorkflowValidationError("invalid_transition", "item must be assigned before review")
    if target not in KIND_TERMINALS[item.kind]:
        raise WorkflowValidationError("invalid_action")
    return True


def check_release(item: WorkItem, *, actor_id: str, is_admin: bool) -> None:
    if item.assigned_to is None or item.status != ItemStatus.IN_REVIEW:
        raise WorkflowValidationError("not_assigned")
    if not is_admin and item.assigned_to != actor_id:
        raise ForbiddenError("not_assignee")
