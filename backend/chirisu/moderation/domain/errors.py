"""Exception hierarchy for the moderation work-queue."""

from __future__ import annotations


class ModerationWorkflowError(Exception):
    """Base class for moderation workflow failures.

    ``code`` is the stable machine-readable identifier surfaced in API errors.
    """

    code = "moderation_error"

    def __init__(self, code: str | None = None, message: str | None = None) -> None:
        if code:
            self.code = code
        super().__init__(message or self.code)


class WorkItemNotFoundError(ModerationWorkflowError):
    code = "item_not_found"


class ItemClosedError(WorkItemNotFoundError):
    """A terminal item was asked to change status or be claimed again."""

    code = "item_closed"


class UnauthorizedError(ModerationWorkflowError):
    code = "invalid_token"


class ForbiddenError(ModerationWorkflowError):
    code = "forbidden"


class AssignmentConflictError(ModerationWorkflowError):
    code = "already_assigned"

    def __init__(self, assigned_to: str, assigned_to_username: str | None = None) -> None:
        super().__init__(self.code, f"item already assigned to {assigned_to_username or assigned_to}")
        self.assigned_to = assigned_to
        self.assigned_to_username = assigned_to_username


class WorkflowValidationError(ModerationWorkflowError):
    code = "validation_error"


class ApplyFailureError(ModerationWorkflowError):
    code = "apply_failed"

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(self.code, message or reason)
        self.reason = reason


class DuplicateReportError(ModerationWorkflowError):
    code = "duplicate_report"
