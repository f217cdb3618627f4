"""Work item model shared by reports and contributions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping


class ItemKind(str, Enum):
    CONTENT_REPORT = "content_report"
    CONTENT_CONTRIBUTION = "content_contribution"
    REVIEW_REPORT = "review_report"
    USER_REPORT = "user_report"
    COMMENT_REPORT = "comment_report"

    @property
    def is_contribution(self) -> bool:
        return self is ItemKind.CONTENT_CONTRIBUTION

    @property
    def slug(self) -> str:
        """URL form, e.g. ``content-reports``."""
        return self.value.replace("_", "-") + "s"

    @classmethod
    def from_slug(cls, slug: str) -> "ItemKind":
        for kind in cls:
            if kind.slug == slug or kind.value == slug:
                return kind
        raise ValueError(f"unknown item kind: {slug}")


class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_CHANGES = "needs_changes"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


OPEN_STATUSES = frozenset({ItemStatus.PENDING, ItemStatus.IN_REVIEW})
TERMINAL_STATUSES = frozenset(set(ItemStatus) - OPEN_STATUSES)


class SubjectType(str, Enum):
    ANIME = "anime"
    MANGA = "manga"
    NOVEL = "novel"
    DONGHUA = "donghua"
    MANHUA = "manhua"
    MANHWA = "manhwa"
    FAN_COMIC = "fan_comic"
    CHARACTER = "character"
    STAFF = "staff"
    VOICE_ACTOR = "voice_actor"
    STUDIO = "studio"
    GENRE = "genre"
    REVIEW = "review"
    USER = "user"
    COMMENT = "comment"


CONTENT_TYPES = frozenset(
    {
        SubjectType.ANIME,
        SubjectType.MANGA,
        SubjectType.NOVEL,
        SubjectType.DONGHUA,
        SubjectType.MANHUA,
        SubjectType.MANHWA,
        SubjectType.FAN_COMIC,
    }
)
ENTITY_TYPES = frozenset(
    {
        SubjectType.CHARACTER,
        SubjectType.STAFF,
        SubjectType.VOICE_ACTOR,
        SubjectType.STUDIO,
        SubjectType.GENRE,
    }
)
CONTRIBUTABLE_TYPES = CONTENT_TYPES | ENTITY_TYPES

ALLOWED_SUBJECTS: Mapping[ItemKind, frozenset[SubjectType]] = {
    ItemKind.CONTENT_REPORT: CONTRIBUTABLE_TYPES,
    ItemKind.CONTENT_CONTRIBUTION: CONTRIBUTABLE_TYPES,
    ItemKind.REVIEW_REPORT: frozenset({SubjectType.REVIEW}),
    ItemKind.USER_REPORT: frozenset({SubjectType.USER}),
    ItemKind.COMMENT_REPORT: frozenset({SubjectType.COMMENT}),
}


@dataclass(slots=True)
class WorkItem:
    item_id: str
    kind: ItemKind
    subject_type: SubjectType
    subject_id: str | None
    submitter_id: str | None
    payload: dict[str, Any]
    status: ItemStatus
    created_at: datetime
    updated_at: datetime
    assigned_to: str | None = None
    assigned_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    resolution_notes: str | None = None
    action_taken: str | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_assigned(self) -> bool:
        return self.assigned_to is not None

    def copy(self) -> "WorkItem":
        return replace(self, payload=dict(self.payload))

    def snapshot(self, fields: Iterable[str]) -> dict[str, Any]:
        """Return JSON-friendly values of ``fields`` for audit before/after records."""
        result: dict[str, Any] = {}
        for name in fields:
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            result[name] = value
        return result


@dataclass(slots=True)
class QueueEntry:
    """A work item as one moderator sees it in the queue."""

    item: WorkItem
    assigned_to_username: str | None = None
    reassignable: bool = False


@dataclass(slots=True)
class QueuePage:
    """One keyset page of visible work items."""

    items: list[QueueEntry]
    next_cursor: str | None
    total: int


@dataclass(slots=True)
class QueueCounts:
    by_kind: dict[str, int] = field(default_factory=dict)
    by_subject_type: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_kind.values())
