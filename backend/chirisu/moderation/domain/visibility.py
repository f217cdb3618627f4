"""Which work items a moderator may see in the queue.

An item stays exclusive to its assignee for the visibility window. Once the
window has elapsed on a non-terminal item, every moderator sees it again and
may take it over.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from chirisu.moderation.domain.work_items import WorkItem
from chirisu.settings import settings


class Viewer(Protocol):
    @property
    def actor_id(self) -> str:
        ...

    @property
    def is_admin(self) -> bool:
        ...


def default_window() -> timedelta:
    return timedelta(days=settings.moderation_visibility_window_days)


def is_stale_claim(item: WorkItem, now: datetime, window: timedelta | None = None) -> bool:
    """True when the claim is older than the window and the item is still open."""
    if item.assigned_at is None or item.is_terminal:
        return False
    window = default_window() if window is None else window
    return item.assigned_at < now - window


def is_reassignable(item: WorkItem, viewer_id: str, now: datetime, window: timedelta | None = None) -> bool:
    if item.assigned_to is None or item.assigned_to == viewer_id:
        return False
    return is_stale_claim(item, now, window)


def is_visible(item: WorkItem, viewer: Viewer, now: datetime, window: timedelta | None = None) -> bool:
    if item.is_deleted:
        return False
    if viewer.is_admin:
        return True
    if item.assigned_to is None or item.assigned_to == viewer.actor_id:
        return True
    return is_stale_claim(item, now, window)
