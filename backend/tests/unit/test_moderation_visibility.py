from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from chirisu.moderation.domain.visibility import is_reassignable, is_stale_claim, is_visible
from chirisu.moderation.domain.work_items import ItemKind, ItemStatus, SubjectType, WorkItem

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
WINDOW = timedelta(days=15)


@dataclass
class _Viewer:
    actor_id: str
    is_admin: bool = False


def _item(*, assigned_to: str | None = None, days_ago: float | None = None, status=ItemStatus.PENDING) -> WorkItem:
    assigned_at = NOW - timedelta(days=days_ago) if days_ago is not None else None
    return WorkItem(
        item_id="item-1",
        kind=ItemKind.CONTENT_REPORT,
        subject_type=SubjectType.ANIME,
        subject_id="anime-1",
        submitter_id="user-1",
        payload={"reason": "wrong synopsis"},
        status=status,
        created_at=NOW - timedelta(days=30),
        updated_at=NOW - timedelta(days=30),
        assigned_to=assigned_to,
        assigned_at=assigned_at,
    )


def test_unassigned_item_visible_to_everyone() -> None:
    assert is_visible(_item(), _Viewer("mod-b"), NOW, WINDOW)


def test_own_claim_visible() -> None:
    item = _item(assigned_to="mod-a", days_ago=1, status=ItemStatus.IN_REVIEW)
    assert is_visible(item, _Viewer("mod-a"), NOW, WINDOW)


def test_claim_older_than_window_reopens_to_pool() -> None:
    item = _item(assigned_to="mod-a", days_ago=16, status=ItemStatus.IN_REVIEW)
    assert is_visible(item, _Viewer("mod-b"), NOW, WINDOW)
    assert is_reassignable(item, "mod-b", NOW, WINDOW)


def test_recent_claim_hidden_from_other_moderators() -> None:
    item = _item(assigned_to="mod-a", days_ago=10, status=ItemStatus.IN_REVIEW)
    assert not is_visible(item, _Viewer("mod-b"), NOW, WINDOW)
    assert is_visible(item, _Viewer("admin-1", is_admin=True), NOW, WINDOW)
    assert not is_reassignable(item, "mod-b", NOW, WINDOW)


def test_claim_exactly_at_window_is_not_stale() -> None:
    item = _item(assigned_to="mod-a", days_ago=15, status=ItemStatus.IN_REVIEW)
    assert not is_stale_claim(item, NOW, WINDOW)


def test_terminal_items_never_reopen() -> None:
    item = _item(assigned_to="mod-a", days_ago=40, status=ItemStatus.RESOLVED)
    assert not is_stale_claim(item, NOW, WINDOW)
    assert not is_visible(item, _Viewer("mod-b"), NOW, WINDOW)


def test_deleted_items_hidden_even_from_admins() -> None:
    item = _item()
    item.deleted_at = NOW
    assert not is_visible(item, _Viewer("admin-1", is_admin=True), NOW, WINDOW)


def test_own_claim_is_not_reassignable() -> None:
    item = _item(assigned_to="mod-a", days_ago=20, status=ItemStatus.IN_REVIEW)
    assert not is_reassignable(item, "mod-a", NOW, WINDOW)
