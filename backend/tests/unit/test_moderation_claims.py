from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from chirisu.moderation.domain.errors import (
    AssignmentConflictError,
    ForbiddenError,
    ItemClosedError,
)
from chirisu.moderation.domain.work_items import ItemKind, ItemStatus


async def _report(queue_env, subject_id: str = "anime-1"):
    return await queue_env.service.submit(
        ItemKind.CONTENT_REPORT,
        submitter_id="user-1",
        subject_type="anime",
        subject_id=subject_id,
        payload={"reason": "synopsis is for another show"},
    )


@pytest.mark.asyncio
async def test_assign_moves_item_into_review(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    claimed = await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))

    assert claimed.status == ItemStatus.IN_REVIEW
    assert claimed.assigned_to == "mod-a"
    assert claimed.assigned_at == queue_env.clock.now
    actions = [entry.action for entry in queue_env.audit_repository.entries]
    assert actions == ["submit", "assign"]


@pytest.mark.asyncio
async def test_assign_is_idempotent_for_current_owner(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    first = await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))
    queue_env.clock.now += timedelta(hours=1)
    second = await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))

    assert second.assigned_at == first.assigned_at
    assert len([e for e in queue_env.audit_repository.entries if e.action == "assign"]) == 1


@pytest.mark.asyncio
async def test_concurrent_claims_exactly_one_wins(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    results = await asyncio.gather(
        queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a")),
        queue_env.service.assign(item.kind, item.item_id, make_staff("mod-b")),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, AssignmentConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1
    stored = await queue_env.repository.get(item.kind, item.item_id)
    assert stored.assigned_to == winners[0].assigned_to
    assert losers[0].assigned_to == winners[0].assigned_to


@pytest.mark.asyncio
async def test_conflict_names_current_assignee(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))

    with pytest.raises(AssignmentConflictError) as exc:
        await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-b"))
    assert exc.value.assigned_to == "mod-a"
    assert exc.value.assigned_to_username == "alice"


@pytest.mark.asyncio
async def test_stale_claim_can_be_taken_over(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))
    queue_env.clock.now += timedelta(days=16)

    taken = await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-b"))

    assert taken.assigned_to == "mod-b"
    last = queue_env.audit_repository.entries[-1]
    assert last.meta == {"previous_assignee": "mod-a", "takeover": "stale_claim"}


@pytest.mark.asyncio
async def test_admin_override_takes_fresh_claim(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))

    taken = await queue_env.service.assign(item.kind, item.item_id, make_staff("admin-1", admin=True))

    assert taken.assigned_to == "admin-1"
    assert queue_env.audit_repository.entries[-1].meta["takeover"] == "admin_override"


@pytest.mark.asyncio
async def test_release_by_non_owner_is_forbidden_and_leaves_item(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    claimed = await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))

    with pytest.raises(ForbiddenError):
        await queue_env.service.release(item.kind, item.item_id, make_staff("mod-b"))

    stored = await queue_env.repository.get(item.kind, item.item_id)
    assert stored == claimed


@pytest.mark.asyncio
async def test_release_returns_item_to_pending(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-a"))

    released = await queue_env.service.release(item.kind, item.item_id, make_staff("admin-1", admin=True))

    assert released.status == ItemStatus.PENDING
    assert released.assigned_to is None and released.assigned_at is None
    assert queue_env.audit_repository.entries[-1].meta == {"released_for": "mod-a"}


@pytest.mark.asyncio
async def test_assign_closed_item_rejected(queue_env, make_staff) -> None:
    item = await _report(queue_env)
    mod = make_staff("mod-a")
    await queue_env.service.assign(item.kind, item.item_id, mod)
    await queue_env.service.review(item.kind, item.item_id, mod, action="resolve")

    with pytest.raises(ItemClosedError) as exc:
        await queue_env.service.assign(item.kind, item.item_id, make_staff("mod-b"))
    assert exc.value.code == "item_closed"
    with pytest.raises(ItemClosedError):
        await queue_env.service.assign(item.kind, item.item_id, mod)


@pytest.mark.asyncio
async def test_assignment_pair_invariant_holds(queue_env, make_staff) -> None:
    first = await _report(queue_env, "anime-1")
    second = await _report(queue_env, "anime-2")
    await queue_env.service.assign(first.kind, first.item_id, make_staff("mod-a"))
    await queue_env.service.assign(second.kind, second.item_id, make_staff("mod-b"))
    await queue_env.service.release(second.kind, second.item_id, make_staff("mod-b"))

    for item in queue_env.repository.all_items():
        assert (item.assigned_to is None) == (item.assigned_at is None)
