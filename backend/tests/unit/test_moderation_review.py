from __future__ import annotations

from datetime import timedelta

import pytest

from chirisu.moderation.domain.change_applier import ENTITY_SCHEMAS
from chirisu.moderation.domain.errors import (
    ApplyFailureError,
    ForbiddenError,
    ItemClosedError,
    WorkflowValidationError,
)
from chirisu.moderation.domain.work_items import ItemKind, ItemStatus, SubjectType


async def _claimed_contribution(queue_env, staff, *, subject_id=None, changes=None):
    item = await queue_env.service.submit(
        ItemKind.CONTENT_CONTRIBUTION,
        submitter_id="user-1",
        subject_type="anime",
        subject_id=subject_id,
        payload={"changes": changes or {"title_romaji": "Example", "year": 2024}},
    )
    await queue_env.service.assign(item.kind, item.item_id, staff)
    return item


@pytest.mark.asyncio
async def test_approving_new_entity_backfills_subject_id(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)

    approved = await queue_env.service.review(item.kind, item.item_id, mod, action="approve")

    assert approved.status == ItemStatus.APPROVED
    assert approved.subject_id is not None
    entity = queue_env.writer.get("anime", approved.subject_id)
    assert entity["title_romaji"] == "Example"
    assert approved.reviewed_by == "mod-a"


@pytest.mark.asyncio
async def test_second_approve_is_a_noop(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)

    first = await queue_env.service.review(item.kind, item.item_id, mod, action="approve")
    second = await queue_env.service.review(item.kind, item.item_id, mod, action="approve")

    assert second.subject_id == first.subject_id
    assert len(queue_env.writer.tables["anime"]) == 1
    assert [e.action for e in queue_env.audit_repository.entries].count("approve") == 1


@pytest.mark.asyncio
async def test_update_contribution_changes_existing_entity(queue_env, make_staff) -> None:
    queue_env.writer.seed("anime", "anime-7", {"title_romaji": "Old", "year": 2001})
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod, subject_id="anime-7", changes={"year": 2002, "rating": 5})

    approved = await queue_env.service.review(item.kind, item.item_id, mod, action="approve")

    assert approved.subject_id == "anime-7"
    row = queue_env.writer.get("anime", "anime-7")
    assert row["year"] == 2002
    assert "rating" not in row


@pytest.mark.asyncio
async def test_reject_with_empty_reason_fails(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)

    with pytest.raises(WorkflowValidationError) as exc:
        await queue_env.service.review(item.kind, item.item_id, mod, action="reject", resolution_reason="")
    assert exc.value.code == "resolution_reason_required"

    stored = await queue_env.repository.get(item.kind, item.item_id)
    assert stored.status == ItemStatus.IN_REVIEW


@pytest.mark.asyncio
async def test_reject_with_reason_stamps_reviewer(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)
    queue_env.clock.now += timedelta(minutes=5)

    rejected = await queue_env.service.review(
        item.kind,
        item.item_id,
        mod,
        action="reject",
        resolution_reason="Sources do not support this title",
    )

    assert rejected.status == ItemStatus.REJECTED
    assert rejected.reviewed_by == "mod-a"
    assert rejected.reviewed_at == queue_env.clock.now
    assert rejected.resolution_notes == "Sources do not support this title"


@pytest.mark.asyncio
async def test_apply_failure_rolls_back_transition(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod, subject_id="missing-anime", changes={"year": 1999})

    with pytest.raises(ApplyFailureError) as exc:
        await queue_env.service.review(item.kind, item.item_id, mod, action="approve")
    assert exc.value.reason == "writer_error"

    stored = await queue_env.repository.get(item.kind, item.item_id)
    assert stored.status == ItemStatus.IN_REVIEW
    assert stored.reviewed_by is None
    assert "approve" not in [e.action for e in queue_env.audit_repository.entries]


@pytest.mark.asyncio
async def test_rolled_back_transaction_discards_entity_writes(queue_env) -> None:
    queue_env.writer.seed("studios", "studio-1", {"name": "Kept"})

    with pytest.raises(RuntimeError):
        async with queue_env.repository.transaction():
            await queue_env.writer.create(ENTITY_SCHEMAS[SubjectType.STUDIO], {"name": "Orphan"})
            await queue_env.writer.update(ENTITY_SCHEMAS[SubjectType.STUDIO], "studio-1", {"name": "Renamed"})
            raise RuntimeError("later step failed")

    assert queue_env.writer.tables == {"studios": {"studio-1": {"name": "Kept"}}}


@pytest.mark.asyncio
async def test_new_entity_without_required_fields_fails(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod, changes={"synopsis": "No title given"})

    with pytest.raises(ApplyFailureError) as exc:
        await queue_env.service.review(item.kind, item.item_id, mod, action="approve")
    assert exc.value.reason == "missing_required_fields"
    assert "anime" not in queue_env.writer.tables


@pytest.mark.asyncio
async def test_non_assignee_cannot_review(queue_env, make_staff) -> None:
    item = await _claimed_contribution(queue_env, make_staff("mod-a"))

    with pytest.raises(ForbiddenError):
        await queue_env.service.review(item.kind, item.item_id, make_staff("mod-b"), action="approve")


@pytest.mark.asyncio
async def test_terminal_item_cannot_change_outcome(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)
    await queue_env.service.review(item.kind, item.item_id, mod, action="approve")

    with pytest.raises(ItemClosedError):
        await queue_env.service.review(
            item.kind, item.item_id, mod, action="reject", resolution_reason="changed my mind entirely"
        )


@pytest.mark.asyncio
async def test_outcome_notifies_submitter(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    item = await queue_env.service.submit(
        ItemKind.USER_REPORT,
        submitter_id="user-1",
        subject_type="user",
        subject_id="user-9",
        payload={"reason": "harassment in comments"},
    )
    await queue_env.service.assign(item.kind, item.item_id, mod)
    await queue_env.service.review(
        item.kind, item.item_id, mod, action="dismiss", resolution_reason="No violation found in history"
    )

    assert len(queue_env.notifications.sent) == 1
    note = queue_env.notifications.sent[0]
    assert note.user_id == "user-1"
    assert note.type == "moderation.user_report.dismissed"


@pytest.mark.asyncio
async def test_notification_failure_does_not_block(queue_env, make_staff) -> None:
    class BrokenSink:
        async def send(self, notification):
            raise RuntimeError("notifications table missing")

    queue_env.service.notifications = BrokenSink()
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)

    approved = await queue_env.service.review(item.kind, item.item_id, mod, action="approve")
    assert approved.status == ItemStatus.APPROVED


@pytest.mark.asyncio
async def test_audit_failure_does_not_block(queue_env, make_staff) -> None:
    class BrokenAudit:
        async def write(self, entry):
            raise RuntimeError("audit table unavailable")

        async def list_for_item(self, kind, item_id):
            return []

    queue_env.service.audit.repository = BrokenAudit()
    mod = make_staff("mod-a")
    item = await _claimed_contribution(queue_env, mod)

    approved = await queue_env.service.review(item.kind, item.item_id, mod, action="approve")
    assert approved.status == ItemStatus.APPROVED
