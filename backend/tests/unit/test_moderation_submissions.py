from __future__ import annotations

import pytest

from chirisu.moderation.domain.errors import (
    DuplicateReportError,
    ForbiddenError,
    UnauthorizedError,
    WorkflowValidationError,
    WorkItemNotFoundError,
)
from chirisu.moderation.domain.work_items import ItemKind, ItemStatus


@pytest.mark.asyncio
async def test_anonymous_content_report_combines_title_and_description(queue_env) -> None:
    item = await queue_env.service.submit(
        ItemKind.CONTENT_REPORT,
        submitter_id=None,
        subject_type="manga",
        subject_id="manga-3",
        payload={"title": "Wrong cover", "description": "Cover belongs to volume 2"},
    )

    assert item.status == ItemStatus.PENDING
    assert item.payload["reason"] == "Wrong cover: Cover belongs to volume 2"
    assert item.submitter_id is None


@pytest.mark.asyncio
async def test_anonymous_user_report_requires_identity(queue_env) -> None:
    with pytest.raises(UnauthorizedError):
        await queue_env.service.submit(
            ItemKind.USER_REPORT,
            submitter_id=None,
            subject_type="user",
            subject_id="user-9",
            payload={"reason": "spam"},
        )


@pytest.mark.asyncio
async def test_subject_type_must_match_kind(queue_env) -> None:
    with pytest.raises(WorkflowValidationError) as exc:
        await queue_env.service.submit(
            ItemKind.REVIEW_REPORT,
            submitter_id="user-1",
            subject_type="anime",
            subject_id="anime-1",
            payload={"reason": "spam"},
        )
    assert exc.value.code == "invalid_subject_type"


@pytest.mark.asyncio
async def test_review_report_rules(queue_env) -> None:
    submit = queue_env.service.submit

    with pytest.raises(WorkflowValidationError) as exc:
        await submit(
            ItemKind.REVIEW_REPORT,
            submitter_id="user-1",
            subject_type="review",
            subject_id="review-1",
            payload={"reason": "boring"},
        )
    assert exc.value.code == "invalid_reason"

    with pytest.raises(WorkflowValidationError) as exc:
        await submit(
            ItemKind.REVIEW_REPORT,
            submitter_id="user-1",
            subject_type="review",
            subject_id="review-1",
            payload={"reason": "other"},
        )
    assert exc.value.code == "comments_required"

    with pytest.raises(WorkflowValidationError) as exc:
        await submit(
            ItemKind.REVIEW_REPORT,
            submitter_id="author-1",
            subject_type="review",
            subject_id="review-1",
            payload={"reason": "spam"},
        )
    assert exc.value.code == "cannot_report_own_review"

    with pytest.raises(WorkItemNotFoundError):
        await submit(
            ItemKind.REVIEW_REPORT,
            submitter_id="user-1",
            subject_type="review",
            subject_id="review-404",
            payload={"reason": "spam"},
        )


@pytest.mark.asyncio
async def test_review_report_once_per_reporter(queue_env) -> None:
    payload = {"reason": "spoilers", "comments": "Ending revealed in first line"}
    first = await queue_env.service.submit(
        ItemKind.REVIEW_REPORT,
        submitter_id="user-1",
        subject_type="review",
        subject_id="review-1",
        payload=payload,
    )
    assert first.payload == {"reason": "spoilers", "description": "Ending revealed in first line"}

    with pytest.raises(DuplicateReportError):
        await queue_env.service.submit(
            ItemKind.REVIEW_REPORT,
            submitter_id="user-1",
            subject_type="review",
            subject_id="review-1",
            payload=payload,
        )


@pytest.mark.asyncio
async def test_user_report_duplicate_only_while_open(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    args = dict(submitter_id="user-1", subject_type="user", subject_id="user-9", payload={"reason": "impersonation"})
    first = await queue_env.service.submit(ItemKind.USER_REPORT, **args)

    with pytest.raises(DuplicateReportError):
        await queue_env.service.submit(ItemKind.USER_REPORT, **args)

    await queue_env.service.assign(first.kind, first.item_id, mod)
    await queue_env.service.review(first.kind, first.item_id, mod, action="resolve")
    again = await queue_env.service.submit(ItemKind.USER_REPORT, **args)
    assert again.item_id != first.item_id


@pytest.mark.asyncio
async def test_cannot_report_self(queue_env) -> None:
    with pytest.raises(WorkflowValidationError) as exc:
        await queue_env.service.submit(
            ItemKind.USER_REPORT,
            submitter_id="user-1",
            subject_type="user",
            subject_id="user-1",
            payload={"reason": "testing"},
        )
    assert exc.value.code == "cannot_report_self"


@pytest.mark.asyncio
async def test_contribution_requires_changes(queue_env) -> None:
    with pytest.raises(WorkflowValidationError) as exc:
        await queue_env.service.submit(
            ItemKind.CONTENT_CONTRIBUTION,
            submitter_id="user-1",
            subject_type="studio",
            subject_id=None,
            payload={"notes": "please add"},
        )
    assert exc.value.code == "changes_required"


@pytest.mark.asyncio
async def test_submitter_lists_and_deletes_own_items(queue_env) -> None:
    mine = await queue_env.service.submit(
        ItemKind.CONTENT_CONTRIBUTION,
        submitter_id="user-1",
        subject_type="studio",
        subject_id=None,
        payload={"changes": {"name": "Studio Example"}, "sources": ["https://example.org"]},
    )
    await queue_env.service.submit(
        ItemKind.CONTENT_REPORT,
        submitter_id="user-2",
        subject_type="anime",
        subject_id="anime-1",
        payload={"reason": "duplicate entry"},
    )

    listed = await queue_env.service.list_mine("user-1")
    assert [item.item_id for item in listed] == [mine.item_id]

    with pytest.raises(ForbiddenError):
        await queue_env.service.delete(mine.kind, mine.item_id, actor_id="user-2", is_admin=False)

    await queue_env.service.delete(mine.kind, mine.item_id, actor_id="user-1", is_admin=False)
    assert await queue_env.service.list_mine("user-1") == []
    with pytest.raises(WorkItemNotFoundError):
        await queue_env.service.delete(mine.kind, mine.item_id, actor_id="user-1", is_admin=False)


@pytest.mark.asyncio
async def test_comment_report_rules(queue_env) -> None:
    submit = queue_env.service.submit
    args = dict(submitter_id="user-1", subject_type="comment", subject_id="comment-1")

    with pytest.raises(UnauthorizedError):
        await submit(ItemKind.COMMENT_REPORT, **{**args, "submitter_id": None}, payload={"reason": "spam"})

    with pytest.raises(WorkflowValidationError) as exc:
        await submit(ItemKind.COMMENT_REPORT, **args, payload={"reason": "rude"})
    assert exc.value.code == "invalid_reason"

    with pytest.raises(WorkflowValidationError) as exc:
        await submit(ItemKind.COMMENT_REPORT, **args, payload={"reason": "other", "comments": "  "})
    assert exc.value.code == "comments_required"

    with pytest.raises(WorkflowValidationError) as exc:
        await submit(ItemKind.COMMENT_REPORT, **{**args, "submitter_id": "author-2"}, payload={"reason": "spam"})
    assert exc.value.code == "cannot_report_own_comment"

    with pytest.raises(WorkItemNotFoundError) as exc:
        await submit(ItemKind.COMMENT_REPORT, **{**args, "subject_id": "comment-404"}, payload={"reason": "spam"})
    assert exc.value.code == "subject_not_found"


@pytest.mark.asyncio
async def test_comment_report_once_per_reporter_even_after_close(queue_env, make_staff) -> None:
    mod = make_staff("mod-a")
    args = dict(submitter_id="user-1", subject_type="comment", subject_id="comment-1")
    first = await queue_env.service.submit(
        ItemKind.COMMENT_REPORT, **args, payload={"reason": "other", "comments": "Slurs in the second line"}
    )
    assert first.payload == {
        "reason": "other",
        "reported_user_id": "author-2",
        "description": "Slurs in the second line",
    }

    claimed = await queue_env.service.assign(first.kind, first.item_id, mod)
    assert claimed.status == ItemStatus.IN_REVIEW
    await queue_env.service.review(first.kind, first.item_id, mod, action="resolve", action_taken="comment_hidden")

    with pytest.raises(DuplicateReportError):
        await queue_env.service.submit(ItemKind.COMMENT_REPORT, **args, payload={"reason": "harassment"})
