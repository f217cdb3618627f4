"""Keyset pagination for queue listings (newest first, ties broken by id)."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from chirisu.moderation.domain.work_items import WorkItem


@dataclass(slots=True, frozen=True)
class KeysetCursor:
    created_at: datetime
    item_id: str

    @classmethod
    def from_item(cls, item: WorkItem) -> "KeysetCursor":
        return cls(created_at=item.created_at, item_id=item.item_id)


def encode_cursor(cursor: KeysetCursor) -> str:
    payload = {"v": cursor.created_at.isoformat(), "id": cursor.item_id}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(value: str) -> KeysetCursor:
    """Decode a cursor string produced by :func:`encode_cursor`."""
    try:
        raw = base64.urlsafe_b64decode(value.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
        created_at = datetime.fromisoformat(payload["v"])
        item_id = str(payload["id"])
    except (ValueError, KeyError, TypeError, UnicodeError, binascii.Error) as exc:
        raise ValueError("invalid_cursor") from exc
    if not item_id:
        raise ValueError("invalid_cursor")
    return KeysetCursor(created_at=created_at, item_id=item_id)


def sort_key(item: WorkItem) -> tuple[datetime, str]:
    return (item.created_at, item.item_id)


def is_after(item: WorkItem, cursor: KeysetCursor) -> bool:
    """True when ``item`` belongs on a later page than ``cursor`` (descending order)."""
    return sort_key(item) < (cursor.created_at, cursor.item_id)


def build_keyset_predicate(cursor: KeysetCursor, params: list[Any], *, alias: str = "w") -> str:
    """Append cursor parameters and return the SQL predicate for the next page."""
    value_idx = len(params) + 1
    params.extend([cursor.created_at, cursor.item_id])
    return f"({alias}.created_at, {alias}.id) < (${value_idx}, ${value_idx + 1})"
