"""Apply approved contribution payloads to the target entity tables."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from chirisu.moderation.domain.errors import ApplyFailureError
from chirisu.moderation.domain.work_items import CONTRIBUTABLE_TYPES, SubjectType, WorkItem
from chirisu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EntitySchema:
    table: str
    fields: frozenset[str]
    required_on_create: frozenset[str]


_MEDIA_FIELDS = frozenset(
    {
        "title_romaji",
        "title_native",
        "title_english",
        "title_spanish",
        "synopsis",
        "synopsis_spanish",
        "cover_image_url",
        "banner_image_url",
        "episode_count",
        "duration",
        "season",
        "year",
        "volumes",
        "chapters",
        "status_id",
    }
)
_PERSON_FIELDS = frozenset({"name_romaji", "name_native", "image_url", "gender", "bio", "date_of_birth"})


def _media(table: str) -> EntitySchema:
    return EntitySchema(table=table, fields=_MEDIA_FIELDS, required_on_create=frozenset({"title_romaji"}))


ENTITY_SCHEMAS: Mapping[SubjectType, EntitySchema] = {
    SubjectType.ANIME: _media("anime"),
    SubjectType.MANGA: _media("manga"),
    SubjectType.NOVEL: _media("novels"),
    SubjectType.DONGHUA: _media("donghua"),
    SubjectType.MANHUA: _media("manhua"),
    SubjectType.MANHWA: _media("manhwa"),
    SubjectType.FAN_COMIC: _media("fan_comic"),
    SubjectType.CHARACTER: EntitySchema(
        table="characters",
        fields=frozenset({"name", "name_romaji", "name_native", "image_url", "description", "gender"}),
        required_on_create=frozenset({"name"}),
    ),
    SubjectType.STAFF: EntitySchema(
        table="staff",
        fields=_PERSON_FIELDS,
        required_on_create=frozenset({"name_romaji"}),
    ),
    SubjectType.VOICE_ACTOR: EntitySchema(
        table="voice_actors",
        fields=_PERSON_FIELDS | {"language"},
        required_on_create=frozenset({"name_romaji"}),
    ),
    SubjectType.STUDIO: EntitySchema(
        table="studios",
        fields=frozenset({"name", "website_url"}),
        required_on_create=frozenset({"name"}),
    ),
    SubjectType.GENRE: EntitySchema(
        table="genres",
        fields=frozenset({"code", "name_es", "name_en", "description"}),
        required_on_create=frozenset({"code"}),
    ),
}


class EntityWriter(Protocol):
    """Writes one entity table. ``conn`` is the transaction's connection, if any."""

    async def create(self, schema: EntitySchema, values: Mapping[str, Any], *, conn: Any = None) -> str:
        ...

    async def update(
        self,
        schema: EntitySchema,
        entity_id: str,
        values: Mapping[str, Any],
        *,
        conn: Any = None,
    ) -> None:
        ...


def allowed_changes(schema: EntitySchema, changes: Any) -> dict[str, Any]:
    if not isinstance(changes, Mapping):
        return {}
    return {key: value for key, value in changes.items() if key in schema.fields}


class ChangeApplier:
    """Dispatches an approved contribution to the writer registered for its subject type."""

    def __init__(
        self,
        writers: Mapping[SubjectType, EntityWriter],
        schemas: Mapping[SubjectType, EntitySchema] = ENTITY_SCHEMAS,
    ) -> None:
        self._writers = dict(writers)
        self._schemas = schemas

    @classmethod
    def with_writer(cls, writer: EntityWriter) -> "ChangeApplier":
        return cls({subject_type: writer for subject_type in CONTRIBUTABLE_TYPES})

    async def apply(self, item: WorkItem, *, conn: Any = None) -> str:
        """Write the contribution's changes and return the target entity id."""
        subject_type = item.subject_type.value
        schema = self._schemas.get(item.subject_type)
        writer = self._writers.get(item.subject_type)
        if schema is None or writer is None:
            obs_metrics.inc_apply(subject_type, "unsupported")
            raise ApplyFailureError("unsupported_subject_type", f"no writer for {subject_type}")
        changes = allowed_changes(schema, item.payload.get("changes"))
        if not changes:
            obs_metrics.inc_apply(subject_type, "empty")
            raise ApplyFailureError("empty_change_set")
        if item.subject_id is None:
            missing = sorted(schema.required_on_create - changes.keys())
            if missing:
                obs_metrics.inc_apply(subject_type, "invalid")
                raise ApplyFailureError("missing_required_fields", f"missing: {', '.join(missing)}")
        try:
            if item.subject_id is None:
                entity_id = await writer.create(schema, changes, conn=conn)
            else:
                await writer.update(schema, item.subject_id, changes, conn=conn)
                entity_id = item.subject_id
        except Exception as exc:
            logger.exception(
                "contribution apply failed",
                extra={"item_id": item.item_id, "subject_type": subject_type, "subject_id": item.subject_id},
            )
            obs_metrics.inc_apply(subject_type, "error")
            raise ApplyFailureError("writer_error", str(exc)) from exc
        obs_metrics.inc_apply(subject_type, "created" if item.subject_id is None else "updated")
        return entity_id


class InMemoryEntityWriter:
    """Dict-backed writer used in development and tests."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}

    def seed(self, table: str, entity_id: str, values: Mapping[str, Any]) -> None:
        self.tables.setdefault(table, {})[entity_id] = dict(values)

    def get(self, table: str, entity_id: str) -> Optional[dict[str, Any]]:
        return self.tables.get(table, {}).get(entity_id)

    def snapshot(self) -> dict[str, dict[str, dict[str, Any]]]:
        return {table: {key: dict(row) for key, row in rows.items()} for table, rows in self.tables.items()}

    def restore(self, state: dict[str, dict[str, dict[str, Any]]]) -> None:
        self.tables = state

    async def create(self, schema: EntitySchema, values: Mapping[str, Any], *, conn: Any = None) -> str:
        entity_id = str(uuid.uuid4())
        row = dict(values)
        row["created_at"] = datetime.now(timezone.utc)
        self.tables.setdefault(schema.table, {})[entity_id] = row
        return entity_id

    async def update(
        self,
        schema: EntitySchema,
        entity_id: str,
        values: Mapping[str, Any],
        *,
        conn: Any = None,
    ) -> None:
        row = self.tables.get(schema.table, {}).get(entity_id)
        if row is None:
            raise LookupError(f"{schema.table}/{entity_id} not found")
        row.update(values)
        row["updated_at"] = datetime.now(timezone.utc)
