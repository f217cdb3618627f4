"""Lightweight service container shared by moderation modules."""

from __future__ import annotations

from typing import Optional

import asyncpg

from chirisu.moderation.domain.audit import AuditRecorder, AuditRepository, InMemoryAuditRepository
from chirisu.moderation.domain.change_applier import ChangeApplier, EntityWriter, InMemoryEntityWriter
from chirisu.moderation.domain.directory import (
    InMemorySubjectResolver,
    InMemoryUserDirectory,
    SubjectResolver,
    UserDirectory,
)
from chirisu.moderation.domain.notifications import InMemoryNotificationSink, NotificationSink
from chirisu.moderation.domain.queue_service import QueueService
from chirisu.moderation.domain.repository import InMemoryWorkItemRepository, WorkItemRepository

_entity_writer: EntityWriter = InMemoryEntityWriter()
_repository: WorkItemRepository = InMemoryWorkItemRepository(enlisted=[_entity_writer])
_audit_repository: AuditRepository = InMemoryAuditRepository()
_users: UserDirectory = InMemoryUserDirectory()
_subject_resolver: SubjectResolver = InMemorySubjectResolver()
_notifications: NotificationSink = InMemoryNotificationSink()
_queue_service = QueueService(
    repository=_repository,
    audit=AuditRecorder(_audit_repository),
    applier=ChangeApplier.with_writer(_entity_writer),
    users=_users,
    subject_resolver=_subject_resolver,
    notifications=_notifications,
)


def configure(
    *,
    repository: Optional[WorkItemRepository] = None,
    audit_repository: Optional[AuditRepository] = None,
    entity_writer: Optional[EntityWriter] = None,
    applier: Optional[ChangeApplier] = None,
    users: Optional[UserDirectory] = None,
    subject_resolver: Optional[SubjectResolver] = None,
    notifications: Optional[NotificationSink] = None,
    queue_service: Optional[QueueService] = None,
) -> None:
    global _repository, _audit_repository, _entity_writer, _users, _subject_resolver, _notifications, _queue_service
    if repository is not None:
        _repository = repository
    if audit_repository is not None:
        _audit_repository = audit_repository
    if entity_writer is not None:
        _entity_writer = entity_writer
    if users is not None:
        _users = users
    if subject_resolver is not None:
        _subject_resolver = subject_resolver
    if notifications is not None:
        _notifications = notifications
    if isinstance(_repository, InMemoryWorkItemRepository) and isinstance(_entity_writer, InMemoryEntityWriter):
        _repository.enlist(_entity_writer)
    _queue_service = queue_service or QueueService(
        repository=_repository,
        audit=AuditRecorder(_audit_repository),
        applier=applier or ChangeApplier.with_writer(_entity_writer),
        users=_users,
        subject_resolver=_subject_resolver,
        notifications=_notifications,
    )


def configure_postgres(pool: asyncpg.Pool) -> None:
    from chirisu.moderation.infra.directory import PostgresSubjectResolver, PostgresUserDirectory
    from chirisu.moderation.infra.entity_writers import PostgresEntityWriter
    from chirisu.moderation.infra.notifications import PostgresNotificationSink
    from chirisu.moderation.infra.postgres_repo import PostgresAuditRepository, PostgresWorkItemRepository

    configure(
        repository=PostgresWorkItemRepository(pool),
        audit_repository=PostgresAuditRepository(pool),
        entity_writer=PostgresEntityWriter(),
        users=PostgresUserDirectory(pool),
        subject_resolver=PostgresSubjectResolver(pool),
        notifications=PostgresNotificationSink(pool),
    )


def get_queue_service() -> QueueService:
    return _queue_service
