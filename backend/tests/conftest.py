import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from chirisu.infra import postgres
from chirisu.infra.auth import AuthenticatedUser
from chirisu.main import app
from chirisu.moderation.domain import container
from chirisu.moderation.domain.audit import AuditRecorder, InMemoryAuditRepository
from chirisu.moderation.domain.change_applier import ChangeApplier, InMemoryEntityWriter
from chirisu.moderation.domain.directory import InMemorySubjectResolver, InMemoryUserDirectory
from chirisu.moderation.domain.notifications import InMemoryNotificationSink
from chirisu.moderation.domain.queue_service import QueueService
from chirisu.moderation.domain.rbac import ROLE_ADMIN, ROLE_MODERATOR, StaffContext
from chirisu.moderation.domain.repository import InMemoryWorkItemRepository
from chirisu.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if sys.platform == "win32":
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
	"""Settable clock handed to QueueService so tests can move time."""

	def __init__(self, now: datetime = NOW) -> None:
		self.now = now

	def __call__(self) -> datetime:
		return self.now


@dataclass
class QueueEnv:
	repository: InMemoryWorkItemRepository
	audit_repository: InMemoryAuditRepository
	writer: InMemoryEntityWriter
	users: InMemoryUserDirectory
	subjects: InMemorySubjectResolver
	notifications: InMemoryNotificationSink
	clock: FrozenClock
	service: QueueService


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id/X-User-Roles headers, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def queue_env() -> QueueEnv:
	"""Fresh in-memory moderation stack, also installed in the service container."""
	writer = InMemoryEntityWriter()
	repository = InMemoryWorkItemRepository(enlisted=[writer])
	audit_repository = InMemoryAuditRepository()
	users = InMemoryUserDirectory({"mod-a": "alice", "mod-b": "bruno", "admin-1": "ada"})
	subjects = InMemorySubjectResolver(
		{("review", "review-1"): "author-1", ("comment", "comment-1"): "author-2"}
	)
	notifications = InMemoryNotificationSink()
	clock = FrozenClock()
	service = QueueService(
		repository=repository,
		audit=AuditRecorder(audit_repository),
		applier=ChangeApplier.with_writer(writer),
		users=users,
		subject_resolver=subjects,
		notifications=notifications,
		clock=clock,
	)
	container.configure(
		repository=repository,
		audit_repository=audit_repository,
		entity_writer=writer,
		users=users,
		subject_resolver=subjects,
		notifications=notifications,
		queue_service=service,
	)
	return QueueEnv(repository, audit_repository, writer, users, subjects, notifications, clock, service)


@pytest.fixture
def make_staff() -> Callable[..., StaffContext]:
	def _make(user_id: str, *, admin: bool = False, username: str | None = None) -> StaffContext:
		roles = (ROLE_ADMIN,) if admin else (ROLE_MODERATOR,)
		return StaffContext(user=AuthenticatedUser(id=user_id, username=username, roles=roles), roles=roles)

	return _make


@pytest_asyncio.fixture
async def api_client(queue_env):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
