"""RBAC utilities for moderation staff endpoints."""

from __future__ import annotations

from dataclasses import dataclass

from chirisu.infra.auth import AuthenticatedUser
from chirisu.moderation.domain.errors import ForbiddenError

ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"


@dataclass(slots=True)
class StaffContext:
    """Resolved staff identity threaded through every queue operation."""

    user: AuthenticatedUser
    roles: tuple[str, ...]

    @property
    def actor_id(self) -> str:
        return self.user.id

    @property
    def username(self) -> str | None:
        return self.user.username

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_moderator(self) -> bool:
        return ROLE_MODERATOR in self.roles or self.is_admin


def resolve_staff_context(user: AuthenticatedUser) -> StaffContext:
    context = StaffContext(user=user, roles=tuple(user.roles))
    if not context.is_moderator:
        raise ForbiddenError("staff_scope_required")
    return context
