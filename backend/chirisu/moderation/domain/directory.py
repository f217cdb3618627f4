"""Lookups into the wider site: usernames and subject ownership."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Protocol


class UserDirectory(Protocol):
    async def usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        ...


class SubjectResolver(Protocol):
    async def resolve_owner(self, subject_type: str, subject_id: str) -> Optional[str]:
        ...


class InMemoryUserDirectory:
    def __init__(self, names: Mapping[str, str] | None = None) -> None:
        self.names: dict[str, str] = dict(names or {})

    async def usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        return {uid: self.names[uid] for uid in user_ids if uid in self.names}


class InMemorySubjectResolver:
    """Owners keyed by ``(subject_type, subject_id)``; users own themselves."""

    def __init__(self, owners: Mapping[tuple[str, str], str] | None = None) -> None:
        self.owners: dict[tuple[str, str], str] = dict(owners or {})

    async def resolve_owner(self, subject_type: str, subject_id: str) -> Optional[str]:
        if subject_type == "user":
            return subject_id
        return self.owners.get((subject_type, subject_id))
