"""Moderation package integration helpers exposed to the application."""

from chirisu.moderation.api import router
from chirisu.moderation.domain.container import configure, configure_postgres

__all__ = ["router", "configure", "configure_postgres"]
