"""Persist outcome notifications for the site's notification feed."""

from __future__ import annotations

import asyncpg

from chirisu.moderation.domain.notifications import Notification


class PostgresNotificationSink:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def send(self, notification: Notification) -> None:
        await self.pool.execute(
            """
            INSERT INTO notifications(user_id, type, ref_id, actor_id, payload, created_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """,
            notification.user_id,
            notification.type,
            notification.ref_id,
            notification.actor_id,
            dict(notification.payload),
            notification.created_at,
        )
