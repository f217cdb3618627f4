"""Apply pending SQL migrations from backend/migrations.

Usage:
    python backend/scripts/apply_migrations.py            # every pending file
    python backend/scripts/apply_migrations.py 0001_moderation_queue.sql
"""

import asyncio
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from chirisu.infra.postgres import close_pool, get_pool  # noqa: E402

MIGRATIONS_DIR = BACKEND_DIR / "migrations"


async def _ensure_migrations_table(conn) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            filename TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )


async def apply_migrations(only: str | None = None) -> int:
    files = sorted(p.name for p in MIGRATIONS_DIR.glob("*.sql"))
    if only:
        if only not in files:
            print(f"Migration file not found: {MIGRATIONS_DIR / only}")
            return 1
        files = [only]

    pool = await get_pool()
    try:
        async with pool.acquire() as conn:
            await _ensure_migrations_table(conn)
            applied = {row["filename"] for row in await conn.fetch("SELECT filename FROM schema_migrations")}
            for name in files:
                if name in applied:
                    print(f"Skipping {name} (already applied)")
                    continue
                print(f"Applying migration: {name}")
                sql = (MIGRATIONS_DIR / name).read_text(encoding="utf-8")
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute("INSERT INTO schema_migrations (filename) VALUES ($1)", name)
    finally:
        await close_pool()
    print("Migrations complete.")
    return 0


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    target = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("MIGRATION")
    sys.exit(asyncio.run(apply_migrations(target)))
