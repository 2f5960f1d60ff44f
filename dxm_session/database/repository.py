"""Async repository for the persisted session cookie."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class CookieRepository:
    """Reads and replaces the one session-cookie row."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def get_cookie(self) -> Optional[str]:
        async with self._db.execute("SELECT cookie FROM session_cookie WHERE id = 1") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def replace_cookie(self, cookie: str):
        """Overwrite the stored cookie inside a single transaction."""
        await self._db.execute(
            """
            INSERT INTO session_cookie (id, cookie, cookie_length, updated_at)
            VALUES (1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                cookie = excluded.cookie,
                cookie_length = excluded.cookie_length,
                updated_at = excluded.updated_at
            """,
            (cookie, len(cookie), datetime.now(timezone.utc).isoformat()),
        )
        await self._db.commit()
        logger.info(f"Stored session cookie ({len(cookie)} chars) in sqlite")
