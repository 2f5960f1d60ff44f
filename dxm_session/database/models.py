"""SQLite schema for the single session-cookie slot."""

from __future__ import annotations

import aiosqlite

# Exactly one row (id = 1) ever exists; saves replace it in full.
SCHEMA = """
CREATE TABLE IF NOT EXISTS session_cookie (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    cookie TEXT NOT NULL,
    cookie_length INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);
"""


async def initialize_db(db: aiosqlite.Connection):
    """Create tables if they don't exist."""
    await db.executescript(SCHEMA)
    await db.commit()
