"""Database schema and connection management for SQLite."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from vault.config import DATABASE_PATH, DATABASE_TIMEOUT_SECONDS


def init_database() -> None:
    """
    Initialize database and create tables if they don't exist.
    """
    db_path = Path(DATABASE_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db_connection() as conn:
        cursor = conn.cursor()

        cursor.execute("PRAGMA journal_mode=WAL")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                username TEXT UNIQUE NOT NULL,
                api_key TEXT UNIQUE,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS contents (
                content_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL CHECK (kind IN ('text', 'file')),
                text_content TEXT,
                blob_key TEXT,
                original_name TEXT,
                size INTEGER,
                password_hash TEXT,
                burn_after_read INTEGER NOT NULL DEFAULT 0,
                max_access INTEGER CHECK (max_access IS NULL OR max_access >= 1),
                access_count INTEGER NOT NULL DEFAULT 0 CHECK (access_count >= 0),
                owner_id TEXT,
                delete_token TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                CHECK (
                    (kind = 'text' AND text_content IS NOT NULL AND blob_key IS NULL)
                    OR (kind = 'file' AND blob_key IS NOT NULL AND text_content IS NULL)
                ),
                CHECK (burn_after_read = 0 OR max_access = 1),
                CHECK (max_access IS NULL OR access_count <= max_access),
                CHECK (expires_at > created_at)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orphaned_blobs (
                blob_key TEXT PRIMARY KEY,
                reason TEXT NOT NULL,
                recorded_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_contents_owner_created ON contents(owner_id, created_at)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_contents_expires_at ON contents(expires_at)
        """)

        conn.commit()


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.
    """
    conn = sqlite3.connect(DATABASE_PATH, timeout=DATABASE_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()
