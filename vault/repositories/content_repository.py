"""Content repository for database operations."""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from common.logging_config import get_logger
from vault.database import get_db_connection
from vault.exceptions import ConflictError
from vault.types import ContentKind, ContentView
from vault.utils import format_timestamp, parse_timestamp

logger = get_logger(__name__)

_COLUMNS = """
    content_id, kind, text_content, blob_key, original_name, size, password_hash,
    burn_after_read, max_access, access_count, owner_id, delete_token, created_at, expires_at
"""


@dataclass
class ContentRecord:
    content_id: str
    kind: ContentKind
    text_content: Optional[str]
    blob_key: Optional[str]
    original_name: Optional[str]
    size: Optional[int]
    password_hash: Optional[str]
    burn_after_read: bool
    max_access: Optional[int]
    access_count: int
    owner_id: Optional[str]
    delete_token: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_view(self) -> ContentView:
        return ContentView(
            content_id=self.content_id,
            kind=self.kind,
            text_content=self.text_content,
            original_name=self.original_name,
            size=self.size,
            has_password=self.password_hash is not None,
            burn_after_read=self.burn_after_read,
            max_access=self.max_access,
            access_count=self.access_count,
            created_at=self.created_at,
            expires_at=self.expires_at,
        )


class QuotaOutcome(Enum):
    EXHAUSTED = "exhausted"
    MISSING = "missing"


def _row_to_record(row: sqlite3.Row) -> ContentRecord:
    return ContentRecord(
        content_id=row["content_id"],
        kind=ContentKind(row["kind"]),
        text_content=row["text_content"],
        blob_key=row["blob_key"],
        original_name=row["original_name"],
        size=row["size"],
        password_hash=row["password_hash"],
        burn_after_read=bool(row["burn_after_read"]),
        max_access=row["max_access"],
        access_count=row["access_count"],
        owner_id=row["owner_id"],
        delete_token=row["delete_token"],
        created_at=parse_timestamp(row["created_at"]),
        expires_at=parse_timestamp(row["expires_at"]),
    )


class ContentRepository:
    @staticmethod
    def create_content(record: ContentRecord) -> ContentRecord:
        logger.debug(f"Creating content [content_id={record.content_id}] [kind={record.kind.value}]")

        with get_db_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"""
                    INSERT INTO contents ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.content_id,
                        record.kind.value,
                        record.text_content,
                        record.blob_key,
                        record.original_name,
                        record.size,
                        record.password_hash,
                        int(record.burn_after_read),
                        record.max_access,
                        record.access_count,
                        record.owner_id,
                        record.delete_token,
                        format_timestamp(record.created_at),
                        format_timestamp(record.expires_at),
                    )
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                if "contents.content_id" in str(e):
                    raise ConflictError(f"Content id {record.content_id} is already taken")
                raise

        logger.info(f"Content created [content_id={record.content_id}]")
        return record

    @staticmethod
    def get_by_id(content_id: str) -> Optional[ContentRecord]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_COLUMNS} FROM contents WHERE content_id = ?",
                (content_id,)
            )
            row = cursor.fetchone()

            if row is None:
                return None

            return _row_to_record(row)

    @staticmethod
    def exists(content_id: str) -> bool:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM contents WHERE content_id = ?", (content_id,))
            return cursor.fetchone() is not None

    @staticmethod
    def conditional_increment(
        content_id: str,
        max_access: Optional[int],
    ) -> Tuple[Optional[ContentRecord], Optional[QuotaOutcome]]:
        """
        Atomically spend one access of a record.

        The limit test and the increment are a single UPDATE inside an
        immediate transaction, so concurrent callers can never both take the
        last slot. With no limit the counter is still incremented.

        Args:
            content_id: Record to spend
            max_access: The record's access limit, or None for unlimited

        Returns:
            (updated record, None) on success, otherwise (None, outcome) where
            outcome tells an exhausted quota from a record that is gone
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                if max_access is None:
                    cursor.execute(
                        "UPDATE contents SET access_count = access_count + 1 WHERE content_id = ?",
                        (content_id,)
                    )
                else:
                    cursor.execute(
                        """
                        UPDATE contents SET access_count = access_count + 1
                        WHERE content_id = ? AND access_count < ?
                        """,
                        (content_id, max_access)
                    )
                applied = cursor.rowcount == 1

                cursor.execute(
                    f"SELECT {_COLUMNS} FROM contents WHERE content_id = ?",
                    (content_id,)
                )
                row = cursor.fetchone()
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        if row is None:
            return None, QuotaOutcome.MISSING
        if not applied:
            logger.debug(f"Quota exhausted [content_id={content_id}]")
            return None, QuotaOutcome.EXHAUSTED
        return _row_to_record(row), None

    @staticmethod
    def delete_content(content_id: str) -> bool:
        """
        Delete a record.

        Returns:
            True if a row was removed, False if it was already gone
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM contents WHERE content_id = ?", (content_id,))
            deleted = cursor.rowcount > 0
            conn.commit()

        if deleted:
            logger.info(f"Content deleted [content_id={content_id}]")
        else:
            logger.debug(f"Content already gone [content_id={content_id}]")
        return deleted

    @staticmethod
    def list_by_owner(owner_id: str, now: datetime) -> List[ContentRecord]:
        """Live records of an owner, newest first."""
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_COLUMNS} FROM contents
                WHERE owner_id = ? AND expires_at >= ?
                ORDER BY created_at DESC
                """,
                (owner_id, format_timestamp(now))
            )
            return [_row_to_record(row) for row in cursor.fetchall()]

    @staticmethod
    def list_expired(now: datetime, limit: int = 500) -> List[ContentRecord]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_COLUMNS} FROM contents
                WHERE expires_at < ?
                ORDER BY expires_at
                LIMIT ?
                """,
                (format_timestamp(now), limit)
            )
            return [_row_to_record(row) for row in cursor.fetchall()]
