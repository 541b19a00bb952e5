"""Tracking of blobs whose metadata is gone but whose deletion failed."""

from dataclasses import dataclass
from datetime import datetime
from typing import List

from common.logging_config import get_logger
from vault.database import get_db_connection
from vault.utils import format_timestamp, parse_timestamp

logger = get_logger(__name__)


@dataclass
class OrphanedBlob:
    blob_key: str
    reason: str
    recorded_at: datetime


class OrphanRepository:
    @staticmethod
    def record_orphan(blob_key: str, reason: str, recorded_at: datetime) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO orphaned_blobs (blob_key, reason, recorded_at)
                VALUES (?, ?, ?)
                ON CONFLICT(blob_key) DO UPDATE SET
                    reason = excluded.reason,
                    recorded_at = excluded.recorded_at
                """,
                (blob_key, reason, format_timestamp(recorded_at))
            )
            conn.commit()
        logger.warning(f"Recorded orphaned blob [blob_key={blob_key}] [reason={reason}]")

    @staticmethod
    def list_orphans(limit: int = 500) -> List[OrphanedBlob]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT blob_key, reason, recorded_at FROM orphaned_blobs ORDER BY recorded_at LIMIT ?",
                (limit,)
            )
            return [
                OrphanedBlob(
                    blob_key=row["blob_key"],
                    reason=row["reason"],
                    recorded_at=parse_timestamp(row["recorded_at"]),
                )
                for row in cursor.fetchall()
            ]

    @staticmethod
    def remove_orphan(blob_key: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM orphaned_blobs WHERE blob_key = ?", (blob_key,))
            conn.commit()
