"""User lookup for resolving API keys into owner identities."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from common.logging_config import get_logger
from vault.database import get_db_connection
from vault.utils import format_timestamp, parse_timestamp

logger = get_logger(__name__)


@dataclass
class User:
    user_id: str
    username: str
    api_key: Optional[str]
    created_at: datetime


class UserRepository:
    @staticmethod
    def create_user(user_id: str, username: str, api_key: str, created_at: datetime) -> User:
        logger.debug(f"Creating user: {username} [user_id={user_id}]")

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO users (user_id, username, api_key, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, username, api_key, format_timestamp(created_at))
            )
            conn.commit()

        logger.info(f"User created successfully: {username} [user_id={user_id}]")
        return User(user_id=user_id, username=username, api_key=api_key, created_at=created_at)

    @staticmethod
    def get_by_api_key(api_key: str) -> Optional[User]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT user_id, username, api_key, created_at FROM users WHERE api_key = ?",
                (api_key,)
            )
            row = cursor.fetchone()

            if row is None:
                return None

            return User(
                user_id=row["user_id"],
                username=row["username"],
                api_key=row["api_key"],
                created_at=parse_timestamp(row["created_at"]),
            )
