"""Atomic access quota enforcement."""

import asyncio

from common.logging_config import get_logger
from vault.exceptions import ContentNotFoundError, QuotaExceededError
from vault.repositories.content_repository import ContentRecord, ContentRepository, QuotaOutcome

logger = get_logger(__name__)


class QuotaEngine:
    """
    Spends one access of a record with a single compare-and-increment.

    The repository call runs on a worker thread so concurrent requests
    really race inside SQLite; the conditional UPDATE decides the winner.
    """

    def __init__(self, content_repo: ContentRepository = None):
        self.content_repo = content_repo or ContentRepository()

    async def spend(self, record: ContentRecord) -> ContentRecord:
        """
        Spend one access.

        Args:
            record: Record as loaded by the caller; only its id and max_access are used

        Returns:
            The record with the incremented access_count

        Raises:
            QuotaExceededError: If max_access was already reached
            ContentNotFoundError: If the record disappeared meanwhile
        """
        loop = asyncio.get_running_loop()
        updated, outcome = await loop.run_in_executor(
            None,
            self.content_repo.conditional_increment,
            record.content_id,
            record.max_access,
        )

        if outcome is QuotaOutcome.MISSING:
            raise ContentNotFoundError("Link is invalid or has expired")
        if outcome is QuotaOutcome.EXHAUSTED:
            logger.info(
                f"Access limit reached [content_id={record.content_id}] [max_access={record.max_access}]"
            )
            raise QuotaExceededError("Maximum number of accesses reached")

        logger.debug(
            f"Access spent [content_id={updated.content_id}] "
            f"[access_count={updated.access_count}] [max_access={updated.max_access}]"
        )
        return updated
