"""Repository layer for data access."""

from vault.repositories.content_repository import ContentRecord, ContentRepository, QuotaOutcome
from vault.repositories.orphan_repository import OrphanedBlob, OrphanRepository
from vault.repositories.user_repository import User, UserRepository

__all__ = [
    "ContentRecord",
    "ContentRepository",
    "QuotaOutcome",
    "OrphanedBlob",
    "OrphanRepository",
    "User",
    "UserRepository",
]
