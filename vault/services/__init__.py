"""Service layer for business logic."""

from vault.services.content_service import ContentService, OneShotCleanup
from vault.services.quota import QuotaEngine

__all__ = [
    "ContentService",
    "OneShotCleanup",
    "QuotaEngine",
]
