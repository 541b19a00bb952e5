"""Pydantic schemas for API requests and responses."""

from vault.schemas.common import ErrorResponse
from vault.schemas.content import (
    ContentResponse,
    CreateContentResponse,
    DeleteContentRequest,
    DeleteContentResponse,
    ListContentResponse,
)

__all__ = [
    "ContentResponse",
    "CreateContentResponse",
    "DeleteContentRequest",
    "DeleteContentResponse",
    "ListContentResponse",
    "ErrorResponse",
]
