"""LinkVault data type definitions shared by services and routes."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import AsyncIterable, Awaitable, Callable, Optional


class ContentKind(str, Enum):
    TEXT = "text"
    FILE = "file"


@dataclass(frozen=True)
class StagedUpload:
    """
    A file received from a caller and staged on local disk before upload.
    """
    path: Path
    original_name: str
    size: int


@dataclass(frozen=True)
class CreateOptions:
    password: Optional[str] = None
    expires_in_minutes: Optional[int] = None
    max_access: Optional[int] = None
    burn_after_read: bool = False


@dataclass(frozen=True)
class CreatedContent:
    content_id: str
    kind: ContentKind
    delete_token: str
    expires_at: datetime


@dataclass(frozen=True)
class DeleteCredential:
    """
    Either an authenticated owner identity or a presented delete token.
    """
    owner_id: Optional[str] = None
    delete_token: Optional[str] = None


@dataclass(frozen=True)
class ContentView:
    """
    Sanitized view of a content record, safe to hand to any caller.

    Never carries the password hash or the delete token.
    """
    content_id: str
    kind: ContentKind
    text_content: Optional[str]
    original_name: Optional[str]
    size: Optional[int]
    has_password: bool
    burn_after_read: bool
    max_access: Optional[int]
    access_count: int
    created_at: datetime
    expires_at: datetime


@dataclass
class ContentDownload:
    """
    An opened download: the blob byte stream plus the hook to run once delivery ends.
    """
    view: ContentView
    filename: str
    size: Optional[int]
    stream: AsyncIterable[bytes]
    close_stream: Callable[[], Awaitable[None]]
    on_complete: Optional[Callable[[], Awaitable[None]]] = None
