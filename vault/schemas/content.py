"""Pydantic schemas for content endpoints."""

from typing import List, Optional

from pydantic import BaseModel

from vault.types import ContentView


class CreateContentResponse(BaseModel):
    """Response model for link creation."""
    message: str
    content_id: str
    kind: str
    link: str
    delete_token: str
    expires_at: str


class ContentResponse(BaseModel):
    """Sanitized content view; never carries the password hash or delete token."""
    content_id: str
    kind: str
    text_content: Optional[str] = None
    original_name: Optional[str] = None
    size: Optional[int] = None
    download_url: Optional[str] = None
    has_password: bool
    burn_after_read: bool
    max_access: Optional[int] = None
    access_count: int
    created_at: str
    expires_at: str

    @classmethod
    def from_view(cls, view: ContentView, download_url: Optional[str] = None) -> "ContentResponse":
        return cls(
            content_id=view.content_id,
            kind=view.kind.value,
            text_content=view.text_content,
            original_name=view.original_name,
            size=view.size,
            download_url=download_url,
            has_password=view.has_password,
            burn_after_read=view.burn_after_read,
            max_access=view.max_access,
            access_count=view.access_count,
            created_at=view.created_at.isoformat(),
            expires_at=view.expires_at.isoformat(),
        )


class ListContentResponse(BaseModel):
    """Response model for an owner's links."""
    contents: List[ContentResponse]


class DeleteContentRequest(BaseModel):
    """Request model for deleting a link with its delete token."""
    delete_token: Optional[str] = None


class DeleteContentResponse(BaseModel):
    """Response model for link deletion."""
    message: str
    content_id: str
