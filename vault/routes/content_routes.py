"""Content link API routes."""

import os
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Header, Request, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from common.constants import NO_STORE_HEADERS, PASSWORD_HEADER, STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger
from vault import config
from vault.auth import get_current_user, get_optional_user
from vault.exceptions import ValidationError
from vault.schemas.content import (
    ContentResponse,
    CreateContentResponse,
    DeleteContentRequest,
    DeleteContentResponse,
    ListContentResponse,
)
from vault.services.content_service import ContentService
from vault.types import ContentKind, ContentView, CreateOptions, DeleteCredential, StagedUpload
from vault.utils import parse_lenient_int, parse_optional_int, parse_strict_bool

logger = get_logger(__name__)

router = APIRouter(prefix="/api/content", tags=["Content"])


def get_content_service(request: Request) -> ContentService:
    return request.app.state.content_service


async def stage_upload(file: UploadFile) -> StagedUpload:
    """
    Write an incoming upload to the staging directory, enforcing the size limit.

    Raises:
        ValidationError: If the upload exceeds MAX_UPLOAD_BYTES
    """
    staging_dir = Path(config.STAGING_DIR)
    staging_dir.mkdir(parents=True, exist_ok=True)
    fd, raw_path = tempfile.mkstemp(dir=staging_dir, suffix=".upload")
    path = Path(raw_path)

    size = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                piece = await file.read(STREAM_PIECE_SIZE_BYTES)
                if not piece:
                    break
                size += len(piece)
                if size > config.MAX_UPLOAD_BYTES:
                    raise ValidationError(
                        f"File too large, maximum size is {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
                    )
                out.write(piece)
    except Exception:
        path.unlink(missing_ok=True)
        raise

    return StagedUpload(path=path, original_name=file.filename or "", size=size)


def _to_response(request: Request, view: ContentView) -> ContentResponse:
    download_url = None
    if view.kind is ContentKind.FILE:
        download_url = str(request.url_for("download_content", content_id=view.content_id))
    return ContentResponse.from_view(view, download_url=download_url)


@router.post("", response_model=CreateContentResponse, status_code=status.HTTP_201_CREATED)
async def create_content(
    request: Request,
    text: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    password: Optional[str] = Form(None),
    expires_in: Optional[str] = Form(None),
    max_access: Optional[str] = Form(None),
    burn_after_read: Optional[str] = Form(None),
    current_user: Optional[str] = Depends(get_optional_user),
    content_service: ContentService = Depends(get_content_service),
):
    """
    Create a link for text or a file (exactly one).

    Parameters:
        - text / file: Content to share (multipart/form-data)
        - password: Optional password gate
        - expires_in: Minutes until expiry (defaults to 10 when absent or invalid)
        - max_access: Optional positive integer access limit
        - burn_after_read: 'true' or 'false'
        - Authorization header: Bearer <api_key> (optional, records the owner)

    Raises:
        - 400: Invalid input
        - 401: Invalid API Key
        - 409: No free identifier
        - 502/503: Blob storage unavailable
    """
    options = CreateOptions(
        password=password,
        expires_in_minutes=parse_lenient_int(expires_in),
        max_access=parse_optional_int(max_access, "max_access"),
        burn_after_read=parse_strict_bool(burn_after_read, "burn_after_read"),
    )

    staged = await stage_upload(file) if file is not None else None

    created = await content_service.create_content(
        text=text,
        upload=staged,
        options=options,
        owner_id=current_user,
    )

    return CreateContentResponse(
        message="Upload successful!",
        content_id=created.content_id,
        kind=created.kind.value,
        link=str(request.url_for("get_content", content_id=created.content_id)),
        delete_token=created.delete_token,
        expires_at=created.expires_at.isoformat(),
    )


@router.get("/mine", response_model=ListContentResponse)
async def list_my_content(
    request: Request,
    response: Response,
    current_user: str = Depends(get_current_user),
    content_service: ContentService = Depends(get_content_service),
):
    """
    List the caller's live links, newest first.

    Raises:
        - 401: Missing or invalid API Key
    """
    views = await content_service.list_owned(current_user)
    response.headers.update(NO_STORE_HEADERS)
    return ListContentResponse(contents=[_to_response(request, view) for view in views])


@router.get("/{content_id}", response_model=ContentResponse)
async def get_content(
    content_id: str,
    request: Request,
    response: Response,
    password: Optional[str] = Header(None, alias=PASSWORD_HEADER),
    content_service: ContentService = Depends(get_content_service),
):
    """
    View a link. Text links spend one access.

    Raises:
        - 401: Password required
        - 403: Incorrect password
        - 404: Link invalid or expired
        - 410: Access limit reached
    """
    view = await content_service.get_content(content_id, password)
    response.headers.update(NO_STORE_HEADERS)
    return _to_response(request, view)


@router.get("/{content_id}/download")
async def download_content(
    content_id: str,
    password: Optional[str] = Header(None, alias=PASSWORD_HEADER),
    content_service: ContentService = Depends(get_content_service),
):
    """
    Stream the file behind a link. Every download spends one access.

    Raises:
        - 400: Link is not a file
        - 401: Password required
        - 403: Incorrect password
        - 404: Link invalid or expired
        - 410: Access limit reached
        - 502/503: Blob storage unavailable
    """
    download = await content_service.download_content(content_id, password)

    headers = dict(NO_STORE_HEADERS)
    headers["Content-Disposition"] = f"attachment; filename*=UTF-8''{quote(download.filename)}"
    if download.size is not None:
        headers["Content-Length"] = str(download.size)

    background = BackgroundTask(download.on_complete) if download.on_complete is not None else None

    return StreamingResponse(
        content_service.stream_download(download),
        media_type="application/octet-stream",
        headers=headers,
        background=background,
    )


@router.post("/{content_id}/delete", response_model=DeleteContentResponse)
async def delete_content(
    content_id: str,
    body: Optional[DeleteContentRequest] = None,
    current_user: Optional[str] = Depends(get_optional_user),
    content_service: ContentService = Depends(get_content_service),
):
    """
    Delete a link as its owner or with its delete token.

    Raises:
        - 403: Neither owner nor valid delete token
        - 404: Link invalid or expired
    """
    credential = DeleteCredential(
        owner_id=current_user,
        delete_token=body.delete_token if body is not None else None,
    )
    await content_service.delete_content(content_id, credential)
    return DeleteContentResponse(message="Content deleted successfully", content_id=content_id)
