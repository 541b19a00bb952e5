"""Content service: lifecycle of ephemeral, access-controlled links."""

import asyncio
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from common.constants import BLOB_KEY_PREFIX, ID_GENERATION_ATTEMPTS, MAX_FILENAME_LENGTH
from common.logging_config import get_logger
from vault import config
from vault.auth import hash_password, verify_password
from vault.blob_store import BlobStore
from vault.exceptions import (
    AuthenticationRequiredError,
    BlobStoreError,
    ConflictError,
    ContentNotFoundError,
    ForbiddenError,
    PasswordRejectedError,
    PasswordRequiredError,
    QuotaExceededError,
    StorageUnavailableError,
    ValidationError,
)
from vault.repositories.content_repository import ContentRecord, ContentRepository
from vault.repositories.orphan_repository import OrphanRepository
from vault.services.quota import QuotaEngine
from vault.types import (
    ContentDownload,
    ContentKind,
    ContentView,
    CreatedContent,
    CreateOptions,
    DeleteCredential,
    StagedUpload,
)
from vault.utils import generate_content_id, generate_delete_token, utc_now

logger = get_logger(__name__)


class OneShotCleanup:
    """
    Wraps a cleanup coroutine so it runs at most once, however many
    completion signals fire.
    """

    def __init__(self, action: Callable[[], Awaitable[None]]):
        self._action = action
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    async def __call__(self) -> None:
        if self._fired:
            return
        self._fired = True
        await self._action()


class ContentService:
    def __init__(
        self,
        blob_store: BlobStore,
        clock: Callable[[], datetime] = utc_now,
        file_view_consumes_quota: Optional[bool] = None,
    ):
        self.content_repo = ContentRepository()
        self.orphan_repo = OrphanRepository()
        self.quota_engine = QuotaEngine(self.content_repo)
        self.blob_store = blob_store
        self._clock = clock
        self.file_view_consumes_quota = (
            config.FILE_VIEW_CONSUMES_QUOTA if file_view_consumes_quota is None else file_view_consumes_quota
        )

    async def create_content(
        self,
        text: Optional[str] = None,
        upload: Optional[StagedUpload] = None,
        options: Optional[CreateOptions] = None,
        owner_id: Optional[str] = None,
    ) -> CreatedContent:
        """
        Create a link for a piece of text or a staged file.

        The blob is uploaded before the metadata is written, so a caller can
        never reach a record whose bytes are missing. The staged file is
        removed on every exit path.

        Raises:
            ValidationError: Malformed payload, filename, size or limits
            StorageUnavailableError: Blob store failure after retries
            ConflictError: No free identifier within the retry budget
        """
        options = options or CreateOptions()
        try:
            has_text = isinstance(text, str) and text.strip() != ""
            if has_text == (upload is not None):
                raise ValidationError("Provide either text or a file (only one)")

            if upload is not None:
                self._validate_filename(upload.original_name)
                if upload.size > config.MAX_UPLOAD_BYTES:
                    raise ValidationError(
                        f"File too large, maximum size is {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
                    )

            max_access = self._normalize_max_access(options.max_access, options.burn_after_read)
            created_at = self._clock()
            expires_at = self._compute_expiry(options.expires_in_minutes, created_at)

            password = (options.password or "").strip()
            password_hash = await self._run_blocking(hash_password, password) if password else None

            content_id = await self._allocate_content_id()
            delete_token = generate_delete_token()

            record = ContentRecord(
                content_id=content_id,
                kind=ContentKind.FILE if upload is not None else ContentKind.TEXT,
                text_content=text if upload is None else None,
                blob_key=None,
                original_name=None,
                size=None,
                password_hash=password_hash,
                burn_after_read=options.burn_after_read,
                max_access=max_access,
                access_count=0,
                owner_id=owner_id,
                delete_token=delete_token,
                created_at=created_at,
                expires_at=expires_at,
            )

            if upload is None:
                await self._run_blocking(self.content_repo.create_content, record)
            else:
                blob_key = f"{BLOB_KEY_PREFIX}/{content_id}"
                try:
                    locator = await self.blob_store.upload(upload.path, blob_key)
                except BlobStoreError as e:
                    logger.error(f"Blob upload failed [content_id={content_id}] reason={e.reason}")
                    raise self._storage_error("upload", e)

                record.blob_key = locator
                record.original_name = upload.original_name
                record.size = upload.size
                try:
                    await self._run_blocking(self.content_repo.create_content, record)
                except Exception as e:
                    logger.error(f"Metadata write failed after blob upload [content_id={content_id}]: {e}")
                    await self._delete_blob(locator, reason="metadata_write_failed")
                    raise

            logger.info(
                f"Created {record.kind.value} link [content_id={content_id}] "
                f"[owner_id={owner_id or 'anonymous'}] [max_access={max_access}] "
                f"[expires_at={expires_at.isoformat()}]"
            )
            return CreatedContent(
                content_id=content_id,
                kind=record.kind,
                delete_token=delete_token,
                expires_at=expires_at,
            )
        finally:
            if upload is not None:
                self._remove_staged(upload.path)

    async def get_content(self, content_id: str, password: Optional[str] = None) -> ContentView:
        """
        Consume a link: enforce expiry, password and quota, then return its view.

        Raises:
            ContentNotFoundError: Absent, expired, or a burn-after-read link already read
            PasswordRequiredError: Password protected and none supplied
            PasswordRejectedError: Wrong password
            QuotaExceededError: Access limit reached (the record is removed)
        """
        record = await self._load_live(content_id)
        await self._check_password(record, password)

        if record.kind is ContentKind.TEXT or self.file_view_consumes_quota:
            record = await self._spend(record)

        view = record.to_view()

        if record.kind is ContentKind.TEXT and record.burn_after_read:
            logger.info(f"Burning text link after read [content_id={content_id}]")
            await self._purge(record, reason="burn_after_read")

        return view

    async def download_content(self, content_id: str, password: Optional[str] = None) -> ContentDownload:
        """
        Open a file link for download.

        Spends quota independently of get_content. The blob stream is opened
        before the access is spent, so a storage failure never uses up an
        access, and a caller holding an access already holds the bytes.
        When this download takes the last access (always the case for
        burn-after-read files) the returned on_complete hook deletes the
        record and blob once delivery ends; it runs at most once.
        """
        record = await self._load_live(content_id)
        if record.kind is not ContentKind.FILE:
            raise ValidationError("Link does not point to a file")

        await self._check_password(record, password)

        try:
            blob_stream = await self.blob_store.open_stream(record.blob_key)
        except BlobStoreError as e:
            logger.error(f"Blob fetch failed [content_id={content_id}] reason={e.reason}")
            raise self._storage_error("download", e)

        spent = False
        try:
            record = await self._spend(record)
            spent = True
        finally:
            if not spent:
                await blob_stream.aclose()

        on_complete = None
        if record.max_access is not None and record.access_count >= record.max_access:
            reason = "burn_after_read" if record.burn_after_read else "quota_exhausted"

            async def finish() -> None:
                logger.info(f"Last access delivered, removing link [content_id={content_id}] [reason={reason}]")
                await self._purge(record, reason=reason)

            on_complete = OneShotCleanup(finish)

        return ContentDownload(
            view=record.to_view(),
            filename=record.original_name,
            size=record.size,
            stream=blob_stream,
            close_stream=blob_stream.aclose,
            on_complete=on_complete,
        )

    async def stream_download(self, download: ContentDownload) -> AsyncIterator[bytes]:
        """
        Yield the bytes of an opened download.

        The blob stream is closed and on_complete runs when iteration ends,
        fails, or is abandoned by the consumer.
        """
        bytes_streamed = 0
        try:
            async for piece in download.stream:
                bytes_streamed += len(piece)
                yield piece
            logger.info(
                f"Download complete [content_id={download.view.content_id}] [bytes={bytes_streamed}]"
            )
        except Exception as e:
            logger.error(
                f"Download interrupted [content_id={download.view.content_id}] "
                f"after {bytes_streamed} bytes: {e}"
            )
            raise
        finally:
            await download.close_stream()
            if download.on_complete is not None:
                await download.on_complete()

    async def delete_content(self, content_id: str, credential: DeleteCredential) -> None:
        """
        Delete a link on behalf of its owner or a holder of its delete token.

        Raises:
            ContentNotFoundError: Absent or expired
            ForbiddenError: Neither the identity nor the token matches
        """
        record = await self._load_live(content_id)

        is_owner = (
            credential.owner_id is not None
            and record.owner_id is not None
            and credential.owner_id == record.owner_id
        )
        token_valid = bool(credential.delete_token) and secrets.compare_digest(
            credential.delete_token.encode("utf-8"), record.delete_token.encode("utf-8")
        )

        if not is_owner and not token_valid:
            logger.warning(f"Delete rejected: invalid credential [content_id={content_id}]")
            raise ForbiddenError("Unauthorized. Invalid delete token.")

        await self._purge(record, reason="deleted")
        logger.info(
            f"Link deleted [content_id={content_id}] [by={'owner' if is_owner else 'delete_token'}]"
        )

    async def list_owned(self, owner_id: Optional[str]) -> List[ContentView]:
        """Live links of an owner, newest first, secrets stripped."""
        if owner_id is None:
            raise AuthenticationRequiredError("Authentication required")
        records = await self._run_blocking(self.content_repo.list_by_owner, owner_id, self._clock())
        return [record.to_view() for record in records]

    @staticmethod
    async def _run_blocking(func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _load_live(self, content_id: str) -> ContentRecord:
        record = await self._run_blocking(self.content_repo.get_by_id, content_id)
        if record is None:
            raise ContentNotFoundError("Link is invalid or has expired")

        if record.is_expired(self._clock()):
            logger.info(f"Expired link accessed, reclaiming [content_id={content_id}]")
            await self._purge(record, reason="expired")
            raise ContentNotFoundError("Link is invalid or has expired")

        return record

    async def _check_password(self, record: ContentRecord, password: Optional[str]) -> None:
        if record.password_hash is None:
            return

        supplied = (password or "").strip()
        if not supplied:
            raise PasswordRequiredError("Password required")
        if not await self._run_blocking(verify_password, supplied, record.password_hash):
            logger.warning(f"Wrong link password [content_id={record.content_id}]")
            raise PasswordRejectedError("Incorrect password")

    async def _spend(self, record: ContentRecord) -> ContentRecord:
        """
        Spend one access of a record.

        Raises:
            QuotaExceededError: Access limit reached (the record is retired)
            ContentNotFoundError: The record is gone, or it was a
                burn-after-read link whose single access went to another caller
        """
        try:
            return await self.quota_engine.spend(record)
        except QuotaExceededError:
            await self._retire(record, reason="quota_exhausted")
            if record.burn_after_read:
                raise ContentNotFoundError("Link is invalid or has expired")
            raise

    async def _retire(self, record: ContentRecord, reason: str) -> None:
        """
        Remove the metadata of a record whose accesses are used up.

        Its blob is left to the downloads that already hold it; the caller
        that took the last access deletes it once delivery ends. The blob is
        also recorded as an orphan so the reaper reclaims it if that never
        happens.
        """
        await self._run_blocking(self.content_repo.delete_content, record.content_id)
        if record.kind is ContentKind.FILE and record.blob_key:
            await self._run_blocking(self.orphan_repo.record_orphan, record.blob_key, reason, self._clock())

    async def _purge(self, record: ContentRecord, reason: str) -> None:
        """
        Remove a record, metadata first and then its blob.

        A record or blob that is already gone counts as removed.
        """
        await self._run_blocking(self.content_repo.delete_content, record.content_id)
        if record.kind is ContentKind.FILE and record.blob_key:
            await self._delete_blob(record.blob_key, reason)

    async def _delete_blob(self, blob_key: str, reason: str) -> bool:
        try:
            await self.blob_store.delete(blob_key)
        except BlobStoreError as e:
            logger.warning(f"Blob delete failed [blob_key={blob_key}] reason={e.reason}; recording orphan")
            await self._run_blocking(self.orphan_repo.record_orphan, blob_key, reason, self._clock())
            return False
        await self._run_blocking(self.orphan_repo.remove_orphan, blob_key)
        return True

    async def _allocate_content_id(self) -> str:
        for attempt in range(ID_GENERATION_ATTEMPTS):
            content_id = generate_content_id()
            if not await self._run_blocking(self.content_repo.exists, content_id):
                return content_id
            logger.warning(f"Content id collision (attempt {attempt + 1}/{ID_GENERATION_ATTEMPTS})")
        raise ConflictError("Could not allocate a unique link identifier")

    @staticmethod
    def _validate_filename(filename: Optional[str]) -> None:
        if not filename or not isinstance(filename, str):
            raise ValidationError("Invalid file name.")
        if len(filename) > MAX_FILENAME_LENGTH:
            raise ValidationError("File name is too long.")
        if "\x00" in filename:
            raise ValidationError("Invalid file name.")

        extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if extension and extension in config.BLOCKED_EXTENSIONS:
            raise ValidationError(f"File extension '.{extension}' is not allowed")

    @staticmethod
    def _normalize_max_access(max_access: Optional[int], burn_after_read: bool) -> Optional[int]:
        if max_access is not None:
            if isinstance(max_access, bool) or not isinstance(max_access, int) or max_access < 1:
                raise ValidationError("Max access must be a positive integer")

        if burn_after_read:
            return 1
        return max_access

    @staticmethod
    def _compute_expiry(expires_in_minutes: Optional[int], now: datetime) -> datetime:
        minutes = expires_in_minutes
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            minutes = config.DEFAULT_EXPIRY_MINUTES
        minutes = min(minutes, config.MAX_EXPIRY_MINUTES)
        return max(now, now + timedelta(minutes=minutes))

    @staticmethod
    def _storage_error(action: str, error: BlobStoreError) -> StorageUnavailableError:
        return StorageUnavailableError(
            f"File storage unavailable during {action}",
            reason=error.reason,
            detail=error.detail,
        )

    @staticmethod
    def _remove_staged(path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove staged upload {path}: {e}")
