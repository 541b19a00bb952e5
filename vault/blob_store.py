"""Blob store adapters: local disk and remote HTTP object store."""

import asyncio
import os
import re
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from common.constants import STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger
from vault import config
from vault.exceptions import (
    BlobCredentialsRejectedError,
    BlobNetworkError,
    BlobNotConfiguredError,
    BlobNotFoundError,
    BlobRateLimitedError,
    BlobStoreError,
    BlobUpstreamError,
)

logger = get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(/[A-Za-z0-9_\-]+)*$")
_MAX_DETAIL_LENGTH = 500


def validate_blob_key(key: str) -> str:
    if not _KEY_PATTERN.match(key):
        raise BlobUpstreamError("Malformed blob key", detail=f"key={key!r}")
    return key


class BlobStream:
    """
    An opened blob: async iteration over its bytes plus an idempotent close.
    """

    def __init__(self, pieces: AsyncIterator[bytes], close: Callable[[], Awaitable[None]]):
        self._pieces = pieces
        self._close = close
        self._closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._pieces

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._close()


class BlobStore(ABC):
    """
    Opaque object store holding file bytes keyed by content.
    """

    @abstractmethod
    async def upload(self, source: Path, key: str) -> str:
        """
        Upload a staged file.

        Returns:
            Locator to store in the content record
        """

    @abstractmethod
    async def open_stream(self, locator: str) -> BlobStream:
        """
        Open a blob for streaming. Errors surface here, before any byte is read.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Delete a blob. A blob that is already gone counts as deleted.
        """

    async def close(self) -> None:
        return None


class LocalBlobStore(BlobStore):
    """
    Blob store backed by a directory on local disk.
    """

    def __init__(self, root: Optional[Path] = None, piece_size: int = STREAM_PIECE_SIZE_BYTES):
        self.root = Path(root if root is not None else config.BLOB_STORAGE_PATH)
        self.piece_size = piece_size

    def _path_for(self, key: str) -> Path:
        return self.root / f"{validate_blob_key(key)}.blob"

    async def upload(self, source: Path, key: str) -> str:
        target = self._path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_suffix(".partial")
        try:
            shutil.copyfile(source, partial)
            os.replace(partial, target)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise BlobUpstreamError("Failed to store blob", detail=str(e))
        logger.info(f"Stored blob [key={key}] [size={target.stat().st_size}]")
        return key

    async def open_stream(self, locator: str) -> BlobStream:
        path = self._path_for(locator)
        try:
            handle = open(path, 'rb')
        except FileNotFoundError:
            raise BlobNotFoundError("Blob not found", detail=f"key={locator}")
        except OSError as e:
            raise BlobUpstreamError("Failed to open blob", detail=str(e))

        piece_size = self.piece_size

        async def pieces() -> AsyncIterator[bytes]:
            while True:
                piece = handle.read(piece_size)
                if not piece:
                    break
                yield piece

        async def close() -> None:
            handle.close()

        return BlobStream(pieces(), close)

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink()
            logger.info(f"Deleted blob [key={key}]")
        except FileNotFoundError:
            logger.debug(f"Blob already gone [key={key}]")
        except OSError as e:
            raise BlobUpstreamError("Failed to delete blob", detail=str(e))


class HttpBlobStore(BlobStore):
    """
    Client for a remote object store speaking PUT/GET/DELETE on /blobs/{key}.

    Transient failures (rate limiting, 5xx, timeouts, connection and DNS
    errors) are retried within a small budget with linear backoff.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else config.BLOB_STORE_URL
        self.token = token if token is not None else config.BLOB_STORE_TOKEN
        self.timeout = timeout if timeout is not None else config.BLOB_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else config.BLOB_MAX_RETRIES
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else config.BLOB_RETRY_BACKOFF_SECONDS
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if not self.base_url or not self.token:
            raise BlobNotConfiguredError("Blob store is not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Authorization": f"Bearer {self.token}"},
                transport=self._transport,
            )
            logger.info(f"Initialized blob store client [base_url={self.base_url}]")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    async def _classify_response(response: httpx.Response, allow_missing: bool) -> Optional[BlobStoreError]:
        status_code = response.status_code
        if status_code < 400 or (allow_missing and status_code == 404):
            return None

        await response.aread()
        detail = f"status={status_code} body={response.text[:_MAX_DETAIL_LENGTH]}"

        if status_code in (401, 403):
            return BlobCredentialsRejectedError("Blob store rejected credentials", detail=detail)
        if status_code == 429:
            return BlobRateLimitedError("Blob store is rate limiting requests", detail=detail)
        if status_code == 404:
            return BlobNotFoundError("Blob not found", detail=detail)
        if status_code >= 500:
            return BlobUpstreamError("Blob store error", detail=detail, transient=True)
        return BlobUpstreamError("Blob store rejected the request", detail=detail)

    async def _send_with_retry(
        self,
        method: str,
        key: str,
        content_factory: Optional[Callable[[], bytes]] = None,
        stream: bool = False,
        allow_missing: bool = False,
    ) -> httpx.Response:
        client = self._ensure_client()
        url = f"/blobs/{validate_blob_key(key)}"

        for attempt in range(self.max_retries + 1):
            content = content_factory() if content_factory is not None else None
            request = client.build_request(method, url, content=content)
            try:
                response = await client.send(request, stream=stream)
            except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
                error = BlobNetworkError("Blob store unreachable", detail=f"{type(e).__name__}: {e}")
            else:
                error = await self._classify_response(response, allow_missing)
                if error is None:
                    return response
                await response.aclose()

            if error.transient and attempt < self.max_retries:
                delay = self.backoff_seconds * (attempt + 1)
                logger.warning(
                    f"Blob store {error.reason} (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{method} {url}, retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                continue

            logger.error(f"Blob store request failed: {method} {url} reason={error.reason}")
            raise error

        raise BlobUpstreamError("Blob store retry budget exhausted")

    async def upload(self, source: Path, key: str) -> str:
        def read_source() -> bytes:
            return Path(source).read_bytes()

        response = await self._send_with_retry("PUT", key, content_factory=read_source)
        logger.info(f"Uploaded blob [key={key}] [status={response.status_code}]")
        return key

    async def open_stream(self, locator: str) -> BlobStream:
        response = await self._send_with_retry("GET", locator, stream=True)
        return BlobStream(response.aiter_bytes(STREAM_PIECE_SIZE_BYTES), response.aclose)

    async def delete(self, key: str) -> None:
        response = await self._send_with_retry("DELETE", key, allow_missing=True)
        if response.status_code == 404:
            logger.debug(f"Blob already gone [key={key}]")
        else:
            logger.info(f"Deleted blob [key={key}]")


def create_blob_store() -> BlobStore:
    """Build the blob store selected by configuration."""
    if config.BLOB_BACKEND == "http":
        return HttpBlobStore()
    return LocalBlobStore()
