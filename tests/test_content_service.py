"""Tests for the content service lifecycle."""

import pytest

from vault.blob_store import BlobStream
from vault.database import get_db_connection
from vault.exceptions import (
    AuthenticationRequiredError,
    BlobNetworkError,
    BlobUpstreamError,
    ConflictError,
    ContentNotFoundError,
    ForbiddenError,
    PasswordRejectedError,
    PasswordRequiredError,
    QuotaExceededError,
    StorageUnavailableError,
    ValidationError,
)
from vault.repositories.content_repository import ContentRepository
from vault.repositories.orphan_repository import OrphanRepository
from vault.services.content_service import ContentService, OneShotCleanup
from vault.types import ContentKind, CreateOptions, DeleteCredential


async def read_all(service: ContentService, download) -> bytes:
    data = b""
    async for piece in service.stream_download(download):
        data += piece
    return data


class FailingDeleteStore:
    """Wraps a blob store and fails every delete."""

    def __init__(self, inner):
        self.inner = inner
        self.delete_attempts = []

    async def upload(self, source, key):
        return await self.inner.upload(source, key)

    async def open_stream(self, locator):
        return await self.inner.open_stream(locator)

    async def delete(self, key):
        self.delete_attempts.append(key)
        raise BlobNetworkError("Blob store unreachable", detail="ConnectError")

    async def close(self):
        return None


class FailingUploadStore(FailingDeleteStore):
    async def upload(self, source, key):
        raise BlobNetworkError("Blob store unreachable", detail="ConnectTimeout")


class FlakyOpenStore:
    """Wraps a blob store, fails the first opens and counts stream closes."""

    def __init__(self, inner, failures: int):
        self.inner = inner
        self.failures = failures
        self.opened = 0
        self.closed = 0

    async def upload(self, source, key):
        return await self.inner.upload(source, key)

    async def open_stream(self, locator):
        if self.failures > 0:
            self.failures -= 1
            raise BlobUpstreamError("Blob store error", detail="status=503", transient=True)
        stream = await self.inner.open_stream(locator)
        self.opened += 1

        async def close():
            self.closed += 1
            await stream.aclose()

        return BlobStream(stream.__aiter__(), close)

    async def delete(self, key):
        await self.inner.delete(key)

    async def close(self):
        return None


class TestCreateContent:
    """Test link creation."""

    @pytest.mark.asyncio
    async def test_create_text_defaults(self, service, clock):
        created = await service.create_content(text="hello there")

        assert created.kind is ContentKind.TEXT
        assert len(created.content_id) == 32
        assert len(created.delete_token) == 32
        assert created.delete_token != created.content_id

        record = ContentRepository.get_by_id(created.content_id)
        assert record.text_content == "hello there"
        assert record.blob_key is None
        assert record.password_hash is None
        assert record.max_access is None
        assert record.access_count == 0
        assert record.created_at == clock.now
        assert (record.expires_at - record.created_at).total_seconds() == 600

    @pytest.mark.asyncio
    async def test_create_file_uploads_blob_first(self, service, make_upload, blob_store):
        upload = make_upload("notes.txt", b"file body")

        created = await service.create_content(upload=upload)

        record = ContentRepository.get_by_id(created.content_id)
        assert record.kind is ContentKind.FILE
        assert record.original_name == "notes.txt"
        assert record.size == len(b"file body")
        assert record.blob_key == f"linkvault/{created.content_id}"
        assert (blob_store.root / f"{record.blob_key}.blob").read_bytes() == b"file body"

    @pytest.mark.asyncio
    async def test_staged_file_removed_on_success(self, service, make_upload):
        upload = make_upload()
        await service.create_content(upload=upload)
        assert not upload.path.exists()

    @pytest.mark.asyncio
    async def test_staged_file_removed_on_validation_failure(self, service, make_upload):
        upload = make_upload("setup.exe", b"MZ")
        with pytest.raises(ValidationError):
            await service.create_content(upload=upload)
        assert not upload.path.exists()

    @pytest.mark.asyncio
    async def test_staged_file_removed_on_storage_failure(self, test_db, blob_store, clock, make_upload):
        service = ContentService(FailingUploadStore(blob_store), clock=clock)
        upload = make_upload()

        with pytest.raises(StorageUnavailableError) as exc_info:
            await service.create_content(upload=upload)

        assert exc_info.value.reason == "network_unavailable"
        assert not upload.path.exists()

    @pytest.mark.asyncio
    async def test_storage_failure_writes_no_metadata(self, test_db, blob_store, clock, make_upload):
        service = ContentService(FailingUploadStore(blob_store), clock=clock)

        with pytest.raises(StorageUnavailableError):
            await service.create_content(upload=make_upload())

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM contents")
            assert cursor.fetchone()[0] == 0

    @pytest.mark.asyncio
    async def test_metadata_failure_removes_uploaded_blob(self, service, make_upload, blob_store, monkeypatch):
        def fail_write(record):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service.content_repo, "create_content", fail_write)

        with pytest.raises(RuntimeError):
            await service.create_content(upload=make_upload())

        assert list(blob_store.root.rglob("*.blob")) == []

    @pytest.mark.asyncio
    async def test_metadata_failure_with_blob_delete_failure_records_orphan(
        self, test_db, blob_store, clock, make_upload, monkeypatch
    ):
        store = FailingDeleteStore(blob_store)
        service = ContentService(store, clock=clock)

        def fail_write(record):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service.content_repo, "create_content", fail_write)

        with pytest.raises(RuntimeError):
            await service.create_content(upload=make_upload())

        orphans = OrphanRepository.list_orphans()
        assert [o.blob_key for o in orphans] == store.delete_attempts
        assert orphans[0].reason == "metadata_write_failed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [None, "", "   "])
    async def test_requires_a_payload(self, service, text):
        with pytest.raises(ValidationError):
            await service.create_content(text=text)

    @pytest.mark.asyncio
    async def test_rejects_text_and_file_together(self, service, make_upload):
        upload = make_upload()
        with pytest.raises(ValidationError):
            await service.create_content(text="both", upload=upload)
        assert not upload.path.exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "a" * 256, "bad\x00name.txt", "run.BAT"])
    async def test_rejects_bad_filenames(self, service, make_upload, name):
        with pytest.raises(ValidationError):
            await service.create_content(upload=make_upload(name))

    @pytest.mark.asyncio
    async def test_rejects_oversized_upload(self, service, make_upload, monkeypatch):
        monkeypatch.setattr("vault.config.MAX_UPLOAD_BYTES", 4)
        with pytest.raises(ValidationError):
            await service.create_content(upload=make_upload(data=b"too large"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_access", [0, -3])
    async def test_rejects_non_positive_max_access(self, service, max_access):
        with pytest.raises(ValidationError):
            await service.create_content(text="x", options=CreateOptions(max_access=max_access))

    @pytest.mark.asyncio
    async def test_burn_after_read_forces_single_access(self, service):
        created = await service.create_content(
            text="x", options=CreateOptions(max_access=5, burn_after_read=True)
        )
        assert ContentRepository.get_by_id(created.content_id).max_access == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes, expected", [(None, 10), (0, 10), (-5, 10), (30, 30), (10 ** 9, 7 * 24 * 60)])
    async def test_expiry_defaulting_and_clamping(self, service, clock, minutes, expected):
        created = await service.create_content(text="x", options=CreateOptions(expires_in_minutes=minutes))
        assert (created.expires_at - clock.now).total_seconds() == expected * 60

    @pytest.mark.asyncio
    async def test_password_is_hashed_and_trimmed(self, service):
        created = await service.create_content(text="x", options=CreateOptions(password="  s3cret  "))

        record = ContentRepository.get_by_id(created.content_id)
        assert record.password_hash is not None
        assert "s3cret" not in record.password_hash

        view = await service.get_content(created.content_id, "s3cret")
        assert view.has_password is True

    @pytest.mark.asyncio
    async def test_blank_password_means_no_password(self, service):
        created = await service.create_content(text="x", options=CreateOptions(password="   "))
        assert ContentRepository.get_by_id(created.content_id).password_hash is None

    @pytest.mark.asyncio
    async def test_id_collisions_exhaust_into_conflict(self, service, monkeypatch):
        monkeypatch.setattr(service.content_repo, "exists", lambda content_id: True)
        with pytest.raises(ConflictError):
            await service.create_content(text="x")


class TestGetContent:
    """Test consuming links."""

    @pytest.mark.asyncio
    async def test_max_access_two_round_trip(self, service):
        created = await service.create_content(text="twice", options=CreateOptions(max_access=2))

        first = await service.get_content(created.content_id)
        second = await service.get_content(created.content_id)
        assert first.text_content == "twice"
        assert (first.access_count, second.access_count) == (1, 2)

        with pytest.raises(QuotaExceededError):
            await service.get_content(created.content_id)

        with pytest.raises(ContentNotFoundError):
            await service.get_content(created.content_id)

    @pytest.mark.asyncio
    async def test_burn_text_second_read_not_found(self, service):
        created = await service.create_content(text="once", options=CreateOptions(burn_after_read=True))

        view = await service.get_content(created.content_id)
        assert view.text_content == "once"

        with pytest.raises(ContentNotFoundError):
            await service.get_content(created.content_id)

    @pytest.mark.asyncio
    async def test_burn_text_reader_losing_the_race_sees_not_found(self, service):
        created = await service.create_content(text="once", options=CreateOptions(burn_after_read=True))
        # Another reader has taken the single access but not yet removed the record.
        ContentRepository.conditional_increment(created.content_id, 1)

        with pytest.raises(ContentNotFoundError):
            await service.get_content(created.content_id)
        assert ContentRepository.get_by_id(created.content_id) is None

    @pytest.mark.asyncio
    async def test_expired_is_not_found_and_reclaimed(self, service, clock):
        created = await service.create_content(text="soon gone", options=CreateOptions(expires_in_minutes=1))
        clock.advance(minutes=1, seconds=1)

        with pytest.raises(ContentNotFoundError):
            await service.get_content(created.content_id)
        assert ContentRepository.get_by_id(created.content_id) is None

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, service):
        with pytest.raises(ContentNotFoundError):
            await service.get_content("0" * 32)

    @pytest.mark.asyncio
    async def test_password_required_then_rejected_then_accepted(self, service):
        created = await service.create_content(
            text="guarded", options=CreateOptions(password="pw", max_access=1)
        )

        with pytest.raises(PasswordRequiredError):
            await service.get_content(created.content_id)
        with pytest.raises(PasswordRequiredError):
            await service.get_content(created.content_id, "   ")
        with pytest.raises(PasswordRejectedError):
            await service.get_content(created.content_id, "wrong")

        assert ContentRepository.get_by_id(created.content_id).access_count == 0

        view = await service.get_content(created.content_id, " pw ")
        assert view.text_content == "guarded"
        assert view.access_count == 1

    @pytest.mark.asyncio
    async def test_file_view_does_not_spend_quota_by_default(self, service, make_upload):
        created = await service.create_content(upload=make_upload(), options=CreateOptions(max_access=1))

        view = await service.get_content(created.content_id)
        await service.get_content(created.content_id)

        assert view.text_content is None
        assert view.original_name == "report.pdf"
        assert ContentRepository.get_by_id(created.content_id).access_count == 0

    @pytest.mark.asyncio
    async def test_file_view_spends_quota_when_configured(self, test_db, blob_store, clock, make_upload):
        service = ContentService(blob_store, clock=clock, file_view_consumes_quota=True)
        created = await service.create_content(upload=make_upload(), options=CreateOptions(max_access=1))

        await service.get_content(created.content_id)
        with pytest.raises(QuotaExceededError):
            await service.get_content(created.content_id)

        blob_key = f"linkvault/{created.content_id}"
        assert ContentRepository.get_by_id(created.content_id) is None
        assert [o.blob_key for o in OrphanRepository.list_orphans()] == [blob_key]

    @pytest.mark.asyncio
    async def test_view_never_carries_secrets(self, service):
        created = await service.create_content(text="x", options=CreateOptions(password="pw"))
        view = await service.get_content(created.content_id, "pw")

        fields = vars(view)
        assert "password_hash" not in fields
        assert "delete_token" not in fields
        assert created.delete_token not in repr(view)


class TestDownloadContent:
    """Test file downloads."""

    @pytest.mark.asyncio
    async def test_download_streams_bytes_and_spends_quota(self, service, make_upload):
        created = await service.create_content(upload=make_upload("data.csv", b"a,b\n1,2\n"))

        download = await service.download_content(created.content_id)
        assert download.filename == "data.csv"
        assert download.size == 8
        assert download.on_complete is None
        assert await read_all(service, download) == b"a,b\n1,2\n"

        assert ContentRepository.get_by_id(created.content_id).access_count == 1

    @pytest.mark.asyncio
    async def test_burn_file_removed_after_download(self, service, make_upload, blob_store):
        created = await service.create_content(
            upload=make_upload(data=b"one shot"), options=CreateOptions(burn_after_read=True)
        )
        blob_key = ContentRepository.get_by_id(created.content_id).blob_key

        download = await service.download_content(created.content_id)
        assert await read_all(service, download) == b"one shot"

        assert download.on_complete.fired is True
        assert ContentRepository.get_by_id(created.content_id) is None
        with pytest.raises(BlobUpstreamError):
            await blob_store.open_stream(blob_key)
        with pytest.raises(ContentNotFoundError):
            await service.download_content(created.content_id)

    @pytest.mark.asyncio
    async def test_burn_file_cleaned_up_when_client_disconnects(self, service, make_upload):
        created = await service.create_content(
            upload=make_upload(data=b"x" * 200_000), options=CreateOptions(burn_after_read=True)
        )
        download = await service.download_content(created.content_id)

        stream = service.stream_download(download)
        await stream.__anext__()
        await stream.aclose()

        assert download.on_complete.fired is True
        assert ContentRepository.get_by_id(created.content_id) is None

        # A second completion signal is a no-op.
        await download.on_complete()

    @pytest.mark.asyncio
    async def test_download_of_text_link_is_rejected(self, service):
        created = await service.create_content(text="not a file")
        with pytest.raises(ValidationError):
            await service.download_content(created.content_id)

    @pytest.mark.asyncio
    async def test_download_checks_password(self, service, make_upload):
        created = await service.create_content(upload=make_upload(), options=CreateOptions(password="pw"))

        with pytest.raises(PasswordRequiredError):
            await service.download_content(created.content_id)
        with pytest.raises(PasswordRejectedError):
            await service.download_content(created.content_id, "nope")

        download = await service.download_content(created.content_id, "pw")
        assert await read_all(service, download) == b"quarterly numbers"

    @pytest.mark.asyncio
    async def test_missing_blob_surfaces_as_storage_error(self, service, make_upload, blob_store):
        created = await service.create_content(upload=make_upload())
        record = ContentRepository.get_by_id(created.content_id)
        await blob_store.delete(record.blob_key)

        with pytest.raises(StorageUnavailableError) as exc_info:
            await service.download_content(created.content_id)
        assert exc_info.value.reason == "blob_not_found"

    @pytest.mark.asyncio
    async def test_last_access_download_removes_link_after_delivery(self, service, make_upload, blob_store):
        created = await service.create_content(upload=make_upload(), options=CreateOptions(max_access=2))

        first = await service.download_content(created.content_id)
        assert first.on_complete is None
        await read_all(service, first)

        last = await service.download_content(created.content_id)
        assert last.on_complete is not None
        assert list(blob_store.root.rglob("*.blob")) != []
        assert await read_all(service, last) == b"quarterly numbers"

        assert ContentRepository.get_by_id(created.content_id) is None
        assert list(blob_store.root.rglob("*.blob")) == []
        with pytest.raises(ContentNotFoundError):
            await service.download_content(created.content_id)

    @pytest.mark.asyncio
    async def test_exhausted_download_keeps_blob_for_holders(self, service, make_upload, blob_store):
        created = await service.create_content(upload=make_upload(), options=CreateOptions(max_access=1))
        record = ContentRepository.get_by_id(created.content_id)
        holder = await service.download_content(created.content_id)

        with pytest.raises(QuotaExceededError):
            await service.download_content(created.content_id)

        assert ContentRepository.get_by_id(created.content_id) is None
        assert [o.blob_key for o in OrphanRepository.list_orphans()] == [record.blob_key]
        assert await read_all(service, holder) == b"quarterly numbers"
        assert list(blob_store.root.rglob("*.blob")) == []
        assert OrphanRepository.list_orphans() == []

    @pytest.mark.asyncio
    async def test_failed_blob_open_spends_no_access(self, test_db, blob_store, clock, make_upload):
        store = FlakyOpenStore(blob_store, failures=1)
        service = ContentService(store, clock=clock)
        created = await service.create_content(
            upload=make_upload(data=b"only copy"), options=CreateOptions(burn_after_read=True)
        )

        with pytest.raises(StorageUnavailableError):
            await service.download_content(created.content_id)
        assert ContentRepository.get_by_id(created.content_id).access_count == 0

        download = await service.download_content(created.content_id)
        assert await read_all(service, download) == b"only copy"
        assert ContentRepository.get_by_id(created.content_id) is None

    @pytest.mark.asyncio
    async def test_losing_download_closes_its_stream(self, test_db, blob_store, clock, make_upload):
        store = FlakyOpenStore(blob_store, failures=0)
        service = ContentService(store, clock=clock)
        created = await service.create_content(upload=make_upload(), options=CreateOptions(max_access=1))
        record = ContentRepository.get_by_id(created.content_id)
        ContentRepository.conditional_increment(record.content_id, record.max_access)

        with pytest.raises(QuotaExceededError):
            await service.download_content(created.content_id)

        assert store.opened == 1
        assert store.closed == 1


class TestDeleteContent:
    """Test deletion by owner or delete token."""

    @pytest.mark.asyncio
    async def test_delete_with_token_needs_no_identity(self, service):
        created = await service.create_content(text="x", owner_id="owner-1")

        await service.delete_content(created.content_id, DeleteCredential(delete_token=created.delete_token))

        with pytest.raises(ContentNotFoundError):
            await service.get_content(created.content_id)

    @pytest.mark.asyncio
    async def test_owner_can_delete_without_token(self, service):
        created = await service.create_content(text="x", owner_id="owner-1")
        await service.delete_content(created.content_id, DeleteCredential(owner_id="owner-1"))
        assert ContentRepository.get_by_id(created.content_id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credential", [
        DeleteCredential(),
        DeleteCredential(delete_token="f" * 32),
        DeleteCredential(owner_id="someone-else"),
        DeleteCredential(delete_token=""),
    ])
    async def test_wrong_credential_forbidden(self, service, credential):
        created = await service.create_content(text="x", owner_id="owner-1")

        with pytest.raises(ForbiddenError):
            await service.delete_content(created.content_id, credential)
        assert ContentRepository.get_by_id(created.content_id) is not None

    @pytest.mark.asyncio
    async def test_guest_link_has_no_owner_match(self, service):
        created = await service.create_content(text="x")
        with pytest.raises(ForbiddenError):
            await service.delete_content(created.content_id, DeleteCredential(owner_id=None))

    @pytest.mark.asyncio
    async def test_delete_file_removes_blob(self, service, make_upload, blob_store):
        created = await service.create_content(upload=make_upload())

        await service.delete_content(created.content_id, DeleteCredential(delete_token=created.delete_token))

        assert list(blob_store.root.rglob("*.blob")) == []

    @pytest.mark.asyncio
    async def test_blob_delete_failure_still_removes_metadata(self, test_db, blob_store, clock, make_upload):
        store = FailingDeleteStore(blob_store)
        service = ContentService(store, clock=clock)
        created = await service.create_content(upload=make_upload())

        await service.delete_content(created.content_id, DeleteCredential(delete_token=created.delete_token))

        assert ContentRepository.get_by_id(created.content_id) is None
        assert [o.blob_key for o in OrphanRepository.list_orphans()] == store.delete_attempts

    @pytest.mark.asyncio
    async def test_delete_unknown_is_not_found(self, service):
        with pytest.raises(ContentNotFoundError):
            await service.delete_content("0" * 32, DeleteCredential(delete_token="t"))


class TestListOwned:
    """Test owner listings."""

    @pytest.mark.asyncio
    async def test_lists_live_links_newest_first(self, service, clock, make_upload):
        first = await service.create_content(text="older", owner_id="owner-1")
        clock.advance(seconds=5)
        second = await service.create_content(upload=make_upload(), owner_id="owner-1")
        await service.create_content(text="not mine", owner_id="owner-2")
        await service.create_content(text="guest")

        views = await service.list_owned("owner-1")

        assert [v.content_id for v in views] == [second.content_id, first.content_id]
        assert [v.kind for v in views] == [ContentKind.FILE, ContentKind.TEXT]

    @pytest.mark.asyncio
    async def test_expired_links_not_listed(self, service, clock):
        await service.create_content(text="x", owner_id="owner-1", options=CreateOptions(expires_in_minutes=1))
        clock.advance(minutes=2)
        assert await service.list_owned("owner-1") == []

    @pytest.mark.asyncio
    async def test_requires_identity(self, service):
        with pytest.raises(AuthenticationRequiredError):
            await service.list_owned(None)


class TestOneShotCleanup:
    """Test the exactly-once cleanup guard."""

    @pytest.mark.asyncio
    async def test_runs_once(self):
        calls = []

        async def action():
            calls.append(1)

        cleanup = OneShotCleanup(action)
        assert cleanup.fired is False

        await cleanup()
        await cleanup()

        assert cleanup.fired is True
        assert calls == [1]
