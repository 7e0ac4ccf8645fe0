"""Tests for UploadOrchestrator."""

import asyncio

import pytest

from envelope.errors import AnchorError, ConfigurationError, KeyWrapError, StoreUploadError
from envelope.payload import PayloadCodec
from envelope.wrapper import EnvelopeKeyWrapper, decode_wrapped_key
from records import UploadAttempt, UploadOrchestrator, UploadStage

from tests.conftest import CountingBlobStore, FailingBlobStore, FlakyRegistry, StallingBlobStore


class CountingCodec(PayloadCodec):
    """PayloadCodec that counts encrypt() calls."""
    encrypt_calls = 0

    @classmethod
    def encrypt(cls, plaintext, associated_data=None):
        cls.encrypt_calls += 1
        return super().encrypt(plaintext, associated_data)


class RefusingWrapper(EnvelopeKeyWrapper):
    @classmethod
    def wrap(cls, key, recipient_public_key):
        raise KeyWrapError("Key agreement with recipient public key failed")


class TestUpload:
    """Tests for the encrypt-store-anchor flow."""

    @pytest.mark.asyncio
    async def test_upload_creates_record(self, blob_store, registry, recipient):
        orchestrator = UploadOrchestrator(blob_store, registry)

        record_id = await orchestrator.upload(b"x" * 500, recipient.public_key, "patient-1")

        record = await registry.read(record_id)
        assert record_id == 1
        assert record.recipient == "patient-1"
        assert record.uploader == "hospital-1"
        assert len(await blob_store.get(record.content_id)) == 528

    @pytest.mark.asyncio
    async def test_wrapped_key_decrypts_stored_payload(self, blob_store, registry, recipient):
        """The anchored wrapped key opens exactly the stored blob."""
        orchestrator = UploadOrchestrator(blob_store, registry)
        record_id = await orchestrator.upload(b"referral letter", recipient.public_key, "patient-1")

        record = await registry.read(record_id)
        key = EnvelopeKeyWrapper.unwrap(decode_wrapped_key(record.wrapped_key), recipient.private_key)
        payload = await blob_store.get(record.content_id)

        assert PayloadCodec.decrypt(payload, key) == b"referral letter"

    @pytest.mark.asyncio
    async def test_metadata_stored_on_record(self, blob_store, registry, recipient):
        orchestrator = UploadOrchestrator(blob_store, registry)
        metadata = {"filename": "scan.png", "content_type": "image/png"}

        record_id = await orchestrator.upload(b"png", recipient.public_key, "patient-1", metadata)

        assert (await registry.read(record_id)).metadata == metadata

    @pytest.mark.asyncio
    async def test_anchored_metadata_cannot_be_changed_by_readers(self, blob_store, registry, recipient):
        orchestrator = UploadOrchestrator(blob_store, registry)
        record_id = await orchestrator.upload(
            b"png", recipient.public_key, "patient-1", {"filename": "scan.png"}
        )

        (await registry.read(record_id)).metadata["filename"] = "other.exe"

        assert (await registry.read(record_id)).metadata == {"filename": "scan.png"}

    @pytest.mark.asyncio
    async def test_ids_increase(self, blob_store, registry, recipient):
        orchestrator = UploadOrchestrator(blob_store, registry)

        first = await orchestrator.upload(b"a", recipient.public_key, "patient-1")
        second = await orchestrator.upload(b"a", recipient.public_key, "patient-1")

        assert second > first

    @pytest.mark.asyncio
    async def test_concurrent_uploads(self, blob_store, registry, recipient):
        """Independent uploads can run at the same time."""
        orchestrator = UploadOrchestrator(blob_store, registry)

        record_ids = await asyncio.gather(*[
            orchestrator.upload(f"file {i}".encode(), recipient.public_key, "patient-1")
            for i in range(5)
        ])

        assert sorted(record_ids) == [1, 2, 3, 4, 5]
        assert len(blob_store) == 5

    @pytest.mark.asyncio
    async def test_missing_recipient_fails_before_any_work(self, recipient, registry):
        blob_store = CountingBlobStore()
        orchestrator = UploadOrchestrator(blob_store, registry)

        with pytest.raises(ConfigurationError):
            await orchestrator.upload(b"data", recipient.public_key, "")
        with pytest.raises(ConfigurationError):
            await orchestrator.upload(b"data", None, "patient-1")

        assert blob_store.put_calls == 0
        assert len(registry) == 0


class TestUploadFailures:
    """Tests for stage failures and their context."""

    @pytest.mark.asyncio
    async def test_store_failure(self, registry, recipient):
        orchestrator = UploadOrchestrator(FailingBlobStore(), registry)

        with pytest.raises(StoreUploadError) as exc_info:
            await orchestrator.upload(b"data", recipient.public_key, "patient-1")

        attempt = exc_info.value.attempt
        assert attempt.stage == UploadStage.FAILED
        assert attempt.failed_stage == UploadStage.STORED
        assert attempt.content_id is None
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_store_timeout(self, registry, recipient):
        """A stalled blob store does not hang the upload."""
        orchestrator = UploadOrchestrator(StallingBlobStore(), registry, timeout=0.05)

        with pytest.raises(StoreUploadError):
            await orchestrator.upload(b"data", recipient.public_key, "patient-1")

    @pytest.mark.asyncio
    async def test_per_call_timeout(self, registry, recipient):
        """A caller can tighten the timeout for a single upload."""
        orchestrator = UploadOrchestrator(StallingBlobStore(), registry, timeout=60.0)

        with pytest.raises(StoreUploadError):
            await asyncio.wait_for(
                orchestrator.upload(b"data", recipient.public_key, "patient-1", timeout=0.05),
                timeout=5,
            )

    @pytest.mark.asyncio
    async def test_wrap_failure(self, blob_store, registry, recipient):
        orchestrator = UploadOrchestrator(blob_store, registry, wrapper=RefusingWrapper)

        with pytest.raises(KeyWrapError) as exc_info:
            await orchestrator.upload(b"data", recipient.public_key, "patient-1")

        attempt = exc_info.value.context["attempt"]
        assert attempt.stage == UploadStage.FAILED
        assert attempt.content_id is not None
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_anchor_failure_carries_resume_context(self, blob_store, recipient):
        registry = FlakyRegistry(failures=1)
        orchestrator = UploadOrchestrator(blob_store, registry)

        with pytest.raises(AnchorError) as exc_info:
            await orchestrator.upload(b"data", recipient.public_key, "patient-1", {"filename": "a.txt"})

        error = exc_info.value
        assert error.content_id == next(iter(blob_store._blobs))
        assert error.wrapped_key
        assert error.recipient_id == "patient-1"
        assert error.metadata == {"filename": "a.txt"}
        assert error.attempt.failed_stage == UploadStage.ANCHORED
        assert error.attempt.can_resume


class TestResume:
    """Tests for resuming at the anchor step."""

    @pytest.mark.asyncio
    async def test_resume_skips_encrypt_and_put(self, recipient):
        CountingCodec.encrypt_calls = 0
        blob_store = CountingBlobStore()
        registry = FlakyRegistry(failures=1)
        orchestrator = UploadOrchestrator(blob_store, registry, codec=CountingCodec)

        with pytest.raises(AnchorError) as exc_info:
            await orchestrator.upload(b"x" * 100, recipient.public_key, "patient-1")

        record_id = await orchestrator.resume(exc_info.value)

        assert record_id == 1
        assert CountingCodec.encrypt_calls == 1
        assert blob_store.put_calls == 1
        assert registry.create_calls == 2
        record = await registry.read(record_id)
        assert record.content_id == exc_info.value.content_id
        assert record.wrapped_key == exc_info.value.wrapped_key

    @pytest.mark.asyncio
    async def test_resume_from_attempt(self, blob_store, registry):
        orchestrator = UploadOrchestrator(blob_store, registry)
        attempt = UploadAttempt(
            recipient_id="patient-1",
            stage=UploadStage.STORED,
            content_id="abc",
            wrapped_key="d3JhcHBlZA==",
        )

        record_id = await orchestrator.resume(attempt)

        assert (await registry.read(record_id)).content_id == "abc"

    @pytest.mark.asyncio
    async def test_resume_per_call_timeout(self, blob_store):
        class StallingRegistry(FlakyRegistry):
            async def create(self, *args, **kwargs):
                await asyncio.sleep(10)

        orchestrator = UploadOrchestrator(blob_store, StallingRegistry(), timeout=60.0)
        attempt = UploadAttempt(
            recipient_id="patient-1",
            stage=UploadStage.STORED,
            content_id="abc",
            wrapped_key="d3JhcHBlZA==",
        )

        with pytest.raises(AnchorError) as exc_info:
            await asyncio.wait_for(orchestrator.resume(attempt, timeout=0.05), timeout=5)

        assert exc_info.value.content_id == "abc"

    @pytest.mark.asyncio
    async def test_resume_requires_context(self, blob_store, registry):
        orchestrator = UploadOrchestrator(blob_store, registry)

        with pytest.raises(ConfigurationError):
            await orchestrator.resume(UploadAttempt(recipient_id="patient-1"))

    @pytest.mark.asyncio
    async def test_resume_failure_raises_anchor_error_again(self, blob_store, recipient):
        registry = FlakyRegistry(failures=2)
        orchestrator = UploadOrchestrator(blob_store, registry)

        with pytest.raises(AnchorError) as first:
            await orchestrator.upload(b"data", recipient.public_key, "patient-1")
        with pytest.raises(AnchorError) as second:
            await orchestrator.resume(first.value)

        assert second.value.content_id == first.value.content_id
        assert await orchestrator.resume(second.value) == 1
