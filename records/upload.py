"""
Encrypt-store-anchor flow for a single recipient.

    ENCRYPTING -> STORED -> ANCHORED -> DONE

A failure moves the attempt to FAILED and raises the stage's error with
the attempt attached. An AnchorError can be resumed without redoing any
cryptographic work or re-uploading the payload.
"""

import asyncio
import logging
from typing import Any, Optional, Union

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PublicKey

from envelope.errors import AnchorError, ConfigurationError, KeyWrapError, StoreUploadError
from envelope.payload import PayloadCodec, wipe
from envelope.wrapper import EnvelopeKeyWrapper, encode_wrapped_key
from .interfaces import BlobStore, Registry
from .models import UploadAttempt, UploadStage, metadata_aad

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """Uploads an encrypted file and anchors its record."""

    def __init__(
        self,
        blob_store: BlobStore,
        registry: Registry,
        timeout: Optional[float] = 30.0,
        codec: type[PayloadCodec] = PayloadCodec,
        wrapper: type[EnvelopeKeyWrapper] = EnvelopeKeyWrapper,
    ):
        """
        Args:
            blob_store: Where encrypted payloads are stored
            registry: Where records are anchored
            timeout: Seconds allowed for each network call (None waits forever)
            codec: Payload encryption implementation
            wrapper: Key wrapping implementation
        """
        self.blob_store = blob_store
        self.registry = registry
        self.timeout = timeout
        self.codec = codec
        self.wrapper = wrapper

    async def upload(
        self,
        plaintext: bytes,
        recipient_public_key: X25519PublicKey,
        recipient_id: str,
        metadata: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Encrypt, store and anchor a file for one recipient.

        Args:
            plaintext: File contents
            recipient_public_key: Key the payload key is wrapped under
            recipient_id: Registry identity of the recipient
            metadata: Optional filename/content type, authenticated with the payload
            timeout: Per-call timeout overriding the orchestrator default

        Returns:
            The new record id

        Raises:
            ConfigurationError: Missing recipient before any work starts
            StoreUploadError: Blob store rejected the payload (retry the upload)
            KeyWrapError: The payload key could not be wrapped
            AnchorError: Registry create failed (resume with resume())
        """
        if not recipient_id:
            raise ConfigurationError("Recipient id is required")
        if recipient_public_key is None:
            raise ConfigurationError("Recipient public key is required")

        attempt = UploadAttempt(recipient_id=recipient_id, metadata=dict(metadata or {}))

        payload, key = self.codec.encrypt(plaintext, metadata_aad(attempt.metadata))
        try:
            attempt.content_id = await self._store(payload, attempt, timeout)
            attempt.advance(UploadStage.STORED)

            try:
                wrapped = self.wrapper.wrap(key, recipient_public_key)
            except KeyWrapError as e:
                attempt.fail(UploadStage.ANCHORED)
                e.context["attempt"] = attempt
                raise
            attempt.wrapped_key = encode_wrapped_key(wrapped)
        finally:
            wipe(key)

        return await self._anchor(attempt, timeout)

    async def resume(
        self,
        source: Union[AnchorError, UploadAttempt],
        timeout: Optional[float] = None,
    ) -> int:
        """
        Retry only the anchor step of a failed upload.

        Args:
            source: The AnchorError raised by upload(), or its attempt
            timeout: Per-call timeout overriding the orchestrator default

        Returns:
            The new record id

        Raises:
            ConfigurationError: The source has no stored payload to anchor
            AnchorError: Registry create failed again
        """
        # AnchorError and UploadAttempt expose the same resume fields
        content_id, wrapped_key = source.content_id, source.wrapped_key
        recipient_id, metadata = source.recipient_id, source.metadata

        if not content_id or not wrapped_key or not recipient_id:
            raise ConfigurationError("Resume requires content id, wrapped key and recipient id")

        attempt = UploadAttempt(
            recipient_id=recipient_id,
            stage=UploadStage.STORED,
            content_id=content_id,
            wrapped_key=wrapped_key,
            metadata=dict(metadata or {}),
        )
        logger.info("Resuming anchor for content %s", content_id)
        return await self._anchor(attempt, timeout)

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.timeout if timeout is None else timeout

    async def _store(self, payload: bytes, attempt: UploadAttempt, timeout: Optional[float] = None) -> str:
        try:
            content_id = await asyncio.wait_for(self.blob_store.put(payload), timeout=self._timeout(timeout))
        except Exception as e:
            attempt.fail(UploadStage.STORED)
            logger.warning("Blob store upload failed: %s", e)
            raise StoreUploadError(f"Blob store upload failed: {e}", attempt=attempt) from e

        logger.info("Stored encrypted payload (%d bytes) as %s", len(payload), content_id)
        return content_id

    async def _anchor(self, attempt: UploadAttempt, timeout: Optional[float] = None) -> int:
        try:
            record_id = await asyncio.wait_for(
                self.registry.create(
                    attempt.recipient_id,
                    attempt.content_id,
                    attempt.wrapped_key,
                    attempt.metadata or None,
                ),
                timeout=self._timeout(timeout),
            )
        except Exception as e:
            attempt.fail(UploadStage.ANCHORED)
            logger.warning("Registry create failed for content %s: %s", attempt.content_id, e)
            raise AnchorError(
                f"Registry create failed: {e}",
                content_id=attempt.content_id,
                wrapped_key=attempt.wrapped_key,
                recipient_id=attempt.recipient_id,
                metadata=attempt.metadata,
                attempt=attempt,
            ) from e

        attempt.record_id = record_id
        attempt.advance(UploadStage.ANCHORED)
        logger.info("Anchored record %s for %s", record_id, attempt.recipient_id)
        attempt.advance(UploadStage.DONE)
        return record_id
