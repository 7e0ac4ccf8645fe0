"""
Read-unwrap-fetch-decrypt flow for a recipient.

Each stage fails with its own error kind. Nothing is retried here;
retry policy belongs to the caller.
"""

import asyncio
import logging
import mimetypes
from typing import Optional
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from envelope.errors import ContentFetchFailure, MissingKeyForRecipient, RecordNotFound, RegistryError
from envelope.payload import PayloadCodec, wipe
from envelope.wrapper import EnvelopeKeyWrapper, decode_wrapped_key
from .interfaces import BlobStore, Registry
from .models import Record, metadata_aad

logger = logging.getLogger(__name__)


@dataclass
class RetrievedDocument:
    """A decrypted file together with its record."""
    record: Record
    content: bytes

    @property
    def filename(self) -> str:
        """
        Suggested output filename.

        Taken from the record's authenticated metadata. Without metadata
        the content type is unknown, so no extension is guessed.
        """
        name = self.record.metadata.get("filename")
        if name:
            # Never let stored metadata pick a directory
            return name.replace("\\", "/").rsplit("/", 1)[-1] or f"record_{self.record.id}.bin"
        content_type = self.record.metadata.get("content_type")
        extension = mimetypes.guess_extension(content_type) if content_type else None
        return f"record_{self.record.id}{extension or '.bin'}"

    @property
    def content_type(self) -> str:
        return self.record.metadata.get("content_type") or "application/octet-stream"


class RetrievalOrchestrator:
    """Recovers a file anchored for the caller's identity."""

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
            blob_store: Where encrypted payloads are fetched from
            registry: Where records are read from
            timeout: Seconds allowed for each network call (None waits forever)
            codec: Payload decryption implementation
            wrapper: Key unwrapping implementation
        """
        self.blob_store = blob_store
        self.registry = registry
        self.timeout = timeout
        self.codec = codec
        self.wrapper = wrapper

    async def retrieve(
        self,
        record_id: int,
        recipient_private_key: X25519PrivateKey,
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        Decrypt the file behind a record.

        Args:
            record_id: Registry record to open
            recipient_private_key: The recipient's X25519 private key
            timeout: Per-call timeout overriding the orchestrator default

        Raises:
            RecordNotFound: Unknown record id
            RegistryError: Registry unreachable
            MissingKeyForRecipient: Record carries no wrapped key
            KeyUnwrapError: Wrong private key or corrupted wrapped key
            ContentFetchFailure: Blob store could not return the payload
            MalformedPayloadError: Payload shorter than the frame
            AuthenticationError: Payload or metadata was tampered with
        """
        document = await self.retrieve_document(record_id, recipient_private_key, timeout)
        return document.content

    async def retrieve_document(
        self,
        record_id: int,
        recipient_private_key: X25519PrivateKey,
        timeout: Optional[float] = None,
    ) -> RetrievedDocument:
        """Like retrieve(), also returning the record and a suggested filename."""
        timeout = self.timeout if timeout is None else timeout
        record = await self._read(record_id, timeout)

        if not record.wrapped_key:
            raise MissingKeyForRecipient(f"Record {record_id} has no wrapped key for {record.recipient}")

        key = self.wrapper.unwrap(decode_wrapped_key(record.wrapped_key), recipient_private_key)
        try:
            payload = await self._fetch(record.content_id, timeout)
            content = self.codec.decrypt(payload, key, metadata_aad(record.metadata))
        finally:
            wipe(key)

        logger.info("Decrypted record %s (%d bytes)", record_id, len(content))
        return RetrievedDocument(record=record, content=content)

    async def _read(self, record_id: int, timeout: Optional[float]) -> Record:
        try:
            record = await asyncio.wait_for(self.registry.read(record_id), timeout=timeout)
        except RegistryError:
            raise
        except Exception as e:
            raise RegistryError(f"Registry read failed: {e}", record_id=record_id) from e

        if record is None or not record.content_id:
            raise RecordNotFound(record_id=record_id)
        logger.debug("Record %s points at %s", record_id, record.content_id)
        return record

    async def _fetch(self, content_id: str, timeout: Optional[float]) -> bytes:
        try:
            return await asyncio.wait_for(self.blob_store.get(content_id), timeout=timeout)
        except Exception as e:
            logger.warning("Fetching content %s failed: %s", content_id, e)
            raise ContentFetchFailure(f"Fetching content {content_id} failed: {e}", content_id=content_id) from e
