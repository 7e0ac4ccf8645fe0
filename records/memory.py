"""
In-memory collaborators.

Used by the local service when no remote endpoints are configured,
and by the test suite.
"""

import time
import dataclasses
import hashlib
import logging
from typing import Any, Optional

from envelope.errors import BlobNotFound, RecordNotFound
from .models import Record

logger = logging.getLogger(__name__)


class InMemoryBlobStore:
    """Content-addressed blob store keyed by SHA-256 hex digest."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    async def put(self, data: bytes) -> str:
        content_id = hashlib.sha256(data).hexdigest()
        # Identical bytes map to the same id; re-put is a no-op
        self._blobs.setdefault(content_id, bytes(data))
        return content_id

    async def get(self, content_id: str) -> bytes:
        try:
            return self._blobs[content_id]
        except KeyError:
            raise BlobNotFound(f"No blob for content id {content_id}") from None

    def __len__(self) -> int:
        return len(self._blobs)


class InMemoryRegistry:
    """Append-only registry assigning ids 1, 2, 3..."""

    def __init__(self, uploader: str):
        """
        Args:
            uploader: Identity recorded as the author of every record
        """
        self.uploader = uploader
        self._records: list[Record] = []

    async def create(
        self,
        recipient: str,
        content_id: str,
        wrapped_key: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        record = Record(
            id=len(self._records) + 1,
            recipient=recipient,
            uploader=self.uploader,
            content_id=content_id,
            wrapped_key=wrapped_key,
            timestamp=int(time.time()),
            metadata=dict(metadata or {}),
        )
        self._records.append(record)
        logger.debug("Registry record %d created for %s", record.id, recipient)
        return record.id

    async def read(self, record_id: int) -> Record:
        if record_id < 1 or record_id > len(self._records):
            raise RecordNotFound(record_id=record_id)
        record = self._records[record_id - 1]
        # Stored records stay append-only; callers get their own metadata
        return dataclasses.replace(record, metadata=dict(record.metadata))

    def __len__(self) -> int:
        return len(self._records)
