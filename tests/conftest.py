"""Shared fixtures for the MedSecure test suite."""

import asyncio
from typing import Any, Optional

import pytest

from envelope import KeyManager, KeyPair
from records import InMemoryBlobStore, InMemoryRegistry


@pytest.fixture
def recipient():
    """Recipient identity."""
    return KeyPair.generate()


@pytest.fixture
def other_identity():
    """An identity that is not the recipient."""
    return KeyPair.generate()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def registry():
    return InMemoryRegistry(uploader="hospital-1")


@pytest.fixture
def fast_argon2(monkeypatch):
    """Cheap Argon2id parameters so key storage tests run quickly."""
    monkeypatch.setattr(KeyManager, "ARGON2_TIME_COST", 1)
    monkeypatch.setattr(KeyManager, "ARGON2_MEMORY_COST", 1024)
    monkeypatch.setattr(KeyManager, "ARGON2_PARALLELISM", 1)


class CountingBlobStore(InMemoryBlobStore):
    """Blob store that counts put() calls."""

    def __init__(self):
        super().__init__()
        self.put_calls = 0

    async def put(self, data: bytes) -> str:
        self.put_calls += 1
        return await super().put(data)


class FailingBlobStore:
    """Blob store whose every call fails."""

    async def put(self, data: bytes) -> str:
        raise ConnectionError("blob store unreachable")

    async def get(self, content_id: str) -> bytes:
        raise ConnectionError("blob store unreachable")


class StallingBlobStore:
    """Blob store that never answers in time."""

    async def put(self, data: bytes) -> str:
        await asyncio.sleep(10)
        return "never"

    async def get(self, content_id: str) -> bytes:
        await asyncio.sleep(10)
        return b""


class FlakyRegistry(InMemoryRegistry):
    """Registry whose first `failures` create() calls fail."""

    def __init__(self, uploader: str = "hospital-1", failures: int = 1):
        super().__init__(uploader)
        self.failures = failures
        self.create_calls = 0

    async def create(
        self,
        recipient: str,
        content_id: str,
        wrapped_key: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        self.create_calls += 1
        if self.create_calls <= self.failures:
            raise ConnectionError("registry unreachable")
        return await super().create(recipient, content_id, wrapped_key, metadata)
