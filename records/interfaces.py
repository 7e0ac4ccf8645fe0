"""Collaborator protocols used by the upload and retrieval orchestrators."""

from typing import Any, Optional, Protocol, runtime_checkable

from .models import Record


@runtime_checkable
class BlobStore(Protocol):
    """Content-addressed storage for encrypted payloads."""

    async def put(self, data: bytes) -> str:
        """
        Store bytes and return their content id.

        Storing identical bytes again must not corrupt existing content.

        Raises:
            StoreUploadError: If the bytes could not be stored
        """
        ...

    async def get(self, content_id: str) -> bytes:
        """
        Fetch bytes by content id.

        Raises:
            BlobNotFound: If the id is unknown
            StoreFetchError: On transport failure
        """
        ...


@runtime_checkable
class Registry(Protocol):
    """Append-only ledger of record pointers."""

    async def create(
        self,
        recipient: str,
        content_id: str,
        wrapped_key: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        """
        Append a record and return its id.

        The wrapped key is opaque base64 text.

        Raises:
            AnchorError: If the record could not be created
        """
        ...

    async def read(self, record_id: int) -> Record:
        """
        Read a record by id.

        Raises:
            RecordNotFound: If the id is unknown
            RegistryError: On transport failure
        """
        ...
