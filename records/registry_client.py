"""
HTTP client for the record registry.

The registry exposes an append-only JSON API:

    POST /records         {recipient, content_id, wrapped_key, metadata} -> {id}
    GET  /records/{id}    -> {id, recipient, uploader, content_id, wrapped_key, timestamp, metadata}

Writes are authorized with the uploader's bearer token; the registry
records the uploader identity from that token.
"""

import logging
from typing import Any, Optional

import httpx

from envelope.errors import AnchorError, RecordNotFound, RegistryError
from .models import Record

logger = logging.getLogger(__name__)


class HttpRegistry:
    """Talks to the registry service over HTTP."""

    def __init__(
        self,
        api_base_url: str,
        api_token: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_base_url: Base URL of the registry API
            api_token: Bearer token of the uploader identity
            timeout: HTTP timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.api_base_url = api_base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._client = client

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create(
        self,
        recipient: str,
        content_id: str,
        wrapped_key: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        """
        Append a record.

        Raises:
            AnchorError: Network error, rejected write or malformed answer
        """
        client = await self._get_client()
        body = {
            "recipient": recipient,
            "content_id": content_id,
            "wrapped_key": wrapped_key,
            "metadata": metadata or {},
        }

        try:
            response = await client.post(
                f"{self.api_base_url}/records",
                headers=self._get_headers(),
                json=body,
            )
        except httpx.RequestError as e:
            raise AnchorError(f"Network error: {e}", content_id=content_id, wrapped_key=wrapped_key,
                              recipient_id=recipient, metadata=metadata) from e

        if response.status_code not in (200, 201):
            error_msg = f"Registry create failed: {response.status_code}"
            try:
                error_msg += f" - {response.json().get('detail', '')}"
            except ValueError:
                pass
            raise AnchorError(error_msg, content_id=content_id, wrapped_key=wrapped_key,
                              recipient_id=recipient, metadata=metadata)

        try:
            record_id = int(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise AnchorError(f"Registry returned no record id: {response.text}", content_id=content_id,
                              wrapped_key=wrapped_key, recipient_id=recipient, metadata=metadata) from e

        logger.info("Registry created record %d", record_id)
        return record_id

    async def read(self, record_id: int) -> Record:
        """
        Read a record.

        Raises:
            RecordNotFound: Registry answered 404
            RegistryError: Network error or malformed answer
        """
        client = await self._get_client()

        try:
            response = await client.get(
                f"{self.api_base_url}/records/{record_id}",
                headers=self._get_headers(),
            )
        except httpx.RequestError as e:
            raise RegistryError(f"Network error: {e}") from e

        if response.status_code == 404:
            raise RecordNotFound(record_id=record_id)
        if response.status_code != 200:
            raise RegistryError(f"Registry read failed: {response.status_code}")

        try:
            return Record.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise RegistryError(f"Malformed record {record_id}: {e}") from e
