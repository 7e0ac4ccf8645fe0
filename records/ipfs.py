"""
IPFS blob store backed by Pinata pinning and a public gateway.
"""

import logging
from typing import Optional

import httpx

from envelope.errors import BlobNotFound, StoreFetchError, StoreUploadError

logger = logging.getLogger(__name__)


class PinataBlobStore:
    """Pins encrypted payloads to IPFS through the Pinata API."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        api_base_url: str = "https://api.pinata.cloud",
        gateway_url: str = "https://ipfs.io/ipfs/",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the Pinata blob store.

        Args:
            api_key: Pinata API key
            api_secret: Pinata API secret
            api_base_url: Base URL of the Pinata API
            gateway_url: IPFS gateway used for fetching
            timeout: HTTP timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_base_url = api_base_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_headers(self) -> dict[str, str]:
        """Get headers for pinning requests."""
        return {
            "pinata_api_key": self.api_key,
            "pinata_secret_api_key": self.api_secret,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def put(self, data: bytes, filename: str = "payload.bin") -> str:
        """
        Pin a payload and return its CID.

        Raises:
            StoreUploadError: Network error or unexpected response
        """
        client = await self._get_client()
        url = f"{self.api_base_url}/pinning/pinFileToIPFS"

        try:
            response = await client.post(
                url,
                headers=self._get_headers(),
                files={"file": (filename, data, "application/octet-stream")},
            )
        except httpx.RequestError as e:
            raise StoreUploadError(f"Network error: {e}") from e

        if response.status_code not in (200, 201):
            raise StoreUploadError(f"Pinata upload failed: {response.status_code} - {response.text}")

        try:
            cid = response.json().get("IpfsHash")
        except ValueError:
            cid = None
        if not cid:
            raise StoreUploadError(f"Pinata upload failed: no IpfsHash in {response.text}")

        logger.info("Pinned %d bytes as %s", len(data), cid)
        return cid

    async def get(self, content_id: str) -> bytes:
        """
        Fetch a payload through the gateway.

        Raises:
            BlobNotFound: Gateway answered 404
            StoreFetchError: Network error or other failure status
        """
        client = await self._get_client()
        url = f"{self.gateway_url}/{content_id}"
        logger.debug("Downloading encrypted payload from %s", url)

        try:
            response = await client.get(url)
        except httpx.RequestError as e:
            raise StoreFetchError(f"Network error: {e}") from e

        if response.status_code == 404:
            raise BlobNotFound(f"No blob for content id {content_id}")
        if response.status_code != 200:
            raise StoreFetchError(f"Gateway fetch failed: {response.status_code}")
        return response.content
