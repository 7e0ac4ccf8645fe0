"""Builds blob store and registry collaborators from configuration."""

import logging

from config import Config
from .interfaces import BlobStore, Registry
from .ipfs import PinataBlobStore
from .memory import InMemoryBlobStore, InMemoryRegistry
from .registry_client import HttpRegistry

logger = logging.getLogger(__name__)


def create_blob_store(config: Config, allow_memory: bool = False) -> BlobStore:
    """
    Create the blob store described by config.

    Args:
        config: Application configuration
        allow_memory: Fall back to an in-memory store when Pinata is not configured

    Raises:
        ConfigurationError: Pinata is not configured and no fallback is allowed
    """
    if config.has_remote_store or not allow_memory:
        config.require("PINATA_API_KEY", "PINATA_API_SECRET", "IPFS_GATEWAY")
        return PinataBlobStore(
            config.PINATA_API_KEY,
            config.PINATA_API_SECRET,
            api_base_url=config.PINATA_API_URL,
            gateway_url=config.IPFS_GATEWAY,
            timeout=config.REQUEST_TIMEOUT,
        )

    logger.warning("Pinata not configured, using in-memory blob store")
    return InMemoryBlobStore()


def create_registry(config: Config, allow_memory: bool = False) -> Registry:
    """
    Create the registry described by config.

    Args:
        config: Application configuration
        allow_memory: Fall back to an in-memory registry when none is configured

    Raises:
        ConfigurationError: Registry is not configured and no fallback is allowed
    """
    if config.has_remote_registry or not allow_memory:
        config.require("REGISTRY_URL", "REGISTRY_TOKEN")
        return HttpRegistry(config.REGISTRY_URL, config.REGISTRY_TOKEN, timeout=config.REQUEST_TIMEOUT)

    logger.warning("Registry not configured, using in-memory registry")
    return InMemoryRegistry(uploader=config.UPLOADER_ID)


async def close_collaborator(collaborator) -> None:
    """Close HTTP-backed collaborators; in-memory ones have nothing to release."""
    close = getattr(collaborator, "close", None)
    if close is not None:
        await close()
