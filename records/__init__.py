"""
Record sharing for MedSecure Companion.

Handles:
- Encrypt-store-anchor uploads for one recipient
- Registry lookup and decryption for the recipient
- Blob store and registry clients (IPFS/Pinata, HTTP registry, in-memory)
"""

from .models import Record, UploadAttempt, UploadStage
from .interfaces import BlobStore, Registry
from .upload import UploadOrchestrator
from .retrieve import RetrievalOrchestrator, RetrievedDocument
from .memory import InMemoryBlobStore, InMemoryRegistry
from .ipfs import PinataBlobStore
from .registry_client import HttpRegistry

__all__ = [
    "Record",
    "UploadAttempt",
    "UploadStage",
    "BlobStore",
    "Registry",
    "UploadOrchestrator",
    "RetrievalOrchestrator",
    "RetrievedDocument",
    "InMemoryBlobStore",
    "InMemoryRegistry",
    "PinataBlobStore",
    "HttpRegistry",
]
