"""
Error taxonomy for MedSecure Companion.

Every failure kind is a distinct class so callers can tell the stages apart.
Each class carries the process exit code used by the CLI.
"""

from typing import Any, Optional


class EnvelopeError(Exception):
    """Base class for all MedSecure errors."""

    exit_code = 1

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.__class__.__doc__)
        self.context = context


class ConfigurationError(EnvelopeError):
    """A required setting is missing."""

    exit_code = 2


# ---------------------------------------------------------------------------
# Blob store
# ---------------------------------------------------------------------------

class StoreUploadError(EnvelopeError):
    """The encrypted payload could not be stored."""

    exit_code = 3

    def __init__(self, message: str = "", attempt: Optional[Any] = None, **context: Any):
        super().__init__(message, **context)
        self.attempt = attempt


class StoreFetchError(EnvelopeError):
    """The encrypted payload could not be fetched."""

    exit_code = 4


class BlobNotFound(StoreFetchError):
    """No blob exists for the given content id."""


class ContentFetchFailure(StoreFetchError):
    """Fetching a record's content failed during retrieval."""

    def __init__(self, message: str = "", content_id: Optional[str] = None, **context: Any):
        super().__init__(message, content_id=content_id, **context)
        self.content_id = content_id


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class AnchorError(EnvelopeError):
    """
    The record could not be created in the registry.

    Carries everything needed to retry only the anchor step.
    """

    exit_code = 5

    def __init__(
        self,
        message: str = "",
        content_id: Optional[str] = None,
        wrapped_key: Optional[str] = None,
        recipient_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        attempt: Optional[Any] = None,
    ):
        super().__init__(message, content_id=content_id, recipient_id=recipient_id)
        self.content_id = content_id
        self.wrapped_key = wrapped_key
        self.recipient_id = recipient_id
        self.metadata = metadata
        self.attempt = attempt


class RegistryError(EnvelopeError):
    """The registry could not be reached or returned an unusable answer."""

    exit_code = 6


class RecordNotFound(RegistryError):
    """No record exists for the given id."""

    def __init__(self, message: str = "", record_id: Optional[int] = None):
        super().__init__(message or f"Record {record_id} not found", record_id=record_id)
        self.record_id = record_id


class MissingKeyForRecipient(EnvelopeError):
    """The record has no wrapped key anchored for its recipient."""

    exit_code = 7


# ---------------------------------------------------------------------------
# Cryptography
# ---------------------------------------------------------------------------

class KeyWrapError(EnvelopeError):
    """The symmetric key could not be wrapped for the recipient."""

    exit_code = 8


class KeyUnwrapError(EnvelopeError):
    """The wrapped key could not be unwrapped."""

    exit_code = 8


class MalformedPayloadError(EnvelopeError):
    """The encrypted payload is structurally invalid."""

    exit_code = 9


class AuthenticationError(EnvelopeError):
    """The encrypted payload failed authentication."""

    exit_code = 10
