"""
Registry records and upload progress.
"""

import json
from enum import Enum
from typing import Any, Optional
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Record:
    """An immutable registry entry pointing at encrypted content."""
    id: int
    recipient: str
    uploader: str
    content_id: str
    wrapped_key: str
    timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "recipient": self.recipient,
            "uploader": self.uploader,
            "content_id": self.content_id,
            "wrapped_key": self.wrapped_key,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Reconstruct from dictionary."""
        return cls(
            id=int(data["id"]),
            recipient=data["recipient"],
            uploader=data.get("uploader", ""),
            content_id=data["content_id"],
            wrapped_key=data.get("wrapped_key") or "",
            timestamp=int(data.get("timestamp", 0)),
            metadata=data.get("metadata") or {},
        )


def metadata_aad(metadata: Optional[dict[str, Any]]) -> Optional[bytes]:
    """
    Canonical associated data for record metadata.

    Empty metadata binds nothing, so records without metadata decrypt
    exactly like plain payloads.
    """
    if not metadata:
        return None
    return json.dumps(metadata, sort_keys=True, separators=(",", ":")).encode("utf-8")


class UploadStage(str, Enum):
    ENCRYPTING = "encrypting"
    STORED = "stored"
    ANCHORED = "anchored"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadAttempt:
    """
    Progress of one upload call.

    On failure, `failed_stage` names the stage that could not be reached
    and the fields hold the outputs of every stage completed before it.
    """
    recipient_id: str
    stage: UploadStage = UploadStage.ENCRYPTING
    failed_stage: Optional[UploadStage] = None
    content_id: Optional[str] = None
    wrapped_key: Optional[str] = None
    record_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def advance(self, stage: UploadStage) -> None:
        self.stage = stage

    def fail(self, target: UploadStage) -> None:
        self.failed_stage = target
        self.stage = UploadStage.FAILED

    @property
    def can_resume(self) -> bool:
        """True when only the anchor step remains."""
        return self.content_id is not None and self.wrapped_key is not None and self.record_id is None
