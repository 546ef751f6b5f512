"""
Data records for the card processing pipeline.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from cardscan_workers.processing.imaging import content_hash, guess_content_type, render_preview
from cardscan_workers.processing.state import ProcessingStatus


@dataclass
class CapturedImage:
    """
    One photographed side of a card.

    `data` holds the raw bytes while the process is alive. After a session
    restore it is None and only `preview` remains.
    """
    data: Optional[bytes]
    preview: str = ""
    content_type: str = "image/jpeg"

    @classmethod
    def from_bytes(cls, data: bytes, content_type: Optional[str] = None) -> "CapturedImage":
        return cls(
            data=data,
            preview=render_preview(data),
            content_type=content_type or guess_content_type(data),
        )

    @property
    def has_payload(self) -> bool:
        return self.data is not None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    def content_hash(self) -> str:
        return content_hash(self.data)

    def to_snapshot(self) -> Dict[str, Any]:
        # never the bytes
        return {"preview": self.preview, "content_type": self.content_type}

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "CapturedImage":
        return cls(
            data=None,
            preview=data.get("preview", ""),
            content_type=data.get("content_type", "image/jpeg"),
        )


@dataclass
class WorkItem:
    """One physical card scan tracked end-to-end."""
    front_image: CapturedImage
    back_image: Optional[CapturedImage] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ProcessingStatus = ProcessingStatus.QUEUED
    progress: int = 0
    record_id: Optional[str] = None
    batch_id: Optional[str] = None
    batch_name: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0

    def copy_with(self, **changes: Any) -> "WorkItem":
        return replace(self, **changes)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "front_image": self.front_image.to_snapshot(),
            "back_image": self.back_image.to_snapshot() if self.back_image else None,
            "status": self.status.value,
            "progress": self.progress,
            "record_id": self.record_id,
            "batch_id": self.batch_id,
            "batch_name": self.batch_name,
            "error": self.error,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "WorkItem":
        back = data.get("back_image")
        return cls(
            id=data["id"],
            front_image=CapturedImage.from_snapshot(data.get("front_image") or {}),
            back_image=CapturedImage.from_snapshot(back) if back else None,
            status=ProcessingStatus(data.get("status", ProcessingStatus.FAILED.value)),
            progress=int(data.get("progress", 0)),
            record_id=data.get("record_id"),
            batch_id=data.get("batch_id"),
            batch_name=data.get("batch_name"),
            error=data.get("error"),
            retry_count=int(data.get("retry_count", 0)),
        )


@dataclass(frozen=True)
class BatchInfo:
    """The sitting's batch, assigned by the backend on first registration."""
    id: str
    name: str


@dataclass(frozen=True)
class StoredImage:
    """Result of storing one image side."""
    key: str
    hash: str


@dataclass(frozen=True)
class Registration:
    """Placeholder record created by the registration backend."""
    record_id: str
    batch_id: str
    batch_name: str
