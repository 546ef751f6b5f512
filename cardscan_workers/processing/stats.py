"""
Derived processing statistics. Pure: recomputed on every read.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable

from cardscan_workers.processing.models import WorkItem
from cardscan_workers.processing.state import ACTIVE_STATUSES, ProcessingStatus


@dataclass(frozen=True)
class ProcessingStats:
    """Per-bucket counts of work items."""
    queued: int = 0
    processing: int = 0  # uploading + creating + extracting
    complete: int = 0
    failed: int = 0
    duplicate: int = 0
    total: int = 0
    sweeping: bool = False

    @property
    def is_processing(self) -> bool:
        return self.queued > 0 or self.processing > 0 or self.sweeping

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("sweeping")
        data["is_processing"] = self.is_processing
        data["has_failures"] = self.has_failures
        return data


def compute_stats(items: Iterable[WorkItem], sweeping: bool = False) -> ProcessingStats:
    counts = {status: 0 for status in ProcessingStatus}
    total = 0
    for item in items:
        counts[item.status] += 1
        total += 1

    return ProcessingStats(
        queued=counts[ProcessingStatus.QUEUED],
        processing=sum(counts[status] for status in ACTIVE_STATUSES),
        complete=counts[ProcessingStatus.COMPLETE],
        failed=counts[ProcessingStatus.FAILED],
        duplicate=counts[ProcessingStatus.DUPLICATE],
        total=total,
        sweeping=sweeping,
    )
