"""
Work item status enum and the transition table that guards it.
"""

from enum import Enum
from typing import Dict, FrozenSet

from cardscan_workers.processing.errors import InvalidTransitionError


class ProcessingStatus(str, Enum):
    QUEUED = "queued"
    UPLOADING = "uploading"
    CREATING = "creating"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    DUPLICATE = "duplicate"
    FAILED = "failed"


ACTIVE_STATUSES: FrozenSet[ProcessingStatus] = frozenset({
    ProcessingStatus.UPLOADING,
    ProcessingStatus.CREATING,
    ProcessingStatus.EXTRACTING,
})

# complete and duplicate never leave; failed only leaves through manual retry
TERMINAL_STATUSES: FrozenSet[ProcessingStatus] = frozenset({
    ProcessingStatus.COMPLETE,
    ProcessingStatus.DUPLICATE,
})

TRANSITIONS: Dict[ProcessingStatus, FrozenSet[ProcessingStatus]] = {
    ProcessingStatus.QUEUED: frozenset({ProcessingStatus.UPLOADING}),
    ProcessingStatus.UPLOADING: frozenset({
        ProcessingStatus.CREATING,
        ProcessingStatus.QUEUED,
        ProcessingStatus.FAILED,
    }),
    ProcessingStatus.CREATING: frozenset({
        ProcessingStatus.EXTRACTING,
        ProcessingStatus.DUPLICATE,
        ProcessingStatus.QUEUED,
        ProcessingStatus.FAILED,
    }),
    ProcessingStatus.EXTRACTING: frozenset({
        ProcessingStatus.COMPLETE,
        ProcessingStatus.DUPLICATE,
        ProcessingStatus.QUEUED,
        ProcessingStatus.FAILED,
    }),
    ProcessingStatus.COMPLETE: frozenset(),
    ProcessingStatus.DUPLICATE: frozenset(),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.QUEUED}),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: ProcessingStatus, target: ProcessingStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is an allowed edge."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


def is_terminal(status: ProcessingStatus) -> bool:
    return status in TERMINAL_STATUSES
