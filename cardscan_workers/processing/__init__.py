"""
Connect Card Processing Package.

Pipeline:
- orchestrator: CardProcessor, dispatches cards through the stages
- stages: upload, register, extract, commit adapters
- semaphore: FIFO permit semaphore bounding each stage class
- session_store: Redis session snapshots and recovery
- stats: derived per-status counts
- clients: collaborator interface and HTTP client
- vision_extractor: Gemini Vision extraction (backend side)
- normalization / quality: extracted-field cleanup and checks
"""

from cardscan_workers.processing.clients import CardBackend, HttpBackendClient
from cardscan_workers.processing.errors import (
    BusinessRuleError,
    CardProcessingError,
    DuplicateContentError,
    InvalidTransitionError,
    PayloadLostError,
    TransientStageError,
)
from cardscan_workers.processing.models import BatchInfo, CapturedImage, WorkItem
from cardscan_workers.processing.orchestrator import CardProcessor
from cardscan_workers.processing.semaphore import PermitSemaphore
from cardscan_workers.processing.session_store import SessionSnapshotStore
from cardscan_workers.processing.state import ProcessingStatus
from cardscan_workers.processing.stats import ProcessingStats, compute_stats

__all__ = [
    # Orchestration
    'CardProcessor',
    'PermitSemaphore',

    # Records
    'CapturedImage',
    'WorkItem',
    'BatchInfo',
    'ProcessingStatus',

    # Stats
    'ProcessingStats',
    'compute_stats',

    # Session
    'SessionSnapshotStore',

    # Collaborators
    'CardBackend',
    'HttpBackendClient',

    # Errors
    'CardProcessingError',
    'TransientStageError',
    'DuplicateContentError',
    'BusinessRuleError',
    'PayloadLostError',
    'InvalidTransitionError',
]
