"""
Error taxonomy for the card processing pipeline.

Stage adapters raise these; the orchestrator is the only place that decides
between automatic retry and a terminal status, based on `retryable`.

- TransientStageError: remote hiccup, retried with backoff
- DuplicateContentError: content hash already known, terminal and informational
- BusinessRuleError: invalid location, record not pending, etc. Terminal.
- PayloadLostError: image bytes gone after a restart. Terminal, manual retry only.
"""

from typing import Optional


class CardProcessingError(Exception):
    """Base class for expected pipeline failures."""

    retryable: bool = False

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage


class TransientStageError(CardProcessingError):
    """A collaborator call failed in a way that may succeed on a later attempt."""

    retryable = True


class DuplicateContentError(CardProcessingError):
    """The image's content hash is already registered for this tenant."""

    def __init__(
        self,
        message: str = "Duplicate image detected",
        stage: Optional[str] = None,
        existing_record_id: Optional[str] = None,
    ):
        super().__init__(message, stage)
        self.existing_record_id = existing_record_id


class BusinessRuleError(CardProcessingError):
    """The backend rejected the request for a reason retrying cannot fix."""


class PayloadLostError(CardProcessingError):
    """Raw image bytes are no longer available (lost across a restart)."""

    def __init__(self, message: str = "Image data lost - please rescan the card", stage: Optional[str] = None):
        super().__init__(message, stage)


class InvalidTransitionError(RuntimeError):
    """Raised when a status change does not follow the work item state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target
