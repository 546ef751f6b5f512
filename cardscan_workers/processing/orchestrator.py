"""
Card Processor - orchestrates captured cards through the pipeline.

Every card runs: Upload -> Register PENDING record -> Extract -> Commit

Features:
- All queued cards are dispatched concurrently; the upload and extraction
  semaphores inside the stage adapters are the only parallelism bound
- At most one in-flight stage sequence per card
- Exponential backoff retry up to `max_retries` attempts
- Duplicate content is a terminal, informational outcome
- Session snapshots after every change, with resume/discard of an
  interrupted sitting
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Set

from cardscan_workers.processing.clients import CardBackend
from cardscan_workers.processing.errors import (
    CardProcessingError,
    DuplicateContentError,
    InvalidTransitionError,
)
from cardscan_workers.processing.models import BatchInfo, CapturedImage, Registration, WorkItem
from cardscan_workers.processing.semaphore import PermitSemaphore
from cardscan_workers.processing.session_store import SessionSnapshotStore
from cardscan_workers.processing.stages import StageAdapters
from cardscan_workers.processing.state import ProcessingStatus, can_transition, check_transition
from cardscan_workers.processing.stats import ProcessingStats, compute_stats

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_CONCURRENT_UPLOADS = 5
DEFAULT_CONCURRENT_EXTRACTIONS = 3
DEFAULT_RETRY_DELAYS = (2.0, 4.0, 8.0)

DUPLICATE_MESSAGE = "Duplicate image detected"


class CardProcessor:
    """
    Processes captured connect cards concurrently.

    Usage:
        processor = CardProcessor(HttpBackendClient(url), tenant="grace-church")
        item_id = processor.add_card(CapturedImage.from_bytes(front_bytes))
        await processor.drain()

        processor.stats.complete    # 1
        processor.get_item(item_id).record_id
    """

    def __init__(
        self,
        backend: CardBackend,
        tenant: str,
        location_id: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        concurrent_uploads: int = DEFAULT_CONCURRENT_UPLOADS,
        concurrent_extractions: int = DEFAULT_CONCURRENT_EXTRACTIONS,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        session_store: Optional[SessionSnapshotStore] = None,
        on_card_complete: Optional[Callable[[str], None]] = None,
        on_batch_info: Optional[Callable[[str, str], None]] = None,
        on_failure: Optional[Callable[[str, str], None]] = None,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        if not retry_delays:
            raise ValueError("retry_delays must not be empty")

        self.tenant = tenant
        self.location_id = location_id
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays)
        self.session_store = session_store
        self.on_card_complete = on_card_complete
        self.on_batch_info = on_batch_info
        self.on_failure = on_failure

        self.upload_semaphore = PermitSemaphore(concurrent_uploads, name="upload")
        self.extraction_semaphore = PermitSemaphore(concurrent_extractions, name="extraction")
        self.stages = StageAdapters(backend, tenant, self.upload_semaphore, self.extraction_semaphore)

        self._items: Dict[str, WorkItem] = {}
        self._batch_info: Optional[BatchInfo] = None
        self._in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._dispatching = False
        # bumped by reset(); stale stage sequences stop touching state
        self._generation = 0
        self._listeners: List[Callable[["CardProcessor"], None]] = []

        self.has_pending_session = bool(session_store and session_store.has_resumable())
        if self.has_pending_session:
            logger.info(f"Resumable session found for tenant {tenant}")

    @classmethod
    def from_settings(cls, backend: CardBackend, tenant: str, location_id: Optional[str] = None, **kwargs) -> "CardProcessor":
        """Build a processor using the `processing` settings group."""
        from cardscan_backend.core.config import get_settings

        processing = get_settings().processing
        kwargs.setdefault("max_retries", processing.max_retries)
        kwargs.setdefault("concurrent_uploads", processing.concurrent_uploads)
        kwargs.setdefault("concurrent_extractions", processing.concurrent_extractions)
        kwargs.setdefault("retry_delays", processing.retry_delays)
        return cls(backend, tenant, location_id, **kwargs)

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def items(self) -> List[WorkItem]:
        return list(self._items.values())

    def get_item(self, item_id: str) -> Optional[WorkItem]:
        return self._items.get(item_id)

    @property
    def batch_info(self) -> Optional[BatchInfo]:
        return self._batch_info

    @property
    def stats(self) -> ProcessingStats:
        return compute_stats(self._items.values(), sweeping=bool(self._tasks))

    @property
    def is_processing(self) -> bool:
        return self.stats.is_processing

    @property
    def has_failures(self) -> bool:
        return self.stats.has_failures

    def get_stats(self) -> dict:
        return {
            **self.stats.to_dict(),
            "batch": {"id": self._batch_info.id, "name": self._batch_info.name} if self._batch_info else None,
            "upload_pool": self.upload_semaphore.get_stats(),
            "extraction_pool": self.extraction_semaphore.get_stats(),
        }

    def subscribe(self, listener: Callable[["CardProcessor"], None]) -> Callable[[], None]:
        """Call `listener(processor)` after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # User actions
    # =========================================================================

    def add_card(self, front: CapturedImage, back: Optional[CapturedImage] = None) -> str:
        """Queue a captured card and dispatch it. Returns the work item id."""
        item = WorkItem(front_image=front, back_image=back)
        self._items[item.id] = item
        logger.info(f"Card {item.id[:8]} queued ({'two' if back else 'one'}-sided)")
        self._publish()
        self.dispatch()
        return item.id

    def retry_card(self, item_id: str) -> bool:
        """
        Manually re-queue a failed card.

        Clears the error and progress. `retry_count` is kept, so a card that
        already used its automatic attempts gets exactly one more try.
        """
        item = self._items.get(item_id)
        if item is None or item.status is not ProcessingStatus.FAILED:
            logger.warning(f"Retry ignored for {item_id[:8]}: not a failed card")
            return False

        self._update(item_id, status=ProcessingStatus.QUEUED, error=None, progress=0)
        self.dispatch()
        return True

    def remove_card(self, item_id: str) -> bool:
        """
        Stop tracking a card.

        An in-flight remote call is not aborted; its result is dropped and the
        card's remaining stages are skipped.
        """
        if self._items.pop(item_id, None) is None:
            return False
        logger.info(f"Card {item_id[:8]} removed")
        self._publish()
        return True

    def reset(self) -> None:
        """Forget all cards and the batch, and clear the session slot."""
        self._items.clear()
        self._batch_info = None
        self._generation += 1
        self.has_pending_session = False
        if self.session_store:
            self.session_store.clear()
        self._publish(persist=False)

    def resume_session(self) -> int:
        """Restore the stored session. In-flight cards come back as failed."""
        snapshot = self.session_store.load() if self.session_store else None
        self.has_pending_session = False
        if not snapshot:
            return 0

        restored = SessionSnapshotStore.restore_items(snapshot)
        self._items = {item.id: item for item in restored}
        self._batch_info = SessionSnapshotStore.restore_batch_info(snapshot)
        logger.info(f"Resumed session with {len(restored)} cards")
        self._publish()
        return len(restored)

    def discard_session(self) -> None:
        if self.session_store:
            self.session_store.clear()
        self.has_pending_session = False
        self._publish(persist=False)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(self) -> int:
        """
        Launch a stage sequence for every queued card not already in flight.

        Must be called from a running event loop; outside one it is a no-op
        and returns 0. Returns the number of cards launched.
        """
        if self._dispatching:
            return 0
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return 0

        self._dispatching = True
        try:
            launched = 0
            for item in list(self._items.values()):
                if item.status is not ProcessingStatus.QUEUED or item.id in self._in_flight:
                    continue
                self._in_flight.add(item.id)
                task = loop.create_task(self._process_item(item.id, self._generation))
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)
                launched += 1

            if launched:
                logger.debug(f"Dispatched {launched} cards")
            return launched
        finally:
            self._dispatching = False

    async def drain(self) -> None:
        """Wait until no stage sequence is running (including retries)."""
        self.dispatch()
        while self._tasks:
            # cancelling the caller must not cancel the card tasks
            await asyncio.wait(set(self._tasks))

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Card task crashed: {exc!r}", exc_info=exc)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _process_item(self, item_id: str, generation: int) -> None:
        try:
            item = self._items.get(item_id)
            if item is None or item.status is not ProcessingStatus.QUEUED:
                return

            try:
                await self._run_stages(item, generation)
            except InvalidTransitionError:
                raise
            except DuplicateContentError as e:
                self._mark_duplicate(item_id, e)
            except CardProcessingError as e:
                await self._handle_failure(item_id, e.message, retryable=e.retryable)
            except Exception as e:
                logger.error(f"Card {item_id[:8]}: unexpected error: {e}", exc_info=True)
                await self._handle_failure(item_id, str(e) or "Processing failed", retryable=True)
        finally:
            self._in_flight.discard(item_id)
            self.dispatch()

    async def _run_stages(self, item: WorkItem, generation: int) -> None:
        item_id = item.id

        # Stage 1: store images
        self._update(item_id, status=ProcessingStatus.UPLOADING, progress=10)
        front = await self.stages.store_image(item.front_image, "front")
        if not self._is_tracked(item_id, generation):
            return
        self._update(item_id, progress=25)

        back = None
        if item.back_image is not None:
            back = await self.stages.store_image(item.back_image, "back")
            if not self._is_tracked(item_id, generation):
                return
            self._update(item_id, progress=40)

        # Stage 2: register pending record
        self._update(item_id, status=ProcessingStatus.CREATING, progress=50)
        registration = await self.stages.register_record(front, back, self.location_id)
        if not self._is_tracked(item_id, generation):
            return
        self._note_batch(registration)
        self._update(
            item_id,
            record_id=registration.record_id,
            batch_id=registration.batch_id,
            batch_name=registration.batch_name,
            progress=60,
        )

        # Stage 3: vision extraction
        self._update(item_id, status=ProcessingStatus.EXTRACTING, progress=70)
        fields = await self.stages.extract_structured_data(item.front_image, item.back_image)
        if not self._is_tracked(item_id, generation):
            return
        self._update(item_id, progress=85)

        # Stage 4: commit extracted fields
        self._update(item_id, progress=90)
        await self.stages.commit_extraction(registration.record_id, fields)
        if not self._is_tracked(item_id, generation):
            return

        self._update(item_id, status=ProcessingStatus.COMPLETE, progress=100, error=None)
        logger.info(f"Card {item_id[:8]} complete (record {registration.record_id})")
        self._notify(self.on_card_complete, registration.record_id)

    def _note_batch(self, registration: Registration) -> None:
        if self._batch_info is not None:
            return
        self._batch_info = BatchInfo(id=registration.batch_id, name=registration.batch_name)
        logger.info(f"Batch assigned: {registration.batch_name} ({registration.batch_id})")
        self._notify(self.on_batch_info, registration.batch_id, registration.batch_name)

    def _mark_duplicate(self, item_id: str, error: DuplicateContentError) -> None:
        item = self._items.get(item_id)
        if item is None:
            return
        if not can_transition(item.status, ProcessingStatus.DUPLICATE):
            # duplicate signal from a stage that cannot report one
            self._fail(item_id, error.message)
            return

        logger.info(f"Card {item_id[:8]} is a duplicate (existing record {error.existing_record_id})")
        self._update(item_id, status=ProcessingStatus.DUPLICATE, error=DUPLICATE_MESSAGE, progress=100)

    async def _handle_failure(self, item_id: str, message: str, retryable: bool) -> None:
        item = self._items.get(item_id)
        if item is None:
            return

        attempt = item.retry_count + 1
        if not retryable or attempt >= self.max_retries:
            self._fail(item_id, message)
            return

        delay = self._retry_delay(attempt)
        logger.warning(
            f"Card {item_id[:8]} failed in {item.status.value}: {message} "
            f"(retry {attempt}/{self.max_retries} in {delay:.1f}s)"
        )
        self._update(item_id, retry_count=attempt, error=f"Retrying ({attempt}/{self.max_retries})...")
        await asyncio.sleep(delay)
        self._update(item_id, status=ProcessingStatus.QUEUED, error=None)

    def _fail(self, item_id: str, message: str) -> None:
        if self._update(item_id, status=ProcessingStatus.FAILED, error=message) is None:
            return
        logger.error(f"Card {item_id[:8]} failed: {message}")
        self._notify(self.on_failure, item_id, message)

    def _retry_delay(self, attempt: int) -> float:
        index = min(attempt, len(self.retry_delays)) - 1
        return self.retry_delays[index]

    # =========================================================================
    # State
    # =========================================================================

    def _is_tracked(self, item_id: str, generation: int) -> bool:
        if generation == self._generation and item_id in self._items:
            return True
        logger.info(f"Card {item_id[:8]} no longer tracked; dropping result")
        return False

    def _update(self, item_id: str, status: Optional[ProcessingStatus] = None, **changes) -> Optional[WorkItem]:
        """
        Single write path for work items.

        Validates status transitions and retry_count bounds, then publishes.
        Returns None (and changes nothing) for cards that are no longer tracked.
        """
        item = self._items.get(item_id)
        if item is None:
            return None

        if status is not None and status is not item.status:
            check_transition(item.status, status)
            changes["status"] = status

        retry_count = changes.get("retry_count")
        if retry_count is not None and not item.retry_count <= retry_count <= self.max_retries:
            raise ValueError(f"retry_count {item.retry_count} -> {retry_count} out of bounds")

        updated = item.copy_with(**changes)
        self._items[item_id] = updated
        self._publish()
        return updated

    def _publish(self, persist: bool = True) -> None:
        if persist and self.session_store:
            self.session_store.save(self.items, self._batch_info, self.tenant, self.location_id)
        for listener in list(self._listeners):
            self._notify(listener, self)

    @staticmethod
    def _notify(callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Callback {getattr(callback, '__name__', callback)!r} raised: {e}")
