"""
Session snapshot store.

Persists a binary-free projection of the processor state to a session-scoped
Redis key so an interrupted scanning sitting can be offered for recovery.

- Raw image bytes are never written, only previews
- Snapshots expire with the session (SETEX TTL)
- Restored in-flight items become `failed` because their bytes are gone
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cardscan_workers.processing.models import BatchInfo, WorkItem
from cardscan_workers.processing.state import ProcessingStatus, is_terminal

logger = logging.getLogger(__name__)

SESSION_INTERRUPTED_MESSAGE = "Session interrupted - please retry"


class SessionSnapshotStore:
    """
    Redis-backed snapshot slot for one scanning session.

    Usage:
        store = SessionSnapshotStore(redis.Redis(), session_id="kiosk-1")
        store.save(items, batch_info, tenant="grace-church", location_id=None)

        if store.has_resumable():
            snapshot = store.load()
            items = store.restore_items(snapshot)
    """

    def __init__(
        self,
        redis_client: Optional[Any],
        session_id: str,
        ttl_hours: int = 24,
        key_prefix: str = "card_session",
    ):
        self.redis = redis_client
        self.session_id = session_id
        self.ttl_seconds = ttl_hours * 3600
        self.key = f"{key_prefix}:{session_id}"

        if self.redis is None:
            logger.warning(f"No Redis client for session {session_id}; snapshots disabled")

    def save(
        self,
        items: List[WorkItem],
        batch_info: Optional[BatchInfo],
        tenant: str,
        location_id: Optional[str],
    ) -> None:
        """Write the snapshot. Storage failures are logged, never raised."""
        if not self.redis:
            return

        snapshot = {
            "items": [item.to_snapshot() for item in items],
            "batch_info": {"id": batch_info.id, "name": batch_info.name} if batch_info else None,
            "tenant": tenant,
            "location_id": location_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.redis.setex(self.key, self.ttl_seconds, json.dumps(snapshot))
        except Exception as e:
            logger.warning(f"Failed to save session snapshot: {e}")

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored snapshot, or None. Corrupt payloads are dropped."""
        if not self.redis:
            return None

        try:
            raw = self.redis.get(self.key)
        except Exception as e:
            logger.warning(f"Failed to read session snapshot: {e}")
            return None
        if not raw:
            return None

        try:
            snapshot = json.loads(raw)
            if not isinstance(snapshot, dict) or not isinstance(snapshot.get("items"), list):
                raise ValueError("snapshot has no item list")
            return snapshot
        except ValueError as e:
            logger.warning(f"Discarding invalid session snapshot: {e}")
            self.clear()
            return None

    def has_resumable(self) -> bool:
        """True if the stored snapshot holds at least one non-terminal item."""
        snapshot = self.load()
        if not snapshot:
            return False
        return any(
            item.get("status") not in (ProcessingStatus.COMPLETE.value, ProcessingStatus.DUPLICATE.value)
            for item in snapshot["items"]
        )

    @staticmethod
    def restore_items(snapshot: Dict[str, Any]) -> List[WorkItem]:
        """Rebuild work items; anything not complete or duplicate is marked interrupted."""
        restored = []
        for data in snapshot.get("items", []):
            try:
                item = WorkItem.from_snapshot(data)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable snapshot item: {e}")
                continue

            if not is_terminal(item.status):
                item = item.copy_with(status=ProcessingStatus.FAILED, error=SESSION_INTERRUPTED_MESSAGE)
            restored.append(item)
        return restored

    @staticmethod
    def restore_batch_info(snapshot: Dict[str, Any]) -> Optional[BatchInfo]:
        data = snapshot.get("batch_info")
        if not data:
            return None
        return BatchInfo(id=data["id"], name=data["name"])

    def clear(self) -> None:
        if not self.redis:
            return
        try:
            self.redis.delete(self.key)
        except Exception as e:
            logger.warning(f"Failed to clear session snapshot: {e}")
