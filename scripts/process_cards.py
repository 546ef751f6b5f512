"""
Process a folder of connect card photos through the backend.

Files named `<card>_front.<ext>` / `<card>_back.<ext>` are paired into
two-sided cards; any other image is a one-sided card.

    python scripts/process_cards.py ./scans --tenant grace-church --session kiosk-1
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from cardscan_backend.core.config import get_settings  # noqa: E402
from cardscan_workers.processing import (  # noqa: E402
    CapturedImage,
    CardProcessor,
    HttpBackendClient,
    ProcessingStatus,
    SessionSnapshotStore,
)

logger = logging.getLogger("process_cards")

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


def collect_cards(folder: Path) -> List[Tuple[Path, Optional[Path]]]:
    """Group images into (front, back) pairs, sorted by card name."""
    fronts: Dict[str, Path] = {}
    backs: Dict[str, Path] = {}

    for path in sorted(folder.iterdir()):
        if not path.is_file() or path.suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        stem = path.stem
        if stem.lower().endswith("_back"):
            backs[stem[:-5]] = path
        elif stem.lower().endswith("_front"):
            fronts[stem[:-6]] = path
        else:
            fronts[stem] = path

    for name in sorted(set(backs) - set(fronts)):
        logger.warning(f"Back image without a front: {backs[name].name} (skipped)")

    return [(fronts[name], backs.get(name)) for name in sorted(fronts)]


def _session_store(session_id: Optional[str]) -> Optional[SessionSnapshotStore]:
    if not session_id:
        return None

    settings = get_settings()
    redis_client = None
    try:
        import redis
        redis_client = redis.from_url(settings.redis.url)
        redis_client.ping()  # Test connection
    except Exception as e:
        logger.warning(f"Redis not available, session snapshots disabled: {e}")
        redis_client = None

    return SessionSnapshotStore(
        redis_client,
        session_id=session_id,
        ttl_hours=settings.session.ttl_hours,
        key_prefix=settings.session.key_prefix,
    )


async def run(folder: Path, tenant: str, location_id: Optional[str], session_id: Optional[str]) -> int:
    settings = get_settings()
    cards = collect_cards(folder)
    if not cards:
        logger.error(f"No card images found in {folder}")
        return 1

    backend = HttpBackendClient(settings.backend.base_url, timeout=settings.backend.request_timeout)
    processor = CardProcessor.from_settings(
        backend,
        tenant,
        location_id,
        session_store=_session_store(session_id),
        on_batch_info=lambda batch_id, name: logger.info(f"Batch: {name}"),
    )
    if processor.has_pending_session:
        logger.info("Discarding previous interrupted session")
        processor.discard_session()

    logger.info(f"Processing {len(cards)} cards from {folder}")
    for front_path, back_path in cards:
        front = CapturedImage.from_bytes(front_path.read_bytes())
        back = CapturedImage.from_bytes(back_path.read_bytes()) if back_path else None
        processor.add_card(front, back)

    await processor.drain()

    stats = processor.stats
    logger.info(
        f"Done: {stats.complete} complete, {stats.duplicate} duplicate, "
        f"{stats.failed} failed of {stats.total}"
    )
    for item in processor.items:
        if item.status is ProcessingStatus.FAILED:
            logger.error(f"  {item.id[:8]} {item.status.value}: {item.error}")

    return 1 if stats.has_failures else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Process a folder of connect card photos")
    parser.add_argument("folder", type=Path, help="Folder containing card images")
    parser.add_argument("--tenant", required=True, help="Tenant (organization) id")
    parser.add_argument("--location", default=None, help="Location id for the batch")
    parser.add_argument("--session", default=None, help="Session id for Redis snapshots")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.folder.is_dir():
        logger.error(f"Not a folder: {args.folder}")
        return 2

    return asyncio.run(run(args.folder, args.tenant, args.location, args.session))


if __name__ == "__main__":
    sys.exit(main())
