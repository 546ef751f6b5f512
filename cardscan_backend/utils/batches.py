"""
Batch helpers - one PENDING batch per tenant, location and day.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlmodel import Session, select

from cardscan_backend.models.db import CardBatch, Location

logger = logging.getLogger(__name__)

UNASSIGNED_LOCATION = "Unassigned"
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_batch_name(location_name: str, date: datetime) -> str:
    """'{Location} - {Mon D, YYYY}', e.g. 'North Campus - Mar 3, 2025'."""
    return f"{location_name} - {_MONTHS[date.month - 1]} {date.day}, {date.year}"


def get_or_create_active_batch(
    session: Session,
    tenant: str,
    location: Optional[Location],
    now: Optional[datetime] = None,
) -> CardBatch:
    """Reuse today's PENDING batch for the location, or open a new one."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)
    location_id = location.id if location else None

    batch = session.exec(
        select(CardBatch)
        .where(CardBatch.tenant == tenant)
        .where(CardBatch.location_id == location_id)
        .where(CardBatch.status == "PENDING")
        .where(CardBatch.created_at >= day_start)
        .where(CardBatch.created_at < day_end)
        .order_by(CardBatch.created_at)
    ).first()

    if batch is None:
        batch = CardBatch(
            tenant=tenant,
            location_id=location_id,
            name=format_batch_name(location.name if location else UNASSIGNED_LOCATION, now),
            created_at=now,
        )
        session.add(batch)
        session.flush()
        logger.info(f"Opened batch '{batch.name}' for {tenant}")

    return batch
