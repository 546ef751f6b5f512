import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import Field, SQLModel, Column, JSON, UniqueConstraint


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Location(SQLModel, table=True):
    """A campus/site of a tenant where cards are collected."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(index=True)
    name: str
    is_active: bool = Field(default=True)


class CardBatch(SQLModel, table=True):
    """
    All cards scanned for one tenant + location on one day.

    Named "{Location} - {Mon D, YYYY}".
    """
    __tablename__ = "card_batch"

    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(index=True)
    location_id: Optional[str] = Field(default=None, foreign_key="location.id", index=True)
    name: str
    status: str = Field(default="PENDING")  # PENDING, REVIEWED
    card_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utcnow, index=True)


class ConnectCard(SQLModel, table=True):
    """
    One scanned connect card.

    Created PENDING at registration (images only), moved to EXTRACTED when
    the vision fields are committed. (tenant, image_hash) is unique so the
    first registration of an image wins.
    """
    __tablename__ = "connect_card"
    __table_args__ = (UniqueConstraint("tenant", "image_hash", name="uq_connect_card_tenant_hash"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    tenant: str = Field(index=True)
    batch_id: Optional[str] = Field(default=None, foreign_key="card_batch.id", index=True)
    location_id: Optional[str] = Field(default=None, foreign_key="location.id")

    # Images
    image_key: str
    image_hash: str = Field(index=True)
    back_image_key: Optional[str] = Field(default=None)
    back_image_hash: Optional[str] = Field(default=None)

    status: str = Field(default="PENDING", index=True)  # PENDING, EXTRACTED

    # Extracted fields (normalized)
    extracted_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    name: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = Field(default=None)
    phone: Optional[str] = Field(default=None)
    address: Optional[str] = Field(default=None)
    prayer_request: Optional[str] = Field(default=None)
    visit_type: Optional[str] = Field(default=None)
    interests: List[str] = Field(default=[], sa_column=Column(JSON))
    detected_keywords: List[str] = Field(default=[], sa_column=Column(JSON))
    validation_issues: List[Dict[str, str]] = Field(default=[], sa_column=Column(JSON))

    scanned_at: datetime = Field(default_factory=_utcnow)
    extracted_at: Optional[datetime] = Field(default=None)
