"""
Card Routes - registration, extraction, commit and listing.

Flow used by the processor:
1. POST /cards/pending       images stored -> PENDING card in today's batch
2. POST /cards/extract       raw image bytes -> Gemini fields
3. PUT  /cards/{id}/extraction  fields validated, normalized, card EXTRACTED
"""

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from cardscan_backend.core.database import get_session
from cardscan_backend.models.db import CardBatch, ConnectCard, Location
from cardscan_backend.utils.batches import get_or_create_active_batch
from cardscan_workers.processing.imaging import content_hash
from cardscan_workers.processing.normalization import (
    format_phone_number,
    normalize_interests,
    normalize_keywords,
    normalize_visit_status,
)
from cardscan_workers.processing.quality import validate_card_data
from cardscan_workers.processing.vision_extractor import ExtractionError, UnreadableImageError, get_extractor

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Cards"])


class PendingCardRequest(BaseModel):
    tenant: str = Field(min_length=1)
    image_key: str = Field(min_length=1)
    image_hash: str = Field(min_length=1)
    back_image_key: Optional[str] = None
    back_image_hash: Optional[str] = None
    location_id: Optional[str] = None


class ExtractRequest(BaseModel):
    tenant: str = Field(min_length=1)
    front_image_data: str = Field(min_length=1)
    front_media_type: str = "image/jpeg"
    back_image_data: Optional[str] = None
    back_media_type: Optional[str] = None


class CommitExtractionRequest(BaseModel):
    tenant: str = Field(min_length=1)
    extracted_data: Dict[str, Any]


def _duplicate_response(message: str, card: ConnectCard) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "duplicate": True,
            "message": message,
            "existing_card": {"id": card.id, "name": card.name, "status": card.status},
        },
    )


def _decode_image(data: str, side: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail=f"Invalid base64 {side} image data")


def _find_by_hash(session: Session, tenant: str, image_hash: str) -> Optional[ConnectCard]:
    return session.exec(
        select(ConnectCard)
        .where(ConnectCard.tenant == tenant)
        .where(ConnectCard.image_hash == image_hash)
    ).first()


@router.post("/cards/pending")
def create_pending_card(body: PendingCardRequest, session: Session = Depends(get_session)):
    """
    Register a card as soon as its images are stored.

    Returns 409 with duplicate=true when the tenant already has a card for
    the same front image.
    """
    location = None
    if body.location_id:
        location = session.get(Location, body.location_id)
        if location is None or location.tenant != body.tenant or not location.is_active:
            raise HTTPException(status_code=422, detail="Invalid location")

    existing = _find_by_hash(session, body.tenant, body.image_hash)
    if existing:
        logger.info(f"Duplicate registration for {body.tenant}: matches card {existing.id}")
        return _duplicate_response("This card has already been scanned", existing)

    batch = get_or_create_active_batch(session, body.tenant, location)
    card = ConnectCard(
        tenant=body.tenant,
        batch_id=batch.id,
        location_id=location.id if location else None,
        image_key=body.image_key,
        image_hash=body.image_hash,
        back_image_key=body.back_image_key,
        back_image_hash=body.back_image_hash,
    )
    batch.card_count += 1
    session.add(card)
    session.add(batch)

    try:
        session.commit()
    except IntegrityError:
        # Concurrent registration of the same image won the unique constraint
        session.rollback()
        winner = _find_by_hash(session, body.tenant, body.image_hash)
        if winner is None:
            raise
        return _duplicate_response("This card has already been scanned", winner)

    session.refresh(card)
    session.refresh(batch)
    logger.info(f"Registered card {card.id} in batch '{batch.name}' ({batch.card_count} cards)")
    return {"card_id": card.id, "batch_id": batch.id, "batch_name": batch.name}


@router.post("/cards/extract")
def extract_card(
    body: ExtractRequest,
    session: Session = Depends(get_session),
    extractor=Depends(get_extractor),
):
    """
    Run Gemini extraction on raw card images.

    A front image that already belongs to an extracted card is reported as a
    duplicate instead of being sent to the model again.
    """
    front_bytes = _decode_image(body.front_image_data, "front")
    back_bytes = _decode_image(body.back_image_data, "back") if body.back_image_data else None

    image_hash = content_hash(front_bytes)
    existing = session.exec(
        select(ConnectCard)
        .where(ConnectCard.tenant == body.tenant)
        .where(ConnectCard.image_hash == image_hash)
        .where(ConnectCard.status != "PENDING")
    ).first()
    if existing:
        logger.info(f"Extraction skipped, image already extracted as card {existing.id}")
        return _duplicate_response("This card has already been processed", existing)

    try:
        data = extractor.extract(front_bytes, back_bytes)
    except UnreadableImageError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ExtractionError as e:
        logger.error(f"Extraction failed for {body.tenant}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "success": True,
        "data": data,
        "image_hash": image_hash,
        "back_image_hash": content_hash(back_bytes) if back_bytes is not None else None,
    }


@router.put("/cards/{card_id}/extraction")
def commit_extraction(card_id: str, body: CommitExtractionRequest, session: Session = Depends(get_session)):
    """Store extracted fields on a PENDING card and mark it EXTRACTED."""
    card = session.get(ConnectCard, card_id)
    if card is None or card.tenant != body.tenant:
        raise HTTPException(status_code=404, detail="Card not found")
    if card.status != "PENDING":
        raise HTTPException(status_code=409, detail=f"Card is {card.status}, expected PENDING")

    data = body.extracted_data
    report = validate_card_data(data)

    card.extracted_data = data
    card.name = data.get("name") or None
    card.email = data.get("email") or None
    card.phone = format_phone_number(data.get("phone"))
    card.address = data.get("address") or None
    card.prayer_request = data.get("prayer_request") or None
    card.visit_type = normalize_visit_status(data.get("visit_status"))
    card.interests = normalize_interests(data.get("interests"))
    card.detected_keywords = normalize_keywords(data.get("keywords"))
    card.validation_issues = report.to_json()
    card.status = "EXTRACTED"
    card.extracted_at = datetime.now(timezone.utc)

    session.add(card)
    session.commit()

    if report.needs_review:
        logger.info(f"Card {card_id} committed with {len(report.issues)} validation issue(s)")
    return {"id": card.id, "needs_review": report.needs_review}


@router.get("/cards")
def list_cards(
    tenant: str,
    batch_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    session: Session = Depends(get_session),
):
    """List a tenant's cards, newest first."""
    query = select(ConnectCard).where(ConnectCard.tenant == tenant)
    if batch_id:
        query = query.where(ConnectCard.batch_id == batch_id)
    if status:
        query = query.where(ConnectCard.status == status.upper())

    cards = session.exec(query.order_by(ConnectCard.scanned_at.desc()).limit(limit)).all()
    return [
        {
            "id": c.id,
            "batch_id": c.batch_id,
            "status": c.status,
            "name": c.name,
            "email": c.email,
            "phone": c.phone,
            "visit_type": c.visit_type,
            "interests": c.interests,
            "validation_issues": c.validation_issues,
            "scanned_at": c.scanned_at,
        }
        for c in cards
    ]


@router.get("/batches/{batch_id}")
def get_batch(batch_id: str, session: Session = Depends(get_session)):
    batch = session.get(CardBatch, batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")

    return {
        "id": batch.id,
        "name": batch.name,
        "status": batch.status,
        "location_id": batch.location_id,
        "card_count": batch.card_count,
        "created_at": batch.created_at,
    }
