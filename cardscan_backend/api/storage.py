"""
Storage Routes - short-lived write credentials and direct object upload.

The processor asks for an upload URL, then PUTs the raw bytes to it. URLs are
HMAC-signed over (key, expiry) and expire after
`storage.credential_ttl_seconds`.
"""

import hashlib
import hmac
import logging
import re
import time
import uuid
from collections import Counter
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from cardscan_backend.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/storage", tags=["Storage"])

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}


class UploadUrlRequest(BaseModel):
    file_name: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    size: int = Field(ge=1)
    tenant: str = Field(min_length=1)
    file_type: str = "connect-card"
    card_side: Optional[str] = None


def storage_root() -> Path:
    return Path(settings.storage.base_path) / settings.storage.bucket


def sign_key(key: str, expires: int) -> str:
    message = f"{key}:{expires}".encode()
    return hmac.new(settings.storage.signing_secret.encode(), message, hashlib.sha256).hexdigest()


def _slug(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]+", "-", value).strip("-") or "file"


@router.post("/upload-url")
def create_upload_url(body: UploadUrlRequest, request: Request):
    """Issue a signed, short-lived URL for one direct upload."""
    if body.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=422, detail=f"Unsupported content type: {body.content_type}")
    if body.size > settings.storage.max_upload_mb * 1024 * 1024:
        raise HTTPException(status_code=422, detail="File too large")

    side = f"{_slug(body.card_side)}/" if body.card_side else ""
    key = f"{_slug(body.file_type)}/{_slug(body.tenant)}/{side}{uuid.uuid4().hex[:12]}-{_slug(body.file_name)}"
    expires = int(time.time()) + settings.storage.credential_ttl_seconds
    signature = sign_key(key, expires)

    upload_url = f"{request.url_for('put_object', key=key)}?expires={expires}&signature={signature}"
    return {"upload_url": upload_url, "key": key, "expires": expires}


@router.put("/objects/{key:path}", name="put_object")
async def put_object(
    key: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
):
    """Accept the raw bytes for a previously signed key."""
    if expires < int(time.time()):
        raise HTTPException(status_code=403, detail="Upload URL expired")
    if not hmac.compare_digest(signature, sign_key(key, expires)):
        raise HTTPException(status_code=403, detail="Invalid upload signature")

    root = storage_root().resolve()
    target = (root / key).resolve()
    if root not in target.parents:
        raise HTTPException(status_code=400, detail="Invalid object key")

    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    logger.info(f"Stored object {key} ({len(data):,} bytes)")
    return {"key": key, "size": len(data)}


@router.get("/stats")
def get_storage_stats():
    """Get storage statistics."""
    root = storage_root()
    if not root.exists():
        return {"total_files": 0, "total_size_mb": 0, "storage_path": str(root)}

    files = [f for f in root.rglob("*") if f.is_file()]
    total_size = sum(f.stat().st_size for f in files)
    return {
        "total_files": len(files),
        "total_size_mb": round(total_size / (1024 * 1024), 2),
        "storage_path": str(root),
        "files_by_type": dict(Counter(f.suffix.lower() for f in files)),
    }
