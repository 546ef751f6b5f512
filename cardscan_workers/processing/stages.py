"""
Stage adapters: the four async operations a card goes through.

store_image -> register_record -> extract_structured_data -> commit_extraction

Upload and extraction calls are gated by their own PermitSemaphore so a
burst of one kind cannot starve the other. Every adapter is safe to call
again with the same input: hashes are recomputed from the same bytes and a
second registration of a known hash surfaces as a duplicate.
"""

import asyncio
import functools
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional

from cardscan_workers.processing.clients import CardBackend
from cardscan_workers.processing.errors import (
    BusinessRuleError,
    CardProcessingError,
    PayloadLostError,
    TransientStageError,
)
from cardscan_workers.processing.models import CapturedImage, Registration, StoredImage
from cardscan_workers.processing.semaphore import PermitSemaphore

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


class StageAdapters:
    """
    Async wrappers around a CardBackend for one tenant.

    Usage:
        adapters = StageAdapters(backend, tenant="grace-church",
                                 upload_semaphore=PermitSemaphore(5),
                                 extraction_semaphore=PermitSemaphore(3))
        front = await adapters.store_image(item.front_image, "front")
    """

    def __init__(
        self,
        backend: CardBackend,
        tenant: str,
        upload_semaphore: PermitSemaphore,
        extraction_semaphore: PermitSemaphore,
    ):
        self.backend = backend
        self.tenant = tenant
        self.upload_semaphore = upload_semaphore
        self.extraction_semaphore = extraction_semaphore

    async def store_image(self, image: CapturedImage, side: str) -> StoredImage:
        """Hash the raw bytes, get a write credential and upload."""
        if not image.has_payload:
            raise PayloadLostError(stage="uploading")

        image_hash = image.content_hash()
        extension = _EXTENSIONS.get(image.content_type, "jpg")
        file_name = f"connect-card-{side}-{int(time.time() * 1000)}.{extension}"

        async with self.upload_semaphore:
            credential = await self._call(
                "uploading",
                self.backend.request_write_credential,
                file_name,
                image.content_type,
                image.size,
                self.tenant,
                {"side": side},
            )
            await self._call(
                "uploading",
                self.backend.upload_bytes,
                credential["upload_url"],
                image.data,
                image.content_type,
            )

        logger.debug(f"Stored {side} image {credential['key']} ({image_hash[:12]})")
        return StoredImage(key=credential["key"], hash=image_hash)

    async def register_record(
        self,
        front: StoredImage,
        back: Optional[StoredImage],
        location_id: Optional[str] = None,
    ) -> Registration:
        """Create the pending record; the backend reuses or opens the sitting's batch."""
        payload = {
            "image_key": front.key,
            "image_hash": front.hash,
            "back_image_key": back.key if back else None,
            "back_image_hash": back.hash if back else None,
        }
        result = await self._call(
            "creating",
            self.backend.create_pending_record,
            self.tenant,
            payload,
            location_id,
        )
        try:
            return Registration(
                record_id=result["card_id"],
                batch_id=result["batch_id"],
                batch_name=result["batch_name"],
            )
        except (KeyError, TypeError) as e:
            raise TransientStageError(f"Malformed registration response: {e}", stage="creating") from e

    async def extract_structured_data(
        self,
        front_image: CapturedImage,
        back_image: Optional[CapturedImage] = None,
    ) -> Dict[str, Any]:
        """Send raw bytes (not storage keys) to the vision extraction service."""
        if not front_image.has_payload or (back_image is not None and not back_image.has_payload):
            raise PayloadLostError(stage="extracting")

        async with self.extraction_semaphore:
            fields = await self._call(
                "extracting",
                self.backend.extract,
                self.tenant,
                front_image.data,
                front_image.content_type,
                back_image.data if back_image else None,
                back_image.content_type if back_image else None,
            )

        if not isinstance(fields, dict):
            raise TransientStageError("Extraction returned no structured data", stage="extracting")
        return fields

    async def commit_extraction(self, record_id: str, fields: Dict[str, Any]) -> None:
        """Persist extracted fields against the pending record."""
        if not record_id:
            raise BusinessRuleError("Record id is required to commit extraction", stage="extracting")
        await self._call(
            "extracting",
            self.backend.update_record_extraction,
            self.tenant,
            record_id,
            fields,
        )

    async def _call(self, stage: str, func: Callable[..., Any], *args: Any) -> Any:
        """Await coroutine clients; run blocking ones in the default executor."""
        try:
            if inspect.iscoroutinefunction(func):
                return await func(*args)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, functools.partial(func, *args))
        except CardProcessingError as e:
            if e.stage is None:
                e.stage = stage
            raise
