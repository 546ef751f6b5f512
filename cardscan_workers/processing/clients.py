"""
Collaborator clients consumed by the stage adapters.

CardBackend describes the four external collaborators (object storage,
registration, vision extraction, commit). HttpBackendClient talks to the
cardscan backend over HTTP with `requests`; methods may also be implemented
as coroutines (the adapters await those directly and push blocking ones onto
the default executor).
"""

import base64
import logging
from typing import Any, Dict, Optional

import requests

from cardscan_workers.processing.errors import (
    BusinessRuleError,
    DuplicateContentError,
    TransientStageError,
)

logger = logging.getLogger(__name__)


class CardBackend:
    """Interface of the external collaborators."""

    def request_write_credential(
        self,
        file_name: str,
        content_type: str,
        size: int,
        tenant: str,
        context: Dict[str, Any],
    ) -> Dict[str, str]:
        """Return {"upload_url": ..., "key": ...} for a short-lived direct upload."""
        raise NotImplementedError

    def upload_bytes(self, upload_url: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def create_pending_record(
        self,
        tenant: str,
        payload: Dict[str, Optional[str]],
        location_id: Optional[str] = None,
    ) -> Dict[str, str]:
        """Return {"card_id", "batch_id", "batch_name"} or raise DuplicateContentError."""
        raise NotImplementedError

    def extract(
        self,
        tenant: str,
        front_bytes: bytes,
        front_type: str,
        back_bytes: Optional[bytes] = None,
        back_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return extracted fields or raise DuplicateContentError."""
        raise NotImplementedError

    def update_record_extraction(
        self,
        tenant: str,
        record_id: str,
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        raise NotImplementedError


class HttpBackendClient(CardBackend):
    """
    HTTP client for the cardscan backend API.

    Status mapping:
    - 409 with {"duplicate": true}  -> DuplicateContentError
    - 404, 409, 422                 -> BusinessRuleError
    - any other failure             -> TransientStageError
    """

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[Any] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # requests.Session or the requests module itself
        self.http = session or requests

    def request_write_credential(self, file_name, content_type, size, tenant, context):
        response = self._send("POST", f"{self.base_url}/storage/upload-url", stage="uploading", json={
            "file_name": file_name,
            "content_type": content_type,
            "size": size,
            "tenant": tenant,
            "file_type": "connect-card",
            "card_side": context.get("side"),
        })
        data = response.json()
        return {"upload_url": data["upload_url"], "key": data["key"]}

    def upload_bytes(self, upload_url, data, content_type):
        self._send("PUT", upload_url, stage="uploading", data=data, headers={"Content-Type": content_type})

    def create_pending_record(self, tenant, payload, location_id=None):
        response = self._send("POST", f"{self.base_url}/cards/pending", stage="creating", json={
            "tenant": tenant,
            "location_id": location_id,
            **payload,
        })
        return response.json()

    def extract(self, tenant, front_bytes, front_type, back_bytes=None, back_type=None):
        body = {
            "tenant": tenant,
            "front_image_data": base64.b64encode(front_bytes).decode("ascii"),
            "front_media_type": front_type,
        }
        if back_bytes is not None:
            body["back_image_data"] = base64.b64encode(back_bytes).decode("ascii")
            body["back_media_type"] = back_type or "image/jpeg"

        response = self._send("POST", f"{self.base_url}/cards/extract", stage="extracting", json=body)
        return response.json()["data"]

    def update_record_extraction(self, tenant, record_id, fields):
        response = self._send(
            "PUT",
            f"{self.base_url}/cards/{record_id}/extraction",
            stage="extracting",
            json={"tenant": tenant, "extracted_data": fields},
        )
        return response.json()

    # =========================================================================
    # Private Methods
    # =========================================================================

    def _send(self, method: str, url: str, stage: str, **kwargs) -> Any:
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise TransientStageError(str(e), stage=stage) from e

        self._check_response(response, stage)
        return response

    @staticmethod
    def _check_response(response: Any, stage: str) -> None:
        if 200 <= response.status_code < 300:
            return

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        message = payload.get("message") or payload.get("detail") or payload.get("error")
        if not isinstance(message, str):
            message = f"HTTP {response.status_code}" if not message else str(message)

        if response.status_code == 409 and payload.get("duplicate"):
            existing = payload.get("existing_card") or {}
            raise DuplicateContentError(message, stage=stage, existing_record_id=existing.get("id"))

        if response.status_code in (404, 409, 422):
            raise BusinessRuleError(message, stage=stage)

        raise TransientStageError(message, stage=stage)
