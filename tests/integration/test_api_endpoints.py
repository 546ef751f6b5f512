"""
Integration tests for the backend API.

Runs the FastAPI app over a temporary SQLite database and storage folder;
the Gemini extractor is replaced through dependency overrides.
"""

import base64
import hashlib
import time
from datetime import timezone

import pytest

from cardscan_backend.models.db import CardBatch, ConnectCard, Location
from cardscan_backend.utils.batches import format_batch_name, get_or_create_active_batch
from cardscan_workers.processing.vision_extractor import ExtractionError, UnreadableImageError

pytestmark = pytest.mark.integration

TENANT = "grace-church"


def _register(client, image_hash="hash-1", **extra):
    body = {"tenant": TENANT, "image_key": f"key-{image_hash}", "image_hash": image_hash, **extra}
    return client.post("/api/v1/cards/pending", json=body)


class TestHealth:

    def test_health(self, test_client):
        assert test_client.get("/health").json()["status"] == "healthy"
        assert test_client.get("/api/v1/health").json()["api_version"] == "v1"


class TestStorage:
    """Signed upload URLs and direct uploads."""

    def _upload_url(self, client, **overrides):
        body = {
            "file_name": "connect-card-front-1.jpg",
            "content_type": "image/jpeg",
            "size": 4,
            "tenant": TENANT,
            "card_side": "front",
            **overrides,
        }
        return client.post("/api/v1/storage/upload-url", json=body)

    def test_upload_round_trip(self, test_client, tmp_path):
        response = self._upload_url(test_client)
        assert response.status_code == 200
        data = response.json()
        assert data["key"].startswith(f"connect-card/{TENANT}/front/")

        put = test_client.put(data["upload_url"], content=b"\xff\xd8\xff\x00")
        assert put.status_code == 200
        assert put.json()["size"] == 4
        assert (tmp_path / "storage" / "connect-cards" / data["key"]).read_bytes() == b"\xff\xd8\xff\x00"

        stats = test_client.get("/api/v1/storage/stats").json()
        assert stats["total_files"] == 1
        assert stats["files_by_type"] == {".jpg": 1}

    def test_tampered_signature_rejected(self, test_client):
        data = self._upload_url(test_client).json()

        put = test_client.put(data["upload_url"].replace("signature=", "signature=0"), content=b"x")
        assert put.status_code == 403

    def test_expired_url_rejected(self, test_client):
        from cardscan_backend.api.storage import sign_key

        expires = int(time.time()) - 10
        url = f"/api/v1/storage/objects/k/a.jpg?expires={expires}&signature={sign_key('k/a.jpg', expires)}"
        assert test_client.put(url, content=b"x").status_code == 403

    def test_unsupported_type(self, test_client):
        assert self._upload_url(test_client, content_type="application/pdf").status_code == 422

    def test_too_large(self, test_client):
        assert self._upload_url(test_client, size=100 * 1024 * 1024).status_code == 422

    def test_empty_stats(self, test_client):
        assert test_client.get("/api/v1/storage/stats").json()["total_files"] == 0


class TestPendingCards:

    def test_creates_card_in_daily_batch(self, test_client, test_session, location):
        response = _register(test_client, location_id=location.id, back_image_key="back", back_image_hash="bh")

        assert response.status_code == 200
        data = response.json()
        assert data["batch_name"].startswith("North Campus - ")

        card = test_session.get(ConnectCard, data["card_id"])
        assert card.status == "PENDING"
        assert card.batch_id == data["batch_id"]
        assert card.back_image_hash == "bh"

    def test_batch_reused_and_counted(self, test_client, test_session, location):
        first = _register(test_client, "h1", location_id=location.id).json()
        second = _register(test_client, "h2", location_id=location.id).json()

        assert first["batch_id"] == second["batch_id"]
        batch = test_session.get(CardBatch, first["batch_id"])
        test_session.refresh(batch)
        assert batch.card_count == 2

    def test_without_location_uses_unassigned_batch(self, test_client):
        data = _register(test_client).json()
        assert data["batch_name"].startswith("Unassigned - ")

    def test_duplicate_hash(self, test_client):
        first = _register(test_client, "same").json()
        response = _register(test_client, "same")

        assert response.status_code == 409
        body = response.json()
        assert body["duplicate"] is True
        assert body["existing_card"]["id"] == first["card_id"]

    def test_same_hash_other_tenant_is_not_duplicate(self, test_client):
        _register(test_client, "same")
        response = test_client.post("/api/v1/cards/pending", json={
            "tenant": "other-church", "image_key": "k", "image_hash": "same",
        })
        assert response.status_code == 200

    def test_inactive_location(self, test_client, test_session):
        closed = Location(tenant=TENANT, name="Old Campus", is_active=False)
        test_session.add(closed)
        test_session.commit()

        assert _register(test_client, location_id=closed.id).status_code == 422

    def test_other_tenants_location(self, test_client, test_session):
        foreign = Location(tenant="other-church", name="Their Campus")
        test_session.add(foreign)
        test_session.commit()

        assert _register(test_client, location_id=foreign.id).status_code == 422


class TestExtract:

    def _body(self, front=b"front-bytes", back=None):
        body = {"tenant": TENANT, "front_image_data": base64.b64encode(front).decode(), "front_media_type": "image/jpeg"}
        if back is not None:
            body["back_image_data"] = base64.b64encode(back).decode()
        return body

    def test_returns_fields(self, test_client, fake_extractor, sample_fields):
        response = test_client.post("/api/v1/cards/extract", json=self._body(back=b"back-bytes"))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"] == sample_fields
        assert data["image_hash"] == hashlib.sha256(b"front-bytes").hexdigest()
        assert data["back_image_hash"] == hashlib.sha256(b"back-bytes").hexdigest()
        fake_extractor.extract.assert_called_once_with(b"front-bytes", b"back-bytes")

    def test_pending_card_with_same_hash_is_not_duplicate(self, test_client):
        _register(test_client, hashlib.sha256(b"front-bytes").hexdigest())

        assert test_client.post("/api/v1/cards/extract", json=self._body()).status_code == 200

    def test_already_extracted_is_duplicate(self, test_client, test_session, fake_extractor):
        card = ConnectCard(
            tenant=TENANT,
            image_key="k",
            image_hash=hashlib.sha256(b"front-bytes").hexdigest(),
            status="EXTRACTED",
        )
        test_session.add(card)
        test_session.commit()

        response = test_client.post("/api/v1/cards/extract", json=self._body())

        assert response.status_code == 409
        assert response.json()["duplicate"] is True
        assert response.json()["existing_card"]["id"] == card.id
        fake_extractor.extract.assert_not_called()

    def test_extraction_failure(self, test_client, fake_extractor):
        fake_extractor.extract.side_effect = ExtractionError("Could not extract JSON from response")

        response = test_client.post("/api/v1/cards/extract", json=self._body())
        assert response.status_code == 502

    def test_unreadable_image_is_rejected(self, test_client, fake_extractor):
        fake_extractor.extract.side_effect = UnreadableImageError("Unreadable front image: cannot identify image file")

        response = test_client.post("/api/v1/cards/extract", json=self._body())
        assert response.status_code == 422

    def test_invalid_base64(self, test_client):
        body = {"tenant": TENANT, "front_image_data": "***"}
        assert test_client.post("/api/v1/cards/extract", json=body).status_code == 422


class TestCommitExtraction:

    def test_commit_normalizes_and_validates(self, test_client, test_session, sample_fields):
        card_id = _register(test_client).json()["card_id"]

        response = test_client.put(
            f"/api/v1/cards/{card_id}/extraction",
            json={"tenant": TENANT, "extracted_data": sample_fields},
        )

        assert response.status_code == 200
        assert response.json() == {"id": card_id, "needs_review": False}

        card = test_session.get(ConnectCard, card_id)
        assert card.status == "EXTRACTED"
        assert card.phone == "(555) 123-4567"
        assert card.visit_type == "First Visit"
        assert card.interests == ["Volunteering", "Small Groups"]
        assert card.detected_keywords == ["family", "family", "prayer"]
        assert card.validation_issues == []
        assert card.extracted_at is not None

    def test_commit_records_validation_issues(self, test_client, test_session):
        card_id = _register(test_client).json()["card_id"]

        response = test_client.put(
            f"/api/v1/cards/{card_id}/extraction",
            json={"tenant": TENANT, "extracted_data": {"name": "A", "phone": "555-123-456"}},
        )

        assert response.json()["needs_review"] is True
        card = test_session.get(ConnectCard, card_id)
        assert {issue["field"] for issue in card.validation_issues} == {"name", "phone", "email"}

    def test_missing_card(self, test_client):
        response = test_client.put("/api/v1/cards/nope/extraction", json={"tenant": TENANT, "extracted_data": {}})
        assert response.status_code == 404

    def test_not_pending(self, test_client):
        card_id = _register(test_client).json()["card_id"]
        body = {"tenant": TENANT, "extracted_data": {"name": "Ann"}}

        assert test_client.put(f"/api/v1/cards/{card_id}/extraction", json=body).status_code == 200
        assert test_client.put(f"/api/v1/cards/{card_id}/extraction", json=body).status_code == 409

    def test_other_tenant_cannot_commit(self, test_client):
        card_id = _register(test_client).json()["card_id"]
        body = {"tenant": "other-church", "extracted_data": {}}

        assert test_client.put(f"/api/v1/cards/{card_id}/extraction", json=body).status_code == 404


class TestListing:

    def test_list_and_batch(self, test_client, location):
        registered = _register(test_client, location_id=location.id).json()

        cards = test_client.get("/api/v1/cards", params={"tenant": TENANT, "status": "pending"}).json()
        assert [c["id"] for c in cards] == [registered["card_id"]]

        batch = test_client.get(f"/api/v1/batches/{registered['batch_id']}").json()
        assert batch["card_count"] == 1
        assert batch["location_id"] == location.id

    def test_missing_batch(self, test_client):
        assert test_client.get("/api/v1/batches/nope").status_code == 404


class TestBatchNaming:

    def test_format(self):
        from datetime import datetime

        assert format_batch_name("North Campus", datetime(2025, 3, 3)) == "North Campus - Mar 3, 2025"

    def test_timestamps_are_utc_aware(self, test_session):
        batch = get_or_create_active_batch(test_session, TENANT, None)
        card = ConnectCard(tenant=TENANT, image_key="k", image_hash="h")

        assert batch.created_at.tzinfo is not None
        assert card.scanned_at.tzinfo is timezone.utc
        assert get_or_create_active_batch(test_session, TENANT, None).id == batch.id
