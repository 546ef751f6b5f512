"""
Shared pytest fixtures for Connect Card tests.

Provides an in-memory collaborator backend, card images, fakeredis and a
FastAPI test client over a temporary SQLite database, so no test touches
Gemini, Redis or the network.
"""

import asyncio
import io
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from PIL import Image, ImageDraw

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from cardscan_workers.processing.clients import CardBackend  # noqa: E402
from cardscan_workers.processing.errors import DuplicateContentError, TransientStageError  # noqa: E402


# =============================================================================
# Environment Setup
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ["TESTING"] = "true"
    os.environ["GEMINI_API_KEY"] = "test-api-key"
    yield


# =============================================================================
# Image Fixtures
# =============================================================================

def make_card_image(label: str = "card", size=(640, 400), fmt: str = "JPEG") -> bytes:
    """Render a card-like image; different labels give different bytes."""
    img = Image.new("RGB", size, "white")
    draw = ImageDraw.Draw(img)
    draw.rectangle([20, 20, size[0] - 20, size[1] - 20], outline="black", width=3)
    for y in range(80, size[1] - 60, 40):
        draw.line([(50, y), (size[0] - 50, y)], fill="gray", width=2)
    draw.text((60, 40), label, fill="black")

    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def card_image():
    """Factory for card-like image bytes."""
    return make_card_image


@pytest.fixture
def front_bytes() -> bytes:
    return make_card_image("Jane Visitor - front")


@pytest.fixture
def back_bytes() -> bytes:
    return make_card_image("Jane Visitor - back")


@pytest.fixture
def sample_fields() -> Dict[str, Any]:
    """Fields as returned by the vision extractor."""
    return {
        "name": "Jane Visitor",
        "email": "jane@example.com",
        "phone": "555.123.4567",
        "prayer_request": "For my family",
        "visit_status": "first time guest",
        "first_time_visitor": True,
        "interests": ["I'd like to volunteer", "small groups"],
        "keywords": ["family", "Family", " prayer "],
        "address": "12 Main St",
        "age_group": None,
        "family_info": None,
        "additional_notes": None,
    }


# =============================================================================
# In-memory collaborator backend
# =============================================================================

class FakeCardBackend(CardBackend):
    """
    Async in-memory stand-in for storage, registration, extraction and commit.

    - `fail_uploads`: number of upload calls that raise TransientStageError
      (-1 for every call)
    - `upload_delay`: seconds each upload holds its permit
    - `upload_gate`: if set, uploads wait for it before completing
    - `extract_error`: exception raised by every extract call
    """

    def __init__(self, fields: Optional[Dict[str, Any]] = None):
        self.fields = fields or {"name": "Jane Visitor"}
        self.objects: Dict[str, bytes] = {}
        self.records: Dict[str, Dict[str, Any]] = {}
        self.hashes: Dict[str, str] = {}
        self.batch = {"batch_id": "batch-1", "batch_name": "North Campus - Mar 3, 2025"}

        self.fail_uploads = 0
        self.upload_delay = 0.0
        self.upload_gate: Optional[asyncio.Event] = None
        self.upload_started = asyncio.Event()
        self.extract_error: Optional[Exception] = None

        self.calls: Dict[str, int] = {"credential": 0, "upload": 0, "register": 0, "extract": 0, "commit": 0}
        self.active_uploads = 0
        self.max_active_uploads = 0
        self.upload_order: List[int] = []

    async def request_write_credential(self, file_name, content_type, size, tenant, context):
        self.calls["credential"] += 1
        key = f"{tenant}/{context.get('side')}/{self.calls['credential']}-{file_name}"
        return {"upload_url": f"memory://{key}", "key": key}

    async def upload_bytes(self, upload_url, data, content_type):
        self.calls["upload"] += 1
        self.upload_order.append(self.calls["upload"])
        self.upload_started.set()
        self.active_uploads += 1
        self.max_active_uploads = max(self.max_active_uploads, self.active_uploads)
        try:
            if self.upload_gate is not None:
                await self.upload_gate.wait()
            if self.upload_delay:
                await asyncio.sleep(self.upload_delay)
            if self.fail_uploads:
                if self.fail_uploads > 0:
                    self.fail_uploads -= 1
                raise TransientStageError("storage unavailable")
            self.objects[upload_url[len("memory://"):]] = data
        finally:
            self.active_uploads -= 1

    async def create_pending_record(self, tenant, payload, location_id=None):
        self.calls["register"] += 1
        existing = self.hashes.get(payload["image_hash"])
        if existing:
            raise DuplicateContentError("This card has already been scanned", existing_record_id=existing)

        record_id = f"card-{len(self.records) + 1}"
        self.hashes[payload["image_hash"]] = record_id
        self.records[record_id] = {"status": "PENDING", "location_id": location_id, **payload}
        return {"card_id": record_id, **self.batch}

    async def extract(self, tenant, front_bytes, front_type, back_bytes=None, back_type=None):
        self.calls["extract"] += 1
        if self.extract_error is not None:
            raise self.extract_error
        return dict(self.fields)

    async def update_record_extraction(self, tenant, record_id, fields):
        self.calls["commit"] += 1
        self.records[record_id].update(status="EXTRACTED", extracted_data=fields)
        return {"id": record_id}


@pytest.fixture
def fake_backend() -> FakeCardBackend:
    return FakeCardBackend()


# =============================================================================
# Mock Redis
# =============================================================================

@pytest.fixture
def mock_redis():
    """Create a fake Redis client using fakeredis."""
    import fakeredis
    return fakeredis.FakeRedis()


# =============================================================================
# Mock Gemini API
# =============================================================================

@pytest.fixture
def mock_gemini_model(sample_fields: Dict[str, Any]):
    """Mock Gemini generative model answering with fenced JSON."""
    import json

    mock_model = Mock()
    mock_response = Mock()
    mock_response.text = "```json\n" + json.dumps(sample_fields) + "\n```"
    mock_model.generate_content.return_value = mock_response
    return mock_model


# =============================================================================
# Database / FastAPI Test Client
# =============================================================================

@pytest.fixture
def test_engine(tmp_path: Path):
    """Temporary SQLite database with all tables."""
    from sqlmodel import SQLModel, create_engine

    import cardscan_backend.models.db  # noqa: F401  (registers tables)

    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_session(test_engine):
    from sqlmodel import Session

    with Session(test_engine) as session:
        yield session


@pytest.fixture
def fake_extractor(sample_fields: Dict[str, Any]):
    """Extractor dependency returning fixed fields."""
    extractor = Mock()
    extractor.extract.return_value = dict(sample_fields)
    return extractor


@pytest.fixture
def test_client(test_engine, fake_extractor, tmp_path: Path, monkeypatch):
    """FastAPI test client wired to the temporary database and storage folder."""
    from fastapi.testclient import TestClient
    from sqlmodel import Session

    from cardscan_backend.api import storage as storage_api
    from cardscan_backend.core.database import get_session
    from cardscan_backend.main import app
    from cardscan_workers.processing.vision_extractor import get_extractor

    monkeypatch.setattr(storage_api.settings.storage, "base_path", str(tmp_path / "storage"))

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_extractor] = lambda: fake_extractor
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def location(test_session):
    from cardscan_backend.models.db import Location

    loc = Location(tenant="grace-church", name="North Campus")
    test_session.add(loc)
    test_session.commit()
    test_session.refresh(loc)
    return loc
