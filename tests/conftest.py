import io
import random
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from waste_rewards.core.config import Settings
from waste_rewards.main import create_app
from waste_rewards.models.profile_model import Profile, ProfileSetupRequest, Role
from waste_rewards.models.report_model import Location
from waste_rewards.services.advisory_service import AdvisoryClient
from waste_rewards.services.memory_store import InMemoryDocumentStore
from waste_rewards.services.profile_service import ProfileService
from waste_rewards.services.report_lifecycle import ReportLifecycleEngine

NAMESPACE = "test-app"
PHOTO_URL = "data:image/jpeg;base64,/9j/AAAA"
PROOF_URL = "data:image/jpeg;base64,/9j/BBBB"
HERE = Location(lat=30.0512, lon=78.0421)


class FakeAdvisory(AdvisoryClient):
    """Advisory client whose transport returns a canned reply (or raises)."""

    def __init__(self, reply: Any = "10", **kwargs):
        kwargs.setdefault("rng", random.Random(7))
        super().__init__("http://advisory.test/api/ai/gemini", **kwargs)
        self.reply = reply
        self.payloads: List[Dict[str, Any]] = []

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def _post(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.payloads.append(payload)
        if isinstance(self.reply, Exception):
            raise self.reply
        if self.reply is None:
            return None
        if isinstance(self.reply, dict):
            return self.reply
        return {"candidates": [{"content": {"parts": [{"text": self.reply}]}}]}


def make_jpeg(width: int = 1600, height: int = 1200, color=(40, 160, 90)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def store():
    return InMemoryDocumentStore(namespace=NAMESPACE)


@pytest.fixture
def advisory():
    return FakeAdvisory()


@pytest.fixture
def profiles(store):
    return ProfileService(store)


@pytest.fixture
def engine(store, advisory):
    return ReportLifecycleEngine(store, advisory, max_attempts=5)


async def _make(profiles: ProfileService, user_id: str, name: str, role: Role) -> Profile:
    return await profiles.create_profile(user_id, ProfileSetupRequest(name=name, role=role))


@pytest.fixture
async def reporter(profiles):
    return await _make(profiles, "reporter-1", "Asha Reporter", Role.REPORTER)


@pytest.fixture
async def picker(profiles):
    return await _make(profiles, "picker-1", "Ravi Picker", Role.PICKER)


@pytest.fixture
async def second_picker(profiles):
    return await _make(profiles, "picker-2", "Meera Picker", Role.PICKER)


@pytest.fixture
async def monitor(profiles):
    return await _make(profiles, "monitor-1", "Officer Das", Role.MONITOR)


@pytest.fixture
def jpeg_bytes():
    return make_jpeg()


@pytest.fixture
def settings():
    return Settings(
        app_id=NAMESPACE,
        store_backend="memory",
        redis_url="",
        secret_key="test-secret-key",
        advisory_endpoint="",
    )


@pytest.fixture
def client(settings, advisory):
    app = create_app(settings, store=InMemoryDocumentStore(namespace=NAMESPACE), advisory=advisory)
    with TestClient(app) as test_client:
        yield test_client
