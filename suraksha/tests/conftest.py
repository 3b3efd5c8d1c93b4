import json
import os
from io import BytesIO
from types import SimpleNamespace

# Keep the app's import-time create_all away from the working directory.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from suraksha.api import server
from suraksha.api.security import InFlightRegistry, rate_limiter
from suraksha.database import Base
from suraksha.services import video_service
from suraksha.services.history_service import SessionHistoryRegistry
from suraksha.services.llm_client import LLMClient
from suraksha.utils.logging_config import metrics


# ============== FAKE MODEL ==============


def assistant_message(content=None, tool_calls=None):
    return SimpleNamespace(role="assistant", content=content, tool_calls=tool_calls)


def tool_call(name, arguments, call_id="call_1"):
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
    )


class FakeOpenAI:
    """
    Stands in for openai.OpenAI. Each create() pops the next queued reply:
    a message object, a dict (sent back as JSON content), or an exception.
    """

    def __init__(self):
        self.replies = []
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def queue(self, *replies):
        self.replies.extend(replies)
        return self

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.replies:
            raise AssertionError("Unexpected model call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = assistant_message(json.dumps(reply))
        return SimpleNamespace(choices=[SimpleNamespace(message=reply)])


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def llm(fake_openai):
    return LLMClient(model="test-model", client=fake_openai)


# ============== DATABASE ==============


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


# ============== APP ==============


@pytest.fixture
def history_registry():
    return SessionHistoryRegistry()


@pytest.fixture
def in_flight_registry():
    return InFlightRegistry()


@pytest.fixture
def client(llm, session_factory, history_registry, in_flight_registry):
    """FastAPI test client fixture, wired to the fake model and an in-memory database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app = server.app
    app.dependency_overrides[server.get_db] = override_get_db
    app.dependency_overrides[server.get_session_factory] = lambda: session_factory
    app.dependency_overrides[server.get_llm_client] = lambda: llm
    app.dependency_overrides[server.get_history_registry] = lambda: history_registry
    app.dependency_overrides[server.get_in_flight] = lambda: in_flight_registry
    rate_limiter.reset()
    metrics.reset()

    yield TestClient(app)

    app.dependency_overrides.clear()


# ============== SAMPLE DATA ==============


@pytest.fixture
def sample_scam_text():
    """Sample scam message for testing."""
    return "URGENT: Your bank account has been blocked! Click here immediately and share the OTP to unlock it."


@pytest.fixture
def sample_safe_text():
    """Sample safe message for testing."""
    return "Hi, just wanted to check in about our meeting tomorrow at 3pm."


@pytest.fixture
def sample_phishing_url():
    return "http://secure-login-paypa1.xyz/account/verify"


@pytest.fixture
def scam_verdict():
    """A well-formed content verdict, as the model returns it."""
    return {
        "informationStatus": "SCAM",
        "possibilityScore": {"true": 8, "falseOrScam": 92},
        "informationType": ["Phishing", "Bank Fraud"],
        "detailedAnalysis": {
            "psychologicalTriggers": ["Urgency", "Fear"],
            "languageAnalysis": ["Generic Greeting"],
            "requestAnalysis": ["Asks for Personal Info"],
        },
        "simpleExplanation": "Banks never ask you to share an OTP.",
        "warningOrSafetyAdvice": "Do not click the link or share any codes.",
        "finalVerdict": "This is a phishing scam.",
    }


@pytest.fixture
def unsafe_url_verdict():
    return {
        "safetyStatus": "Unsafe",
        "reason": "The domain imitates PayPal with a look-alike spelling.",
        "risk": "Credential theft.",
        "advice": "Do not enter your password on this site.",
    }


@pytest.fixture
def png_bytes():
    def make(size=(16, 12), color=(200, 30, 30), fmt="PNG"):
        buffer = BytesIO()
        Image.new("RGB", size, color).save(buffer, format=fmt)
        return buffer.getvalue()

    return make


# ============== FAKE VIDEO ==============


class FakeClip:
    """Minimal stand-in for moviepy's VideoFileClip."""

    def __init__(self, duration=10.0, size=(32, 24)):
        self.duration = duration
        self.size = size
        self.requested = []
        self.closed = False

    def get_frame(self, t):
        self.requested.append(t)
        width, height = self.size
        return np.full((height, width, 3), int(t * 20) % 256, dtype=np.uint8)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_clip():
    return FakeClip


@pytest.fixture
def patched_video(monkeypatch):
    """Replace VideoFileClip so any uploaded bytes 'decode' to a 10s, 32x24 clip."""
    opened = []

    def open_clip(path, audio=False):
        clip = FakeClip()
        opened.append((path, clip))
        return clip

    monkeypatch.setattr(video_service, "VideoFileClip", open_clip)
    return opened
