import os
import zlib
from datetime import datetime, timedelta
from typing import List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from recipe_chat.app.api.deps import get_db_session
from recipe_chat.app.core.config import Settings, get_settings
from recipe_chat.app.core.container import ServiceContainer
from recipe_chat.app.db import models  # noqa: F401
from recipe_chat.app.db.base import Base
from recipe_chat.app.main import create_app
from recipe_chat.app.schemas.intent import ClassificationResult, IntentType
from recipe_chat.app.services.errors import ClassificationUnavailable
from recipe_chat.app.services.rate_limiter import InMemorySlidingWindowLimiter

EMBEDDING_DIMENSIONS = 256


class FakeClassifier:
    """Returns a fixed classification and records every call."""

    def __init__(self, intent: IntentType = IntentType.GENERAL_CHAT, confidence: float = 0.95, error: bool = False):
        self.intent = intent
        self.confidence = confidence
        self.error = error
        self.calls: List[str] = []

    async def classify(self, text, history=()):
        self.calls.append(text)
        if self.error:
            raise ClassificationUnavailable("classifier offline")
        return ClassificationResult(intent=self.intent, confidence=self.confidence)


class FakeEmbedder:
    """Bag-of-words vectors: texts sharing words point the same way."""

    def __init__(self):
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * EMBEDDING_DIMENSIONS
        for word in text.lower().replace(",", " ").replace(":", " ").split():
            vector[zlib.crc32(word.encode()) % EMBEDDING_DIMENSIONS] += 1.0
        return vector


class FakeCaptions:
    def __init__(self, transcript: Optional[str] = None):
        self.transcript = transcript
        self.calls: List[str] = []

    async def fetch_transcript(self, video_id: str) -> Optional[str]:
        self.calls.append(video_id)
        return self.transcript


async def public_resolver(host: str) -> List[str]:
    return ["93.184.216.34"]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler=None):
        self.requests: List[httpx.Request] = []
        handler = handler or (lambda request: httpx.Response(404))

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine("sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, future=True)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autocommit=False, autoflush=False, future=True)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        RATE_LIMIT_CHAT_MAX=10,
        RATE_LIMIT_STORE_MAX=5,
        _env_file=None,
    )


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def captions():
    return FakeCaptions()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def container(settings, engine, transport, classifier, embedder, captions):
    return ServiceContainer(
        settings,
        http_client=httpx.AsyncClient(transport=transport),
        session_factory=sessionmaker(bind=engine, future=True),
        classifier=classifier,
        embedder=embedder,
        captions=captions,
        limiter=InMemorySlidingWindowLimiter(),
        resolver=public_resolver,
    )


@pytest.fixture
def app(db_session, settings, container):
    app = create_app(settings=settings, container=container)

    def override_db():
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_settings():
    return get_settings()


def make_token(user_id: str, email: str, settings, name: Optional[str] = None) -> str:
    payload = {"sub": str(user_id), "email": email}
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_token(auth_settings):
    return make_token("user-1", "user1@example.com", auth_settings, name="Ada")


@pytest.fixture
def other_user_token(auth_settings):
    return make_token("user-2", "user2@example.com", auth_settings)


def make_recipe_row(db, user_id: str, group, title: str, ingredients, steps, tags=(), embedding=None, age_minutes=0):
    recipe = models.Recipe(
        user_id=user_id,
        group_id=group.id,
        title=title,
        ingredients=list(ingredients),
        steps=list(steps),
        tags=list(tags),
        embedding=embedding or [1.0] + [0.0] * (EMBEDDING_DIMENSIONS - 1),
        created_at=datetime.utcnow() - timedelta(minutes=age_minutes),
    )
    db.add(recipe)
    db.commit()
    db.refresh(recipe)
    return recipe
