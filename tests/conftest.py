import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")

from familytrips import models  # noqa: E402
from familytrips.database import get_db  # noqa: E402
from familytrips.main import create_app  # noqa: E402
from familytrips.utils.cache import CacheStore  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def as_user(user_id: str, role: str, family_id=None) -> dict:
    """Identity headers as forwarded by the upstream identity provider."""
    headers = {"X-User-Id": user_id, "X-User-Role": role}
    if family_id is not None:
        headers["X-Family-Id"] = str(family_id)
    return headers


SUPER_ADMIN = as_user("admin-1", "SUPER_ADMIN")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> CacheStore:
    return CacheStore(clock=clock)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        models.Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(cache, session_factory):
    """TestClient over a fresh in-memory database and an injected cache."""
    app = create_app(cache=cache, cache_enabled=True, init_database=False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(session_factory):
    """Direct session for changing data behind the API's back."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
