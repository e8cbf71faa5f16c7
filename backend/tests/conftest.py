"""Pytest configuration and fixtures"""
import os
import tempfile
from typing import Callable, Dict, Generator

# Settings are read when devicehub.config is imported, so configure first
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["CACHE_URL"] = "memory://"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["EXPORT_DIR"] = tempfile.mkdtemp(prefix="devicehub-exports-")
os.environ["EXPORT_PROCESSING_DELAY_SECONDS"] = "0"
os.environ["JOB_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from devicehub.cache import MemoryCache  # noqa: E402
from devicehub.database import Base, Database  # noqa: E402
from devicehub.main import app  # noqa: E402
from devicehub.utils.jwt_utils import TokenService  # noqa: E402


@pytest.fixture(scope="function")
def database(tmp_path) -> Generator[Database, None, None]:
    """A standalone database for service-level tests"""
    database = Database(f"sqlite:///{tmp_path}/unit.db")
    database.connect()
    try:
        yield database
    finally:
        database.close()


@pytest.fixture(scope="function")
def db(database: Database) -> Generator[Session, None, None]:
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService("test-access-secret", "test-refresh-secret")


@pytest.fixture(scope="function")
def client() -> Generator[TestClient, None, None]:
    """Test client running the full application lifespan"""
    with TestClient(app) as test_client:
        yield test_client
        app.state.jobs.wait_idle(10)
        Base.metadata.drop_all(bind=app.state.database.engine)


@pytest.fixture
def app_db(client: TestClient) -> Generator[Session, None, None]:
    """Session on the database the running app uses"""
    session = app.state.database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(client: TestClient) -> Callable[..., Dict[str, str]]:
    """Sign up and log in a user; returns their bearer headers"""

    def _make_user(email: str = "alice@example.com", password: str = "secret123", name: str = "Alice"):
        response = client.post("/auth/signup", json={"name": name, "email": email, "password": password})
        assert response.status_code == 201, response.text
        response = client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['accessToken']}"}

    return _make_user


@pytest.fixture
def auth_headers(make_user) -> Dict[str, str]:
    return make_user()


@pytest.fixture
def sample_device_data() -> dict:
    """Sample device data for tests"""
    return {
        "name": "Living Room Meter",
        "type": "meter",
        "status": "active",
    }
