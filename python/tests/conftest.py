"""Pytest configuration and fixtures for chatroute tests.

Test isolation strategy:
- Each test gets its own SQLite database file (tmp_path), schema created
  from the ORM metadata
- Redis is replaced by an in-memory FakeRedis; failure paths use MagicMock
- Providers are replaced by ScriptedAdapter, so no test touches the network
- Authenticated requests use MockJwtVerifier tokens (see tests.helpers)
"""

import os

# Must be set before chatroute reads its settings
os.environ["CHATROUTE_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CORS_ORIGINS"] = "http://localhost:8080"
os.environ["USE_MOCK_LLM"] = "true"

from collections.abc import Generator
from unittest.mock import MagicMock
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from chatroute.app import add_request_id_middleware, create_app
from chatroute.config import clear_settings_cache
from chatroute.db.models import Base
from chatroute.db.session import create_session_factory
from chatroute.services.llm import ModelInvoker, Provider
from tests.helpers import create_test_user_id
from tests.support.fake_redis import FakeRedis
from tests.support.jwt_verifier import MockJwtVerifier
from tests.support.scripted_adapter import ScriptedAdapter


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    """Per-test SQLite engine with the full schema."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'chatroute.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """A session for arranging and inspecting data directly."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def failing_redis() -> MagicMock:
    """Redis client whose every call raises."""
    client = MagicMock()
    client.get.side_effect = ConnectionError("redis down")
    client.setex.side_effect = ConnectionError("redis down")
    client.delete.side_effect = ConnectionError("redis down")
    client.scan_iter.side_effect = ConnectionError("redis down")
    return client


@pytest.fixture
def scripted_adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def model_invoker(scripted_adapter: ScriptedAdapter) -> ModelInvoker:
    """Invoker serving every provider from the scripted adapter."""
    return ModelInvoker(
        None,
        adapters={provider: scripted_adapter for provider in Provider},
        use_mock=True,
        timeout_s=5,
    )


@pytest.fixture
def app(session_factory, fake_redis, model_invoker):
    """App with auth (MockJwtVerifier), test database, fake redis and scripted providers."""
    app = create_app(
        token_verifier=MockJwtVerifier(),
        session_factory=session_factory,
        redis_client=fake_redis,
        model_invoker=model_invoker,
    )
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Test client; send auth_headers(user_id) for authenticated calls."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def test_user_id() -> UUID:
    return create_test_user_id()


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
