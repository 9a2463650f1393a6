import os

os.environ.setdefault("PUBLIC_SUPABASE_URL", "https://hazardwatch-test.supabase.co")
os.environ.setdefault("SECRET_API_KEY", "service-role-test-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("REALTIME_BACKEND", "memory")

import pytest
from fastapi.testclient import TestClient

from hazardwatch.core.config import Settings, get_settings
from hazardwatch.core.dependencies import get_relay
from hazardwatch.core.supabase_client import get_supabase
from hazardwatch.main import app as fastapi_app
from hazardwatch.realtime.relay import InMemoryRelay

from fakes import JWT_SECRET, SUPABASE_URL, FakeSupabase


@pytest.fixture
def settings():
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_key="service-role-test-key",
        jwt_secret=JWT_SECRET,
        sse_heartbeat_seconds=0.05,
    )


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def relay():
    return InMemoryRelay()


@pytest.fixture
def app(db, relay, settings):
    fastapi_app.dependency_overrides[get_supabase] = lambda: db
    fastapi_app.dependency_overrides[get_relay] = lambda: relay
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)
