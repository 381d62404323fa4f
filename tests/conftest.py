"""
tests/conftest.py -- Shared test fixtures for trustgate.

This module provides:
  - settings: fast, deterministic Settings (bcrypt cost 4, no timing floors)
  - store / service: an isolated MemoryStore and the AuthService built on it
  - context / other_device_context: RequestContext values for two devices
  - registration_form(): honeypot fields that pass the timing check
  - api_client: TestClient with a patched lifespan wiring an isolated store

The DEBUG env var must be set before any api/core import so the module-level
get_settings() call in api/main.py auto-generates SECRET_KEY in dev mode
rather than raising ValueError.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import DeviceInfo, RequestContext
from auth.service import AuthService
from core.config import Settings
from store.memory import MemoryStore

TEST_SECRET_KEY = "test-secret-key-" + "x" * 48
ADMIN_KEY = "test-admin-key"

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0"

DEVICE = {
    "screen_resolution": "1920x1080",
    "timezone": "Europe/Lisbon",
    "canvas": "canvas-hash-1",
    "webgl": "webgl-hash-1",
    "audio": "audio-hash-1",
    "plugins": ["PDF Viewer"],
    "hardware_concurrency": 8,
    "device_memory": 8,
    "color_depth": 24,
}
OTHER_DEVICE = {**DEVICE, "screen_resolution": "2560x1440", "canvas": "canvas-hash-2"}


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET_KEY,
        "bcrypt_rounds": 4,
        "min_login_duration_ms": 0,
        "min_renew_duration_ms": 0,
        "admin_api_key": ADMIN_KEY,
    }
    values.update(overrides)
    return Settings(**values)


def registration_form(age_ms: int = 5000) -> dict:
    """Honeypot fields as a human-filled form would submit them."""
    return {
        "confirm_email": "",
        "website": "",
        "phone_number": "",
        "form_timestamp": int(time.time() * 1000) - age_ms,
    }


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def service(settings: Settings, store: MemoryStore) -> AuthService:
    return AuthService.from_settings(settings, store)


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(
        ip="203.0.113.10",
        user_agent=CHROME_UA,
        accept_language="en-US,en;q=0.9",
        accept_encoding="gzip, deflate, br",
        accept="application/json",
        device=DeviceInfo(**DEVICE),
    )


@pytest.fixture
def other_device_context() -> RequestContext:
    return RequestContext(
        ip="203.0.113.10",
        user_agent=FIREFOX_UA,
        accept_language="en-US,en;q=0.9",
        accept_encoding="gzip, deflate, br",
        accept="application/json",
        device=DeviceInfo(**OTHER_DEVICE),
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: MemoryStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated store and fast settings instead of the environment's.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.store = store
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(settings: Settings, store: MemoryStore, service: AuthService) -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by the real app and an isolated MemoryStore.

    The shared slowapi counters are reset so each test starts with a fresh
    per-IP login budget.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(settings, store, service)
    with TestClient(app, raise_server_exceptions=True, headers={"User-Agent": CHROME_UA}) as client:
        yield client
    limiter.reset()
