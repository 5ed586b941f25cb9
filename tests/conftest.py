"""Shared test fixtures."""

from __future__ import annotations

import random
from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from btcsim.config import Settings, get_settings
from btcsim.main import create_app


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def randbytes() -> Callable[[int], bytes]:
    """Deterministic byte source; 32-byte draws are valid secp256k1 secrets."""
    return random.Random(42).randbytes


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against a fresh app (fresh registry and rate limiter)."""
    get_settings.cache_clear()
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
