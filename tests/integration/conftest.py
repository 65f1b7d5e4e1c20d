"""Shared fixtures for integration tests.

These tests drive the real app through its lifespan: settings come from
the environment, the backend is picked at startup, no internal mocks.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from medishare.api.app import create_app


@pytest.fixture()
async def client(monkeypatch: pytest.MonkeyPatch) -> AsyncIterator[AsyncClient]:
    """Full ASGI client with the in-memory backend selected by lifespan."""
    monkeypatch.setenv("MEDISHARE_PG_DSN", "")
    monkeypatch.setenv("MEDISHARE_USE_IN_MEMORY_STORE", "true")
    monkeypatch.setenv("MEDISHARE_AUTH_ENABLED", "false")
    monkeypatch.setenv("MEDISHARE_LOG_JSON", "false")

    app = create_app()
    transport = ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
