"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

import adoflow.server as server_module
from adoflow.executor import TransitionExecutor
from adoflow.server import create_app


async def _client_for(executor: TransitionExecutor) -> AsyncIterator[AsyncClient]:
    server_module._executor = executor
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    server_module._executor = None


@pytest.fixture
async def client(executor: TransitionExecutor) -> AsyncIterator[AsyncClient]:
    """Test client backed by the local agile provider."""
    async for c in _client_for(executor):
        yield c


@pytest.fixture
async def scripted_client(scripted_executor: TransitionExecutor) -> AsyncIterator[AsyncClient]:
    """Test client backed by the scripted provider."""
    async for c in _client_for(scripted_executor):
        yield c
