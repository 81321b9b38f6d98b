"""Test the routes for the root path both internally and externally."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from csiattacher.config import Config
from csiattacher.dependencies.context import context_dependency

from ..support.config import configure


@pytest.mark.asyncio
async def test_get_external_index(client: AsyncClient, config: Config) -> None:
    response = await client.get("/csi-attacher")
    assert response.status_code == 200
    data = response.json()
    metadata = data["metadata"]
    assert metadata["name"] == config.name
    assert isinstance(metadata["version"], str)
    assert isinstance(metadata["description"], str)


@pytest.mark.asyncio
async def test_get_internal_index(client: AsyncClient, config: Config) -> None:
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == config.name
    assert isinstance(data["version"], str)
    assert isinstance(data["description"], str)


@pytest.mark.asyncio
async def test_background(client: AsyncClient) -> None:
    context = await context_dependency()
    assert context.is_running

    # Reconfiguring restarts the background tasks with the new settings.
    config = await configure("minimal")
    context = await context_dependency()
    assert context.is_running
    assert context.config.name == config.name == "csi-attacher-test"
    response = await client.get("/")
    assert response.json()["name"] == "csi-attacher-test"
