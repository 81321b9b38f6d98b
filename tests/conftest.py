"""Test fixtures for csi-attacher tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.dependencies.http_client import http_client_dependency
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from csiattacher.config import Config
from csiattacher.factory import Factory
from csiattacher.main import create_app

from .support.config import configure
from .support.driver import MockDriver, register_mock_driver
from .support.kubernetes import MockAttacherKubernetesApi, patch_kubernetes


@pytest_asyncio.fixture
async def config() -> Config:
    """Construct default configuration for tests."""
    return await configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config,
    mock_kubernetes: MockAttacherKubernetesApi,
    mock_driver: MockDriver,
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    transport = ASGITransport(app=app)
    base_url = "https://example.com/"
    async with AsyncClient(transport=transport, base_url=base_url) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockAttacherKubernetesApi,
    mock_driver: MockDriver,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    async with Factory.standalone(config) as factory:
        yield factory
    await http_client_dependency.aclose()


@pytest.fixture
def mock_driver(config: Config, respx_mock: respx.Router) -> MockDriver:
    return register_mock_driver(respx_mock, str(config.driver.url))


@pytest.fixture
def mock_kubernetes() -> Iterator[MockAttacherKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    webhook = "https://slack.example.com/webhook"
    config.slack_webhook = SecretStr(webhook)
    yield mock_slack_webhook(webhook, respx_mock)
    config.slack_webhook = None
