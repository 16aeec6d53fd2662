"""Fixtures for integration tests."""

from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager

import pytest
from aioresponses import aioresponses as aioresponses_cls

from testing_manager.atelier.client import AtelierClient, ClientFactory
from testing_manager.config import ServerSpec
from testing_manager.testing.factories import ServerSpecFactory


@pytest.fixture
def aioresponses() -> Generator[aioresponses_cls, None, None]:
    """Intercept aiohttp requests."""
    with aioresponses_cls() as mocked:
        yield mocked


@pytest.fixture
def server_spec() -> ServerSpec:
    """Create server connection details matching BASE_URL."""
    return ServerSpecFactory.build()


@pytest.fixture
async def client(
    server_spec: ServerSpec, aioresponses: aioresponses_cls
) -> AsyncGenerator[AtelierClient, None]:
    """Create client with managed session."""
    async with AtelierClient.from_spec(server_spec) as impl:
        yield impl


@pytest.fixture
def client_factory(client: AtelierClient) -> ClientFactory:
    """Create client factory that hands out the test client for any server."""

    @asynccontextmanager
    async def factory(spec: ServerSpec) -> AsyncGenerator[AtelierClient, None]:
        yield client

    return factory
