from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
from aiohttp.test_utils import TestClient, TestServer

from calendarsync_lite.api.server import create_app
from calendarsync_lite.core.dependencies import AppDependencies, DependencyContainer


@pytest.fixture
def upstream(cabin_rental_ics: str) -> dict[str, Any]:
    """Path -> (status, body) map served by the mocked upstream calendar hosts.

    Tests may add entries, or use an exception instance as the body to raise it.
    """
    return {"/cabin.ics": (200, cabin_rental_ics)}


@pytest.fixture
def upstream_requests() -> list[httpx.Request]:
    """Requests received by the mocked upstream, in order."""
    return []


@pytest.fixture
def deps(
    settings: dict[str, Any],
    mock_client: Any,
    upstream: dict[str, Any],
    upstream_requests: list[httpx.Request],
) -> AppDependencies:
    """Application dependencies whose outbound fetches hit ``upstream``."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)
        status, body = upstream.get(request.url.path, (404, "Not Found"))
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, text=body)

    return DependencyContainer.build_dependencies(settings, http_client=mock_client(handler))


@pytest.fixture
async def api_client(deps: AppDependencies) -> AsyncIterator[TestClient]:
    """aiohttp test client for the full application."""
    async with TestClient(TestServer(create_app(deps))) as client:
        yield client


@pytest.fixture
def admin_headers(settings: dict[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {settings['admin_token']}"}
