"""
Shared pytest fixtures.

The app is driven through FastAPI's TestClient. Storage is the in-memory
mock, and the upstream API is faked with httpx.MockTransport, so no test
touches the network.
"""

from typing import Callable, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from upload_router.api.dependencies import get_storage_client, get_upstream_client
from upload_router.config.settings import Settings
from upload_router.infrastructure.storage.client import MockStorageClient
from upload_router.infrastructure.upstream.client import UpstreamApiClient
from upload_router.main import create_app

API_BASE = "http://api.test/rest/v2.0"
DESTINATION_URL = "https://dest.test/obj?X-Amz-Signature=abc"


class FakeUpstream:
    """
    Stand-in for the upstream API and the part destination.

    Answers GET with a part descriptor, PUT with an ETag, and PATCH with
    200 unless a test replaces one of the responses. Every request is
    recorded, body included.
    """

    destination_url = DESTINATION_URL

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.error: Optional[Exception] = None
        self.responses: dict[str, Callable[[], httpx.Response]] = {
            "GET": lambda: httpx.Response(
                200,
                json={
                    "id": "p1",
                    "url": DESTINATION_URL,
                    "headers": {
                        "content-type": "application/octet-stream",
                        "Content-MD5": "1B2M2Y8AsgTpgAmY7PhCfg==",
                    },
                },
            ),
            "PUT": lambda: httpx.Response(200, headers={"etag": "xyz"}),
            "PATCH": lambda: httpx.Response(200, json={}),
        }

    def respond(self, method: str, response: httpx.Response) -> None:
        self.responses[method] = lambda: response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.responses[request.method]()

    @property
    def methods(self) -> list[str]:
        return [r.method for r in self.requests]

    def request_for(self, method: str) -> httpx.Request:
        return next(r for r in self.requests if r.method == method)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        r2_mock_mode=True,
        upstream_api_base_url=API_BASE,
        upstream_company_id="8",
        upstream_project_id="9",
        log_level="WARNING",
    )


@pytest.fixture
def storage() -> MockStorageClient:
    return MockStorageClient()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_client(storage: MockStorageClient, upstream: FakeUpstream):
    """Build a TestClient for the given settings, wired to the fakes."""

    def _make(settings: Settings) -> TestClient:
        app = create_app(settings)
        app.dependency_overrides[get_storage_client] = lambda: storage
        app.dependency_overrides[get_upstream_client] = lambda: UpstreamApiClient(
            settings.upstream_config(),
            transport=httpx.MockTransport(upstream),
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client, settings: Settings) -> TestClient:
    return make_client(settings)
