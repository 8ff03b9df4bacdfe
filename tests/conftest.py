"""
Shared pytest fixtures.

The provider is replaced by an httpx.MockTransport so no test touches the
network.
"""
import json
from typing import Callable, Iterable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from registry import build_default_registry
from upstream import UpstreamClient

TEST_API_KEY = "test-key"


def completion_body(content="Hello from the model", usage=None) -> dict:
    body = {
        "id": "gen-123",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }
    if usage is not None:
        body["usage"] = usage
    return body


def sse_frame(content: str) -> bytes:
    chunk = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n".encode("utf-8")


class ChunkedStream(httpx.AsyncByteStream):
    """Async response body delivered in exactly the given chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = list(chunks)
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


class FakeProvider:
    """Records every upstream request and answers with `responder`."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, json=completion_body())
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        OPENROUTER_API_KEY=TEST_API_KEY,
        ALLOWED_ORIGINS="http://localhost:3000,https://offgridtoolkit.ai",
        RATE_LIMIT_MAX_REQUESTS=100,
        STATIC_DIR="tests/no-such-static-dir",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_upstream(provider):
    def _make(app_settings: Settings) -> UpstreamClient:
        return UpstreamClient.from_settings(app_settings, transport=httpx.MockTransport(provider))
    return _make


@pytest.fixture
def make_client(test_settings, make_upstream):
    """Builds a TestClient; keyword arguments override settings fields."""
    def _make(**overrides) -> TestClient:
        app_settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        app = create_app(
            app_settings,
            registry=build_default_registry(),
            upstream_client=make_upstream(app_settings),
        )
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
