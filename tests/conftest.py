"""
Pytest configuration and shared fixtures.

Contains a stub collector served by aiohttp, test settings and tracker
fixtures shared by unit and integration tests.
"""

import asyncio
import time
from typing import Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from prometheus_client import CollectorRegistry

from reklog.config import Settings
from reklog.core.masking import MaskRuleSet
from reklog.core.metrics import MetricsCollector
from reklog.core.tracker import Tracker

TEST_API_KEY = "test_api_key_123456789abc"


class CollectorStub:
    """In-process stand-in for the RekLog collector."""

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.statuses: List[int] = []
        self.default_status = 201
        self.delay_seconds = 0.0
        self.base_url = ""

    async def handle_logs(self, request: web.Request) -> web.Response:
        self.requests.append({
            "headers": dict(request.headers),
            "json": await request.json(),
            "received_at": time.monotonic(),
        })
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        status = self.statuses.pop(0) if self.statuses else self.default_status
        return web.json_response({"accepted": status < 300}, status=status)

    @property
    def records(self) -> List[Dict[str, Any]]:
        return [request["json"] for request in self.requests]


@pytest_asyncio.fixture
async def collector() -> AsyncGenerator[CollectorStub, None]:
    """Stub collector listening on a local port under /api/logs."""
    stub = CollectorStub()
    app = web.Application()
    app.router.add_post("/api/logs", stub.handle_logs)

    server = TestServer(app)
    await server.start_server()
    stub.base_url = str(server.make_url("/api"))
    try:
        yield stub
    finally:
        await server.close()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector bound to an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a valid API key and test environment."""
    return Settings(api_key=TEST_API_KEY, environment="test")


@pytest.fixture
def mask_rules() -> MaskRuleSet:
    return MaskRuleSet(["password", "pin"])


@pytest_asyncio.fixture
async def tracker(
    collector: CollectorStub,
    test_settings: Settings,
    metrics: MetricsCollector,
) -> AsyncGenerator[Tracker, None]:
    """Tracker pointed at the stub collector with short retry delays."""
    tracker = Tracker(
        settings=test_settings,
        metrics=metrics,
        api_url=collector.base_url,
        retry_delay=10,
        host="test-host",
    )
    try:
        yield tracker
    finally:
        await tracker.aclose()


@pytest.fixture
def sensitive_payload() -> Dict[str, Any]:
    """Request body with sensitive data for masking tests."""
    return {
        "email": "a@b.com",
        "password": "x",
        "profile": {"pin": "1234"},
    }


@pytest.fixture
def nested_payload() -> Dict[str, Any]:
    """Payload with no sensitive keys."""
    return {
        "user": {"id": 42, "name": "Ada", "roles": ["admin", "dev"]},
        "items": [{"sku": "A-1", "qty": 2}, {"sku": "B-7", "qty": None}],
        "active": True,
        "score": 9.5,
    }
