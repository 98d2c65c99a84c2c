"""
Integration tests for delivery to a collector over HTTP.

Uses the aiohttp stub collector from conftest.
"""

import pytest

from reklog.config import Settings
from reklog.core.metrics import MetricsCollector
from reklog.core.tracker import Tracker

from conftest import TEST_API_KEY, CollectorStub


class TestCollectorDelivery:
    """Test records reach the collector in the wire format."""

    @pytest.mark.asyncio
    async def test_record_posted_with_headers(self, tracker: Tracker, collector: CollectorStub) -> None:
        session_id = tracker.start("/api/users", "GET")
        result = await tracker.end(
            session_id,
            status_code=200,
            response={"id": 1, "token": "t"},
            metadata={"region": "eu"},
        )

        assert result is not None and result.success
        assert len(collector.requests) == 1

        headers = collector.requests[0]["headers"]
        assert headers["X-API-Key"] == TEST_API_KEY
        assert headers["Content-Type"] == "application/json"

        record = collector.records[0]
        assert record["endpoint"] == "/api/users"
        assert record["method"] == "GET"
        assert record["statusCode"] == 200
        assert record["environment"] == "test"
        assert record["host"] == "test-host"
        assert isinstance(record["responseTime"], int)
        assert record["responseTime"] >= 0
        assert record["response"] == {"id": 1, "token": "********"}
        assert record["metadata"] == {"region": "eu"}
        assert record["body"] is None
        assert record["params"] is None
        assert record["requestHeaders"] is None

    @pytest.mark.asyncio
    async def test_collector_errors_exhaust_retries(
        self,
        collector: CollectorStub,
        test_settings: Settings,
        metrics: MetricsCollector,
    ) -> None:
        """Test 3 attempts spaced at least 100ms and 200ms apart, then drop."""
        collector.default_status = 500
        async with Tracker(
            settings=test_settings,
            metrics=metrics,
            api_url=collector.base_url,
            retry_attempts=3,
            retry_delay=100,
        ) as tracker:
            result = await tracker.end(tracker.start("/api/orders", "POST"))

        assert result is not None
        assert result.success is False
        assert result.status_code == 500
        assert len(collector.requests) == 3

        first, second, third = (request["received_at"] for request in collector.requests)
        assert second - first >= 0.1
        assert third - second >= 0.2

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self, tracker: Tracker, collector: CollectorStub) -> None:
        collector.statuses = [503]

        result = await tracker.end(tracker.start("/retry"))

        assert result is not None
        assert result.success is True
        assert result.attempts == 2
        assert len(collector.requests) == 2
        assert collector.records[0] == collector.records[1]

    @pytest.mark.asyncio
    async def test_slow_collector_times_out(
        self,
        collector: CollectorStub,
        test_settings: Settings,
        metrics: MetricsCollector,
    ) -> None:
        collector.delay_seconds = 0.5
        async with Tracker(
            settings=test_settings,
            metrics=metrics,
            api_url=collector.base_url,
            retry_attempts=2,
            retry_delay=0,
            timeout=100,
        ) as tracker:
            result = await tracker.end(tracker.start("/slow"))

        assert result is not None
        assert result.success is False
        assert result.attempts == 2
        assert "timed out" in (result.error_message or "")

    @pytest.mark.asyncio
    async def test_unreachable_collector_not_raised(self, test_settings: Settings, metrics: MetricsCollector) -> None:
        async with Tracker(
            settings=test_settings,
            metrics=metrics,
            api_url="http://127.0.0.1:9/api",
            retry_attempts=2,
            retry_delay=0,
            timeout=1000,
        ) as tracker:
            result = await tracker.end(tracker.start("/unreachable"))

        assert result is not None
        assert result.success is False
