"""
Async delivery of log records to the RekLog collector.

Features:
- One POST per record to {api_url}/logs
- Per-attempt timeout
- Retry logic with linear backoff (base delay x attempt number)
- Fire-and-forget dispatch for the middleware path
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

import aiohttp
import structlog

from ..config import DeliverySettings
from ..models.log_record import LogRecord
from .exceptions import DeliveryError, DeliveryExhaustedError, DeliveryTimeoutError
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryResult:
    """Result of delivering one record."""
    success: bool
    attempts: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None


class DeliveryPipeline:
    """
    Sends finished log records to the collector.

    Handles:
    - Wire encoding
    - Per-attempt timeout
    - Retry logic
    - Background dispatch bookkeeping

    Records are dropped once the retry ceiling is reached. No failure is
    ever raised to the caller.
    """

    def __init__(
        self,
        settings: DeliverySettings,
        api_key: str,
        debug: bool = False,
        metrics: Optional[MetricsCollector] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.settings = settings
        self.debug = debug
        self.metrics = metrics
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._pending: Set["asyncio.Task[DeliveryResult]"] = set()

        logger.debug(
            "Delivery pipeline initialized",
            logs_url=settings.logs_url,
            retry_attempts=settings.retry_attempts,
            retry_delay_ms=settings.retry_delay_ms,
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-API-Key": self._api_key,
            "Content-Type": "application/json",
        }

    @property
    def pending(self) -> int:
        """Number of background deliveries still running."""
        return len(self._pending)

    def encode(self, record: LogRecord) -> str:
        """
        Serialize a record to the JSON wire format.

        Values JSON cannot represent natively are encoded with str().
        """
        wire = record.to_wire()
        if self.debug:
            logger.info("RekLog sending", record=wire)
        return json.dumps(wire, default=str)

    async def deliver(self, record: LogRecord) -> DeliveryResult:
        """Deliver a record, retrying until success or the ceiling."""
        try:
            payload = self.encode(record)
        except (TypeError, ValueError, RecursionError) as e:
            logger.error("Failed to encode log record", endpoint=record.endpoint, error=str(e))
            return DeliveryResult(success=False, attempts=0, error_message=str(e))

        return await self._deliver_payload(payload)

    def dispatch(self, record: LogRecord) -> Optional["asyncio.Task[DeliveryResult]"]:
        """
        Deliver a record in the background without waiting for it.

        The record is encoded before this returns. Failures of the
        background task are reported only through logging.
        """
        try:
            payload = self.encode(record)
        except (TypeError, ValueError, RecursionError) as e:
            logger.error("Failed to encode log record", endpoint=record.endpoint, error=str(e))
            return None

        task = asyncio.get_running_loop().create_task(self._deliver_payload(payload))
        self._pending.add(task)
        task.add_done_callback(self._on_dispatch_done)
        return task

    def _on_dispatch_done(self, task: "asyncio.Task[DeliveryResult]") -> None:
        self._pending.discard(task)

        if task.cancelled():
            logger.warning("Background delivery cancelled")
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "RekLog middleware error",
                error=str(error),
                error_type=type(error).__name__,
            )

    async def flush(self) -> None:
        """Wait for every pending background delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Flush pending deliveries and close the owned HTTP session."""
        await self.flush()

        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _deliver_payload(self, payload: str) -> DeliveryResult:
        max_attempts = self.settings.retry_attempts
        last_error: Optional[DeliveryError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                status = await self._attempt(payload)
            except DeliveryError as e:
                last_error = e
                self._record_attempt("timeout" if isinstance(e, DeliveryTimeoutError) else "error")

                if attempt < max_attempts:
                    logger.warning(
                        f"RekLog: Failed to send log (attempt {attempt}/{max_attempts}). Retrying...",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(e),
                    )
                    # Linear backoff
                    await asyncio.sleep(self.settings.retry_delay_ms * attempt / 1000)
                continue

            self._record_attempt("success")
            if self.metrics:
                self.metrics.record_delivered()
            if self.debug:
                logger.info("RekLog sent successfully", attempt=attempt, status=status)

            return DeliveryResult(success=True, attempts=attempt, status_code=status)

        exhausted = DeliveryExhaustedError(max_attempts, str(last_error) if last_error else None)
        logger.error(
            str(exhausted),
            attempts=max_attempts,
            status=last_error.status_code if last_error else None,
        )
        if self.metrics:
            self.metrics.record_dropped()

        return DeliveryResult(
            success=False,
            attempts=max_attempts,
            status_code=last_error.status_code if last_error else None,
            error_message=str(last_error) if last_error else None,
        )

    async def _attempt(self, payload: str) -> int:
        """
        Run one delivery attempt.

        Raises:
            DeliveryTimeoutError: if the attempt did not settle in time
            DeliveryError: on transport errors or a non-2xx status
        """
        try:
            status = await asyncio.wait_for(
                self._post(payload),
                timeout=self.settings.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise DeliveryTimeoutError(self.settings.timeout_ms) from e
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

        if not 200 <= status < 300:
            raise DeliveryError(f"Collector returned status {status}", status_code=status)

        return status

    async def _post(self, payload: str) -> int:
        """POST the payload and return the collector's HTTP status."""
        session = self._get_session()

        async with session.post(
            self.settings.logs_url,
            data=payload,
            headers=self.headers,
        ) as response:
            if response.status >= 300:
                error_text = await response.text()
                logger.debug(
                    "Collector returned error",
                    status=response.status,
                    error=error_text[:512],
                )
            return response.status

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_ms / 1000)
            )
            self._owns_session = True
        return self._session

    def _record_attempt(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_attempt(outcome)

    def describe(self) -> Dict[str, Any]:
        """Delivery settings with the API key reduced to a prefix."""
        return {
            "logs_url": self.settings.logs_url,
            "api_key": self._api_key[:8] + "...",
            "timeout_ms": self.settings.timeout_ms,
            "retry_attempts": self.settings.retry_attempts,
            "retry_delay_ms": self.settings.retry_delay_ms,
        }
