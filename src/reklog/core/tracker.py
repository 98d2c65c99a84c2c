"""
Tracker: the start/end lifecycle for manually instrumented requests.

Ties together the session registry, the masking engine and the delivery
pipeline. One Tracker per collector API key.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Type

import aiohttp
import structlog
from pydantic import ValidationError

from ..config import DeliverySettings, MiddlewareSettings, Settings, get_settings
from ..log import configure_logging
from ..models.log_record import LogRecord
from .delivery import DeliveryPipeline, DeliveryResult
from .exceptions import MissingApiKeyError, UnknownSessionError
from .masking import MaskRuleSet, build_rule_set, mask
from .metrics import MetricsCollector, get_metrics_collector
from .registry import SessionRegistry, monotonic_ns

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TrackerConfig:
    """Immutable per-tracker configuration."""
    api_key: str
    environment: str
    host: Optional[str]
    debug: bool
    mask_rules: MaskRuleSet
    delivery: DeliverySettings
    middleware: MiddlewareSettings

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        environment: Optional[str] = None,
        host: Optional[str] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[int] = None,
        timeout: Optional[int] = None,
        debug: Optional[bool] = None,
        mask_fields: Optional[Iterable[str]] = None,
    ) -> "TrackerConfig":
        """
        Merge constructor overrides onto loaded settings.

        retry_delay and timeout are in milliseconds.

        Raises:
            MissingApiKeyError: if no non-empty API key is available
        """
        key = api_key if api_key is not None else settings.api_key
        if not key:
            raise MissingApiKeyError()

        delivery_overrides: Dict[str, Any] = {}
        if api_url is not None:
            delivery_overrides["api_url"] = api_url
        if retry_attempts is not None:
            delivery_overrides["retry_attempts"] = retry_attempts
        if retry_delay is not None:
            delivery_overrides["retry_delay_ms"] = retry_delay
        if timeout is not None:
            delivery_overrides["timeout_ms"] = timeout

        delivery = settings.delivery
        if delivery_overrides:
            delivery = DeliverySettings(**{**settings.delivery.model_dump(), **delivery_overrides})

        extra_keys = list(settings.masking.extra_keys)
        if mask_fields:
            extra_keys.extend(mask_fields)

        return cls(
            api_key=key,
            environment=environment or settings.environment,
            host=host if host is not None else settings.host,
            debug=settings.debug if debug is None else debug,
            mask_rules=build_rule_set(settings.masking.baseline_keys, extra_keys),
            delivery=delivery,
            middleware=settings.middleware,
        )


class Tracker:
    """
    Tracks request timing and ships one log record per request.

    Usage:
        tracker = Tracker("api-key")
        session_id = tracker.start("/api/users", "GET")
        ...
        await tracker.end(session_id, status_code=200, response={"id": 1})
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
        session: Optional[aiohttp.ClientSession] = None,
        **options: Any,
    ) -> None:
        settings = settings or get_settings()
        self.config = TrackerConfig.from_settings(settings, api_key=api_key, **options)

        if settings.configure_logging:
            configure_logging(
                "DEBUG" if self.config.debug else settings.log_level,
                renderer=settings.log_renderer,
            )

        self.metrics = metrics or get_metrics_collector()
        self.registry = SessionRegistry()
        self.pipeline = DeliveryPipeline(
            self.config.delivery,
            api_key=self.config.api_key,
            debug=self.config.debug,
            metrics=self.metrics,
            session=session,
        )

        logger.debug(
            "Tracker initialized",
            environment=self.config.environment,
            host=self.config.host,
            mask_keys=len(self.config.mask_rules),
            **self.pipeline.describe(),
        )

    @property
    def active_sessions(self) -> int:
        """Number of sessions started and not yet ended."""
        return len(self.registry)

    def start(self, endpoint: str, method: str = "GET") -> str:
        """
        Start tracking a request.

        Args:
            endpoint: The endpoint being called
            method: HTTP method (GET, POST, etc.)

        Returns:
            Session id to pass to end()
        """
        session_id = self.registry.start(endpoint, method)
        self.metrics.record_session_started()
        return session_id

    async def end(
        self,
        session_id: str,
        *,
        status_code: Optional[int] = None,
        environment: Optional[str] = None,
        body: Any = None,
        params: Any = None,
        request_headers: Any = None,
        response: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[DeliveryResult]:
        """
        End tracking a request and send its log record.

        Waits for delivery, including retries. Returns None when
        session_id matches no active session or when the arguments do not
        form a valid record.
        """
        try:
            session = self.registry.consume(session_id)
        except UnknownSessionError as e:
            logger.warning(f"RekLog: {e}", session_id=session_id)
            self.metrics.record_unknown_session()
            return None

        response_time_ms = session.elapsed_ms(monotonic_ns())
        self.metrics.record_session_ended(session.method, response_time_ms)

        if self.config.debug:
            logger.info(
                "RekLog.end() options",
                session_id=session_id,
                status_code=status_code,
                environment=environment,
                has_body=body is not None,
                has_response=response is not None,
            )

        try:
            record = self.build_record(
                endpoint=session.endpoint,
                method=session.method,
                response_time_ms=response_time_ms,
                status_code=status_code,
                environment=environment,
                body=body,
                params=params,
                request_headers=request_headers,
                response=response,
                metadata=metadata,
            )
        except ValidationError as e:
            logger.error(
                "Failed to build log record",
                session_id=session_id,
                endpoint=session.endpoint,
                error_count=e.error_count(),
                error=str(e),
            )
            self.metrics.record_dropped()
            return None

        return await self.pipeline.deliver(record)

    def build_record(
        self,
        endpoint: str,
        method: str,
        response_time_ms: int,
        status_code: Optional[int] = None,
        environment: Optional[str] = None,
        body: Any = None,
        params: Any = None,
        request_headers: Any = None,
        response: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LogRecord:
        """Build a log record, masking every payload field."""
        rules = self.config.mask_rules

        return LogRecord(
            endpoint=endpoint,
            method=method.upper(),
            response_time_ms=max(0, response_time_ms),
            status_code=200 if status_code is None else status_code,
            environment=environment or self.config.environment,
            host=self.config.host,
            body=mask(body, rules),
            params=mask(params, rules),
            request_headers=mask(request_headers, rules),
            response=mask(response, rules),
            metadata=metadata if metadata is not None else {},
        )

    def instrument(self, app: Any, middleware_class: Optional[Type[Any]] = None) -> None:
        """
        Register request tracking middleware on a Starlette or FastAPI app.
        """
        if middleware_class is None:
            from ..middleware import RekLogMiddleware
            middleware_class = RekLogMiddleware

        app.add_middleware(middleware_class, tracker=self)
        logger.debug("Middleware installed", app=type(app).__name__)

    async def flush(self) -> None:
        """Wait for background deliveries started by the middleware."""
        await self.pipeline.flush()

    async def aclose(self) -> None:
        """Flush pending deliveries and release the HTTP session."""
        await self.pipeline.close()

    async def __aenter__(self) -> "Tracker":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def init(api_key: Optional[str] = None, **options: Any) -> Tracker:
    """
    Initialize a tracker with an API key.

    Args:
        api_key: Collector API key; falls back to REKLOG_API_KEY
        **options: api_url, environment, host, retry_attempts,
            retry_delay, timeout, debug, mask_fields, settings

    Returns:
        Tracker instance
    """
    return Tracker(api_key, **options)
