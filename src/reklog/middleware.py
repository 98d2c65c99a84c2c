"""
ASGI middleware for automatic request logging.

Wraps the ASGI send callable, the hook every response passes through on
its way to the client. Each message is forwarded unchanged; when the
final body message arrives a log record is built and dispatched in the
background so the response is never delayed by delivery.
"""

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import structlog
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .core.registry import monotonic_ns

if TYPE_CHECKING:
    from .core.tracker import Tracker

logger = structlog.get_logger(__name__)

CAPTURED_HEADERS = ("content-type", "user-agent", "accept")


def interpret_payload(data: Any) -> Any:
    """
    Best-effort conversion of a payload to structured data.

    JSON text (str or bytes) is parsed, mappings and lists pass through,
    anything else yields None.
    """
    if not data:
        return None

    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError:
            return None

    if isinstance(data, str):
        try:
            return json.loads(data)
        except ValueError:
            # Response not JSON, ignore
            return None

    if isinstance(data, (Mapping, list, tuple)):
        return data

    return None


class _BodyBuffer:
    """Copies body chunks up to a byte limit."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        self.chunks: List[bytes] = []
        self.size = 0
        self.truncated = False

    def add(self, chunk: bytes) -> None:
        if self.truncated or not chunk:
            return
        self.size += len(chunk)
        if self.size > self.max_bytes:
            self.truncated = True
            self.chunks = []
            return
        self.chunks.append(chunk)

    def payload(self) -> Any:
        if self.truncated:
            return None
        return interpret_payload(b"".join(self.chunks))


def _query_params(request: Request) -> Optional[Dict[str, Any]]:
    params: Dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        params[key] = values[0] if len(values) == 1 else values
    return params or None


class RekLogMiddleware:
    """
    Tracks every HTTP request handled by the wrapped application.

    Install with app.add_middleware(RekLogMiddleware, tracker=tracker) or
    tracker.instrument(app).
    """

    def __init__(self, app: ASGIApp, tracker: "Tracker") -> None:
        self.app = app
        self.tracker = tracker
        self.capture_max_bytes = tracker.config.middleware.capture_max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        path = scope["path"]
        session_id = self.tracker.start(path, method)
        start_time = monotonic_ns()

        request_body = _BodyBuffer(self.capture_max_bytes)
        response_body = _BodyBuffer(self.capture_max_bytes)
        status_holder: Dict[str, Optional[int]] = {"code": None}
        finalized = False

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                request_body.add(message.get("body", b""))
            return message

        async def send_wrapper(message: Message) -> None:
            nonlocal finalized
            if message["type"] == "http.response.start":
                status_holder["code"] = message.get("status")
            elif message["type"] == "http.response.body" and not finalized:
                response_body.add(message.get("body", b""))
                if not message.get("more_body", False):
                    finalized = True
                    self._finalize(
                        scope,
                        session_id,
                        start_time,
                        status_holder["code"],
                        request_body,
                        response_body,
                    )
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        finally:
            if not finalized and self.tracker.registry.discard(session_id):
                self.tracker.metrics.record_session_discarded()
                logger.debug(
                    "Request finished without a complete response",
                    endpoint=path,
                    method=method,
                )

    def _finalize(
        self,
        scope: Scope,
        session_id: str,
        start_time: int,
        status_code: Optional[int],
        request_body: _BodyBuffer,
        response_body: _BodyBuffer,
    ) -> None:
        """Build and dispatch the record for a completed response."""
        try:
            response_time_ms = max(0, (monotonic_ns() - start_time) // 1_000_000)
            request = Request(scope)
            method = request.method

            record = self.tracker.build_record(
                endpoint=scope["path"],
                method=method,
                response_time_ms=response_time_ms,
                status_code=status_code,
                body=request_body.payload(),
                params=_query_params(request),
                request_headers={name: request.headers.get(name) for name in CAPTURED_HEADERS},
                response=response_body.payload(),
                metadata={"routeParams": dict(scope.get("path_params") or {})},
            )

            self.tracker.pipeline.dispatch(record)
            self.tracker.metrics.record_session_ended(method, response_time_ms)
        except Exception as e:
            logger.error(
                "RekLog middleware error",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self.tracker.metrics.record_session_discarded()
        finally:
            self.tracker.registry.discard(session_id)
