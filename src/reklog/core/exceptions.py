"""
Custom exceptions for the RekLog client.

Only MissingApiKeyError is ever raised into the host application. Every
other error is raised and absorbed inside the SDK and surfaces through
structured logging.
"""

from typing import Any, Dict, Optional


class RekLogException(Exception):
    """Base exception for the RekLog client."""

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class MissingApiKeyError(RekLogException):
    """Raised when a tracker is constructed without an API key."""

    def __init__(self, message: str = "RekLog: API key is required") -> None:
        super().__init__(
            message=message,
            error_code="missing_api_key",
        )


class UnknownSessionError(RekLogException):
    """Raised when a session id is unknown or was already consumed."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"No active session found for ID {session_id}",
            error_code="unknown_session",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class DeliveryError(RekLogException):
    """Raised when a single delivery attempt fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            error_code="delivery_error",
            details=details,
        )
        self.status_code = status_code


class DeliveryTimeoutError(DeliveryError):
    """Raised when a delivery attempt does not settle within the timeout."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(
            message=f"Delivery attempt timed out after {timeout_ms}ms",
            details={"timeout_ms": timeout_ms},
        )
        self.error_code = "delivery_timeout"


class DeliveryExhaustedError(RekLogException):
    """Terminal failure for one record once every retry attempt failed."""

    def __init__(self, attempts: int, last_error: Optional[str] = None) -> None:
        super().__init__(
            message=f"Failed to send log after {attempts} attempts: {last_error}",
            error_code="delivery_exhausted",
            details={"attempts": attempts, "last_error": last_error},
        )
        self.attempts = attempts
