"""
RekLog - HTTP request telemetry client

Times inbound and outbound HTTP requests, masks sensitive fields and ships
one structured log record per request to the RekLog collector.
"""

__version__ = "0.1.0"

from .core.exceptions import MissingApiKeyError, RekLogException
from .core.tracker import Tracker, init
from .log import configure_logging
from .middleware import RekLogMiddleware

__all__ = [
    "MissingApiKeyError",
    "RekLogException",
    "RekLogMiddleware",
    "Tracker",
    "configure_logging",
    "init",
]
