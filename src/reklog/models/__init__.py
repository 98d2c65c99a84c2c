"""
Pydantic data models package.

Contains the log record sent to the collector.
"""

from .log_record import LogRecord

__all__ = [
    "LogRecord",
]
