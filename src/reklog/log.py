"""
Structured logging setup.

The client logs through structlog. Applications that do not configure
structlog themselves can call configure_logging() once at startup, or set
REKLOG_CONFIGURE_LOGGING so the Tracker does it.
"""

import logging
from typing import Any, Callable, Dict

import structlog

RENDERERS: Dict[str, Callable[[], Any]] = {
    "console": structlog.dev.ConsoleRenderer,
    "json": structlog.processors.JSONRenderer,
}


def configure_logging(log_level: str = "INFO", renderer: str = "console") -> None:
    """
    Route client log events through stdlib logging.

    Args:
        log_level: stdlib level name, case-insensitive
        renderer: "console" for development output, "json" for one JSON
            object per line

    Raises:
        ValueError: if renderer is not a known name
    """
    try:
        render = RENDERERS[renderer.lower()]()
    except KeyError:
        raise ValueError(f"Unknown log renderer {renderer!r}, expected one of {sorted(RENDERERS)}") from None

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Delivery failures are reported by the pipeline itself
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if renderer.lower() == "json":
        processors.append(structlog.processors.format_exc_info)
    processors.append(render)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
