"""
Structured logging for the interview inbox.

Everything goes out as one JSON object per line on stdout. Job runs bind a
tick_id through contextvars so all lines from a tick can be grouped.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

# HTTP clients log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "uvicorn.access")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog over stdlib logging with JSON rendering.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_job_context(**values: Any) -> None:
    """Attach fields (job, tick_id) to every line logged by the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_job_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str = None):
    """Log a readiness probe result with consistent fields."""
    logger = get_logger("health")
    fields = {"service": service, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    if healthy:
        logger.info("Readiness probe passed", **fields)
    else:
        logger.error("Readiness probe failed", **fields)


def log_tick_summary(metrics: dict[str, Any]) -> None:
    """Log the end-of-tick counters; escalates to warning when anything failed."""
    logger = get_logger("interview_poller.metrics")
    failed = (
        metrics.get("workflows_failed", 0)
        + metrics.get("message_errors", 0)
        + metrics.get("dispatch_failed", 0)
    )

    if failed:
        logger.warning("Interview poller tick finished with failures", **metrics)
    else:
        logger.info("Interview poller tick completed", **metrics)
