"""
Structured logging for the pipeline scoring service.

JSON lines via structlog. Every line inside a batch run carries the run's
``run_id`` and ``run_type`` (bound through contextvars), so one daily pass
can be pulled out of the log stream even with many deals scored
concurrently.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

SERVICE_NAME = "pipeline-scoring"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "psycopg.pool", "uvicorn.access")


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structlog and the stdlib root logger it writes through."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_name,
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
        level=getattr(logging, log_level.upper()),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _add_service_name(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def batch_run_context(run_type: str) -> Iterator[str]:
    """Bind run_id/run_type to every log line emitted inside the block."""
    run_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, run_type=run_type):
        yield run_id


def log_batch_step(step: str, summary: dict[str, Any]) -> None:
    """One line per finished batch step; warning level when any item failed."""
    logger = get_logger("pipeline.batch")
    fields = {key: value for key, value in summary.items() if key != "errors"}
    fields["error_count"] = len(summary.get("errors", []))

    if summary.get("failed"):
        logger.warning("Batch step finished with failures", step=step, **fields)
    else:
        logger.info("Batch step finished", step=step, **fields)


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    logger = get_logger("http")
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    if status_code >= 400:
        logger.warning("HTTP request failed", **fields)
    else:
        logger.info("HTTP request completed", **fields)


def log_health_check(dependency: str, healthy: bool, latency_ms: float, error: str = None):
    logger = get_logger("health")
    fields = {"dependency": dependency, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    if healthy:
        logger.info("Health check passed", **fields)
    else:
        logger.error("Health check failed", **fields)
