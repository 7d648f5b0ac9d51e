"""
Structured logging setup for the inbox actions backend.
Provides JSON-formatted logs with consistent fields for worker monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_run_context,
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

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


def _add_run_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag entries emitted inside a pipeline run with the worker job name."""
    if "job_type" in event_dict and "job" not in event_dict:
        event_dict["job"] = event_dict["job_type"]
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


# Convenience functions for common log patterns
def log_pipeline_run(user_id: str, result: dict[str, Any], dry_run: bool = False):
    """Log one summary line per pipeline run with consistent fields."""
    logger = get_logger("pipeline")

    log_data = {
        "user_id": user_id,
        "dry_run": dry_run,
        "emails_fetched": result.get("emails_fetched", 0),
        "emails_processed": result.get("emails_processed", 0),
        "emails_skipped": result.get("emails_skipped", 0),
        "events_created": result.get("events_created", 0),
        "todos_created": result.get("todos_created", 0),
        "processing_time_ms": result.get("processing_time_ms", 0),
        "error_count": len(result.get("errors", [])),
    }

    if result.get("success"):
        logger.info("Pipeline run completed", **log_data)
    else:
        logger.warning("Pipeline run finished with failure", **log_data)
