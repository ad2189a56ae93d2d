"""
structlog configuration shared by the API process and the worker.

Entries are rendered as one JSON object per line on stdout. Context bound
through ``structlog.contextvars`` (request ids, job names) is merged into
every entry.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

SERVICE_NAME = "uvocollab-backend"

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _tag_service(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _tag_service,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_transition(
    collaboration_id: str,
    from_status: str,
    to_status: str,
    action: str,
    actor_id: str | None = None,
) -> None:
    """One structured line per committed collaboration status change."""
    get_logger("collaboration.lifecycle").info(
        "Collaboration transition committed",
        event_type="collaboration_transition",
        collaboration_id=collaboration_id,
        transition=f"{from_status}->{to_status}",
        from_status=from_status,
        to_status=to_status,
        action=action,
        actor_id=actor_id,
    )
