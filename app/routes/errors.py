"""
Translation of service-layer errors into HTTP responses.

Services raise CollaborationServiceError subclasses carrying a status code;
routes convert them here so every endpoint logs and renders them alike.
"""

from fastapi import HTTPException

from app.infrastructure.observability.logging import get_logger
from app.services.errors import CollaborationServiceError

logger = get_logger(__name__)


def http_error(error: CollaborationServiceError, operation: str, **context) -> HTTPException:
    log = logger.error if error.status_code >= 500 else logger.warning
    log(
        "Collaboration operation rejected",
        operation=operation,
        status_code=error.status_code,
        error=error.message,
        error_type=type(error).__name__,
        collaboration_id=error.collaboration_id,
        **context,
    )
    return HTTPException(status_code=error.status_code, detail=error.message)
