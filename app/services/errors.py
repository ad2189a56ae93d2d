"""
Domain error taxonomy shared by the matching and lifecycle services.
Routes translate these into HTTP responses using ``status_code``.
"""


class CollaborationServiceError(Exception):
    """Base exception for collaboration and matching operations."""

    status_code = 500

    def __init__(self, message: str, *, collaboration_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.collaboration_id = collaboration_id


class ValidationError(CollaborationServiceError):
    """Missing or malformed input."""

    status_code = 400


class StateConflictError(CollaborationServiceError):
    """Operation not permitted in the current state, or a concurrent write won."""

    status_code = 400


class AuthorizationError(CollaborationServiceError):
    """Caller is not entitled to perform the operation."""

    status_code = 403


class NotFoundError(CollaborationServiceError):
    status_code = 404


class DownstreamError(CollaborationServiceError):
    """Payment gateway or store failure; state was not advanced."""

    status_code = 500
