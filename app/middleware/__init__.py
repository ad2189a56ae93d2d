from app.middleware.request_context import RequestContextMiddleware, client_address

__all__ = ["RequestContextMiddleware", "client_address"]
