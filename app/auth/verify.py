"""
verify.py
---------
Purpose:
    Bearer-token verification against the identity provider's JWKS.

Notes:
    - The provider signs ID tokens (RS256/ES256); keys are fetched and cached
      by PyJWKClient.
    - `auth_dependency` yields the verified claims; `sub` is the caller id.
    - `privileged_dependency` admits admins or the scheduler's shared secret.
"""

import hmac

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings
from app.db.document_store import DocumentStore, get_document_store
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_jwk_client = PyJWKClient(settings.AUTH_JWKS_URL, cache_keys=True)
_security = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=settings.AUTH_ALGORITHMS,
            audience=settings.AUTH_AUDIENCE,
            options={"verify_exp": True, "verify_aud": settings.AUTH_AUDIENCE is not None},
        )
    except Exception as e:
        raise _unauthorized(f"Invalid authentication token: {e}") from e

    if not decoded.get("sub"):
        raise _unauthorized("Invalid authentication token: missing subject")
    return decoded


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Unauthorized: No token provided")
    return credentials.credentials


def auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> dict:
    return verify_jwt(_bearer_token(credentials))


def is_cron_secret(token: str) -> bool:
    secret = settings.CRON_SECRET
    if not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


async def privileged_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
    store: DocumentStore = Depends(get_document_store),
) -> dict:
    """Admit the scheduled job (shared secret) or an admin user."""
    token = _bearer_token(credentials)

    if is_cron_secret(token):
        return {"sub": None, "privileged_via": "cron_secret"}

    # JWKS fetches are blocking HTTP calls
    claims = await run_in_threadpool(verify_jwt, token)
    user = await store.get("users", claims["sub"])
    if not user or user.get("role") != ADMIN_ROLE:
        logger.warning("Privileged access denied", user_id=claims["sub"])
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Admin access required"
        )

    return {**claims, "privileged_via": "admin"}


def ensure_caller(claims: dict, claimed_user_id: str | None) -> str:
    """
    Return the caller id, rejecting bodies that name a different acting user.

    Clients may echo their own id in the body (buyerId, userId, ...);
    the verified token is the only source of identity.
    """
    caller_id = claims["sub"]
    if claimed_user_id and claimed_user_id != caller_id:
        logger.warning(
            "Body user id does not match token subject",
            user_id=caller_id,
            claimed_user_id=claimed_user_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: user id mismatch"
        )
    return caller_id
