"""Authentication helpers for Supabase-issued access tokens.

Supabase signs user access tokens with the project's JWT secret (HS256)
and sets ``aud`` to ``authenticated``. The user id is the ``sub`` claim.
Set ``SUPABASE_JWT_SECRET`` (and optionally ``SUPABASE_JWT_AUDIENCE``) in
the environment. For local development ``DEV_AUTH_BYPASS=true`` skips
verification and authenticates every request as ``DEV_USER_ID``.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import Request
from jose import JWTError, jwt

from expense_api.core.config import settings
from expense_api.core.observability import sentry_set_tags
from expense_api.models.enums import ErrorCode
from expense_api.services.errors import PipelineError

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]


def _unauthorized(message: str) -> PipelineError:
    return PipelineError(ErrorCode.UNAUTHORIZED, message)


def decode_supabase_jwt(token: str, secret: Optional[str] = None, audience: Optional[str] = None) -> Dict:
    """Verify a Supabase access token and return its claims.

    Raises:
        PipelineError: ``UNAUTHORIZED`` if the token is malformed, expired,
            signed with another key or lacks a subject.
    """
    secret = secret or settings.SUPABASE_JWT_SECRET
    if not secret:
        raise RuntimeError("SUPABASE_JWT_SECRET is not configured")
    audience = audience if audience is not None else settings.SUPABASE_JWT_AUDIENCE
    options = {"verify_aud": bool(audience)}
    try:
        payload = jwt.decode(token, secret, algorithms=JWT_ALGORITHMS, audience=audience or None, options=options)
    except JWTError as exc:
        logger.info("[auth] token rejected: %s", exc)
        raise _unauthorized("Invalid or expired token") from exc
    if not payload.get("sub"):
        raise _unauthorized("Token has no subject")
    return payload


def get_current_user_id(request: Request) -> str:
    """FastAPI dependency returning the authenticated user's id."""
    if settings.DEV_AUTH_BYPASS:
        return settings.DEV_USER_ID
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise _unauthorized("Missing bearer token")
    token = auth_header.split(" ", 1)[1].strip()
    user_id = str(decode_supabase_jwt(token)["sub"])
    sentry_set_tags({"user_id": user_id})
    return user_id
