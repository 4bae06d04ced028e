"""
middleware/auth_middleware.py — JWT bearer authentication.

@require_auth resolves the caller from "Authorization: Bearer <token>" and
stores the user id (int) on flask.g.user_id for the rest of the request.

Only authentication happens here (401). Whether the caller may act on a
group, expense or settlement is decided by the services (403), which get
the user id as a plain int argument and never see the token.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — not "Bearer <token>", bad signature, bad sub claim
  TOKEN_EXPIRED  (401) — exp claim is in the past
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

import jwt
from flask import current_app, g, request

from settleup.app.errors import AuthenticationError, ErrorCode

logger = logging.getLogger(__name__)


def require_auth(f: Callable) -> Callable:
    """
    Route decorator. Errors propagate to the global AppError handler.

    Usage:
        @settlements_bp.route("/settlements/<int:settlement_id>/confirm", methods=["POST"])
        @require_auth
        def confirm(settlement_id):
            caller_id = g.user_id
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise AuthenticationError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
        )

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token or " " in token.strip():
        raise AuthenticationError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
        )
    return token.strip()


def _authenticate_request() -> int:
    """
    Decodes the bearer token and returns the user id from its sub claim.

    Callable directly from tests inside a request context.
    """
    try:
        payload = jwt.decode(
            _bearer_token(),
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Log in again to obtain a new one.",
        )
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise AuthenticationError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
        )

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid user id.",
        )
