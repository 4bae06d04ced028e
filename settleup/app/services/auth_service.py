"""
services/auth_service.py — Authentication business logic.

Responsibilities:
  - User registration and credential validation
  - JWT access token creation (HS256)
  - Password hashing (bcrypt) and verification
  - Handing a new user's phone to the reconciler so that pending-member
    records created before sign-up become this user's

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes
  - current_app.config is used ONLY to read JWT settings, bcrypt rounds and
    the default phone country code. This service is integration-tested
    inside an app context.

Token design:
  - Access token: JWT, HS256, TTL from JWT_ACCESS_TOKEN_EXPIRES,
    sub = user_id (str). There is no refresh token; clients log in again.

Password storage:
  - Hashed with bcrypt (cost factor from config BCRYPT_LOG_ROUNDS, default 12)
  - Raw password is never stored, never logged
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from settleup.app.errors import (
    AuthenticationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from settleup.app.models.user import User
from settleup.app.services.reconcile_service import reconcile_pending_participant
from settleup.app.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _create_access_token(user_id: int) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub (user_id as str), iat, exp, jti.
    """
    now = datetime.now(timezone.utc)
    expiry = now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": expiry,
        # Guarantees each issued token is unique even if generated in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _country_code() -> str:
    return current_app.config.get("DEFAULT_PHONE_COUNTRY_CODE", "1")


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. No business logic."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        name: str,
        email: str,
        phone: str,
        password: str,
        session: Session,
) -> dict:
    """
    Creates a new user account, folds any pending-member records with the
    same phone into it, and issues an access token.

    Raises:
      ValidationError(INVALID_PHONE, 422)
      ConflictError(DUPLICATE_EMAIL, 409)
      ConflictError(DUPLICATE_PHONE, 409)

    Returns: {"user": {...}, "access_token": "...", "reconciled": {...}}
    """
    email = email.strip().lower()
    try:
        normalized_phone = normalize_phone(phone, _country_code())
    except ValueError as exc:
        raise ValidationError(ErrorCode.INVALID_PHONE, str(exc), field="phone")

    existing_email = session.execute(
        select(User.id).where(User.email == email)
    ).scalar_one_or_none()
    if existing_email is not None:
        raise ConflictError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            field="email",
        )

    existing_phone = session.execute(
        select(User.id).where(User.phone == normalized_phone)
    ).scalar_one_or_none()
    if existing_phone is not None:
        raise ConflictError(
            ErrorCode.DUPLICATE_PHONE,
            "This phone number is already registered.",
            field="phone",
        )

    user = User(
        name=name.strip(),
        email=email,
        phone=normalized_phone,
        password_hash=_hash_password(password),
    )
    session.add(user)
    session.flush()  # populate user.id before reconciliation

    reconciled = reconcile_pending_participant(
        normalized_phone,
        user.id,
        session,
        default_country_code=_country_code(),
    )

    logger.info("User %s registered", user.id)
    return {
        "user": _build_user_dict(user),
        "access_token": _create_access_token(user.id),
        "reconciled": reconciled,
    }


def login_user(
        identifier: str,
        password: str,
        session: Session,
) -> dict:
    """
    Validates credentials and issues a new access token.

    identifier is an email (contains "@") or a phone number in any common
    formatting.

    Raises:
      AuthenticationError(INVALID_CREDENTIALS, 401) — unknown identifier or
      wrong password. Same error for both to avoid account enumeration.

    Returns: {"user": {...}, "access_token": "..."}
    """
    identifier = identifier.strip()
    user = None
    if "@" in identifier:
        user = session.execute(
            select(User).where(User.email == identifier.lower())
        ).scalar_one_or_none()
    else:
        try:
            phone = normalize_phone(identifier, _country_code())
        except ValueError:
            phone = None
        if phone is not None:
            user = session.execute(
                select(User).where(User.phone == phone)
            ).scalar_one_or_none()

    # bcrypt.checkpw compares in constant time.
    if user is None or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AuthenticationError(
            ErrorCode.INVALID_CREDENTIALS,
            "The email/phone or password is incorrect.",
        )

    return {
        "user": _build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      NotFoundError(USER_NOT_FOUND, 404) — user_id from the JWT no longer
      exists in the DB.
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
        )
    return _build_user_dict(user)
