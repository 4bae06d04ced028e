"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the SettleUp API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).

Taxonomy (one subclass per failure family, each with a fixed HTTP status):
  ValidationError      422  malformed input the schema could not catch
                            (self-settlement, non-member party, split sum)
  AuthorizationError   403  caller lacks the role required for the action
  ConflictError        409  state-machine precondition violated
  NotFoundError        404  referenced group/settlement/expense/user absent
  AuthenticationError  401  missing, malformed or expired credentials

None of these are retried by the service layer.
"""

from __future__ import annotations


class AppError(Exception):

    http_status: int = 500

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int | None = None,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        if http_status is not None:
            self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class ValidationError(AppError):
    http_status = 422


class AuthorizationError(AppError):
    http_status = 403


class ConflictError(AppError):
    http_status = 409


class NotFoundError(AppError):
    http_status = 404


class AuthenticationError(AppError):
    http_status = 401


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_CATEGORY           = "INVALID_CATEGORY"
    INVALID_SPLIT_MODE         = "INVALID_SPLIT_MODE"
    SPLITS_SENT_FOR_EQUAL_MODE = "SPLITS_SENT_FOR_EQUAL_MODE"
    DUPLICATE_SPLIT_PARTICIPANT = "DUPLICATE_SPLIT_PARTICIPANT"
    AMBIGUOUS_PARTICIPANT      = "AMBIGUOUS_PARTICIPANT"
    INVALID_PHONE              = "INVALID_PHONE"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    NON_POSITIVE_AMOUNT        = "NON_POSITIVE_AMOUNT"
    EXPENSE_DELETED            = "EXPENSE_DELETED"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_PHONE            = "DUPLICATE_PHONE"
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    ALREADY_PENDING_MEMBER     = "ALREADY_PENDING_MEMBER"
    SETTLEMENT_PENDING_EXISTS  = "SETTLEMENT_PENDING_EXISTS"
    SETTLEMENT_ALREADY_CONFIRMED = "SETTLEMENT_ALREADY_CONFIRMED"
    OUTSTANDING_BALANCE        = "OUTSTANDING_BALANCE"
    ALREADY_ADMIN              = "ALREADY_ADMIN"
    CANNOT_REMOVE_CREATOR      = "CANNOT_REMOVE_CREATOR"
    MEMBER_HAS_EXPENSES        = "MEMBER_HAS_EXPENSES"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    MEMBER_NOT_FOUND           = "MEMBER_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SETTLEMENT_NOT_FOUND       = "SETTLEMENT_NOT_FOUND"
    NOTIFICATION_NOT_FOUND     = "NOTIFICATION_NOT_FOUND"
    ROUTE_NOT_FOUND            = "ROUTE_NOT_FOUND"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    HTTP_ERROR                 = "HTTP_ERROR"             # other 4xx from werkzeug
    INTERNAL_ERROR             = "INTERNAL_ERROR"
