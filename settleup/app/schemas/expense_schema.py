"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - AMBIGUOUS_PARTICIPANT        (400) — split names both or neither ref
      - DUPLICATE_SPLIT_PARTICIPANT  (400) — same participant twice in splits
      - SPLITS_SENT_FOR_EQUAL_MODE   (400) — request shape rule
      - splits required for 'custom', items required for 'itemized'
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py:
      - SPLIT_SUM_MISMATCH (422)     — requires Decimal arithmetic
      - PAYER_NOT_MEMBER (422)       — requires DB membership lookup
      - PARTICIPANT_NOT_MEMBER (422) — requires DB membership lookup
      - EXPENSE_DELETED (422)        — requires DB record lookup
      - Edit permission (FORBIDDEN, 403)

The same schema serves create (POST) and full-field update (PUT).

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from settleup.app.errors import ErrorCode
from settleup.app.models.expense import Category, SplitMode


# ── Shared monetary amount validators ─────────────────────────────────────
#
# Input with more than 2 decimal places is REJECTED with
# INVALID_AMOUNT_PRECISION, never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_precision(value: Decimal) -> None:
    # Decimal("10.123").as_tuple().exponent == -3  → reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_monetary_amount(value: Decimal) -> None:
    """Strictly positive, at most 2 decimal places."""
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _validate_precision(value)


def _validate_share_amount(value: Decimal) -> None:
    """A split share may be zero; never negative."""
    if value < Decimal("0"):
        raise ValidationError("Split amount must not be negative.")
    _validate_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_positive_id = validate.Range(min=1, error="Ids must be positive integers.")


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitInputSchema(Schema):
    """
    One participant's share. Exactly one of user_id / pending_member_id.
    Membership is checked in expense_service.py.
    """

    user_id = fields.Int(load_default=None, strict=True, validate=_positive_id)
    pending_member_id = fields.Int(load_default=None, strict=True, validate=_positive_id)

    amount = fields.Decimal(
        required=True,
        validate=_validate_share_amount,
    )

    @validates_schema
    def validate_single_ref(self, data: dict, **kwargs) -> None:
        if (data.get("user_id") is None) == (data.get("pending_member_id") is None):
            raise ValidationError(
                {"user_id": [ErrorCode.AMBIGUOUS_PARTICIPANT]}
            )


# ── Sub-schema: one entry in the `items` array ────────────────────────────

class ItemInputSchema(Schema):
    """A line item and the participants who share it."""

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=100),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    user_ids = fields.List(
        fields.Int(strict=True, validate=_positive_id),
        load_default=list,
    )
    pending_member_ids = fields.List(
        fields.Int(strict=True, validate=_positive_id),
        load_default=list,
    )

    @validates_schema
    def validate_has_participants(self, data: dict, **kwargs) -> None:
        if not data.get("user_ids") and not data.get("pending_member_ids"):
            raise ValidationError(
                {"user_ids": ["Each item needs at least one participant."]}
            )


# ── Create / replace expense ───────────────────────────────────────────────

class ExpenseSchema(Schema):
    """
    POST /groups/:id/expenses and PUT /expenses/:id

    Split mode behaviour:
      - 'equal'    → client must NOT send splits; server splits among all
                     members (SPLITS_SENT_FOR_EQUAL_MODE otherwise).
      - 'custom'   → client MUST send splits.
      - 'itemized' → client MUST send items; splits are derived from them.

    The payer is paid_by_user_id OR paid_by_pending_id; both absent means
    the caller (create) or the current payer (update).
    """

    paid_by_user_id = fields.Int(load_default=None, strict=True, validate=_positive_id)
    paid_by_pending_id = fields.Int(load_default=None, strict=True, validate=_positive_id)

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Description must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    split_mode = fields.Enum(
        SplitMode,
        load_default=SplitMode.CUSTOM,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    category = fields.Enum(
        Category,
        load_default=Category.OTHER,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    expense_date = fields.Date(load_default=None)

    notes = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500),
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        load_default=None,
    )

    items = fields.List(
        fields.Nested(ItemInputSchema),
        load_default=None,
        validate=validate.Length(min=1, error="items must not be empty."),
    )

    @validates_schema
    def validate_payer(self, data: dict, **kwargs) -> None:
        if data.get("paid_by_user_id") is not None and data.get("paid_by_pending_id") is not None:
            raise ValidationError(
                {"paid_by_user_id": [ErrorCode.AMBIGUOUS_PARTICIPANT]}
            )

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        """
        1. SPLITS_SENT_FOR_EQUAL_MODE: splits with 'equal' or 'itemized'.
        2. splits required for 'custom'; items required for 'itemized'.
        3. DUPLICATE_SPLIT_PARTICIPANT: same participant twice in splits.
        """
        split_mode = data.get("split_mode", SplitMode.CUSTOM)
        splits = data.get("splits")
        items = data.get("items")

        if split_mode != SplitMode.CUSTOM and splits is not None:
            raise ValidationError({"splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_MODE]})

        if split_mode == SplitMode.ITEMIZED:
            if items is None:
                raise ValidationError(
                    {"items": ["items is required when split_mode is 'itemized'."]}
                )
            return

        if items is not None:
            raise ValidationError(
                {"items": ["items are only accepted when split_mode is 'itemized'."]}
            )

        if split_mode == SplitMode.CUSTOM:
            if splits is None:
                raise ValidationError(
                    {"splits": ["splits is required when split_mode is 'custom'."]}
                )

            refs = [(s.get("user_id"), s.get("pending_member_id")) for s in splits]
            if len(refs) != len(set(refs)):
                raise ValidationError({"splits": [ErrorCode.DUPLICATE_SPLIT_PARTICIPANT]})
