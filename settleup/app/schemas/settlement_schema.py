"""
schemas/settlement_schema.py — Marshmallow schema for settlement endpoints.

Validation responsibility:
  - This file: field types, decimal precision, which party ids must be
    present for the chosen variant.
  - services/settlement_service.py:
      - SELF_SETTLEMENT (422)           — needs the caller's user_id, which
                                          comes from flask.g in the route.
      - NON_POSITIVE_AMOUNT (422)       — repeated for non-HTTP callers.
      - PARTICIPANT_NOT_MEMBER (422)    — requires DB membership lookup.
      - SETTLEMENT_PENDING_EXISTS (409) — requires DB lookup.
      - GROUP_NOT_FOUND (404)           — requires DB lookup.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from settleup.app.errors import ErrorCode


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Same rule as expense_schema.py, kept local so each schema file stands
# alone in unit tests.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """Strictly positive, at most 2 decimal places. Never rounded."""
    if value <= Decimal("0"):
        raise ValidationError(ErrorCode.NON_POSITIVE_AMOUNT)

    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


_positive_id = validate.Range(min=1, error="User ids must be positive integers.")


# ── Schema ─────────────────────────────────────────────────────────────────

class CreateSettlementSchema(Schema):
    """
    POST /groups/:id/settlements

    Two variants share this schema:

      normal         mark_received absent/false. The payer (from_user_id)
                     defaults to the caller; to_user_id is required.
                     Only an admin may name a payer other than themselves.
      mark_received  mark_received=true. The caller is the recipient;
                     from_user_id is required. Created already confirmed.

    Party ids are left out of the loaded data when absent so the service
    can apply its defaults.
    """

    from_user_id = fields.Int(strict=True, validate=_positive_id)
    to_user_id = fields.Int(strict=True, validate=_positive_id)

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    note = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )

    mark_received = fields.Bool(load_default=False)

    @validates_schema
    def validate_parties(self, data: dict, **kwargs) -> None:
        if data.get("mark_received"):
            if data.get("from_user_id") is None:
                raise ValidationError(
                    {"from_user_id": ["Missing data for required field."]}
                )
        elif data.get("to_user_id") is None:
            raise ValidationError(
                {"to_user_id": ["Missing data for required field."]}
            )
