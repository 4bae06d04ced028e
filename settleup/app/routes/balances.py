"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Parse query params, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances                   → 200  per-pair debts
  GET /groups/:id/balances?simplify=true     → 200  one net debt per pair
  GET /groups/:id/balances?view=all          → 200  whole group (admins only;
                                                    others still see only
                                                    their own debts)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from settleup.app.errors import ErrorCode, ValidationError
from settleup.app.extensions import db
from settleup.app.middleware.auth_middleware import require_auth
from settleup.app.services import balance_service

balances_bp = Blueprint("balances", __name__)

_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no", ""}


def _flag(name: str) -> bool:
    raw = request.args.get(name, "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValidationError(
        ErrorCode.INVALID_FIELD,
        f"'{raw}' is not a valid value for {name}; use true or false.",
        field=name,
    )


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    Membership is enforced inside balance_service.get_balance_response().
    Amounts are strings; balance_sum is "0.00" for consistent data.
    """
    view = request.args.get("view", "mine").strip().lower()
    if view not in ("mine", "all"):
        raise ValidationError(
            ErrorCode.INVALID_FIELD,
            "view must be 'mine' or 'all'.",
            field="view",
        )

    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        simplify=_flag("simplify"),
        view_all=view == "all",
    )
    return jsonify({"data": result, "warnings": []}), 200
