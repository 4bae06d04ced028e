"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Registered at url_prefix=/api/v1 because it owns both the group-scoped
paths and the settlement-ID paths.

Endpoints:
  POST   /groups/:id/settlements           → 201  record a payment
                                                  (mark_received=true: the
                                                  recipient records it,
                                                  already confirmed)
  GET    /groups/:id/settlements           → 200  list settlements
  POST   /settlements/:id/confirm          → 200  recipient confirms
  POST   /settlements/:id/reject           → 200  recipient rejects
  DELETE /settlements/:id                  → 200  withdraw / correct
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from settleup.app.extensions import db
from settleup.app.middleware.auth_middleware import require_auth
from settleup.app.models.settlement import Settlement
from settleup.app.schemas.settlement_schema import CreateSettlementSchema
from settleup.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_settlement(s: Settlement) -> dict:
    """Converts a Settlement ORM object to a plain dict for JSON output."""
    return {
        "id": s.id,
        "group_id": s.group_id,
        "from_user_id": s.from_user_id,
        "to_user_id": s.to_user_id,
        "amount": str(s.amount),
        "note": s.note,
        "status": s.status.value,
        "confirmed_by_recipient": s.confirmed_by_recipient,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "confirmed_at": s.confirmed_at.isoformat() if s.confirmed_at else None,
    }


# ── Group-scoped routes ────────────────────────────────────────────────────

@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["POST"])
@require_auth
def create_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a payment between two members.

    Only confirmed settlements move balances; a normal create stays
    pending until the recipient confirms it.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement = settlement_service.create_settlement(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_settlement(settlement), "warnings": []}), 201


@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["GET"])
@require_auth
def list_settlements(group_id: int):
    """GET /groups/:id/settlements — Admins see all; others their own."""
    settlements = settlement_service.list_settlements(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200


# ── Settlement-ID routes ───────────────────────────────────────────────────

@settlements_bp.route("/settlements/<int:settlement_id>/confirm", methods=["POST"])
@require_auth
def confirm_settlement(settlement_id: int):
    settlement = settlement_service.confirm_settlement(
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_settlement(settlement), "warnings": []}), 200


@settlements_bp.route("/settlements/<int:settlement_id>/reject", methods=["POST"])
@require_auth
def reject_settlement(settlement_id: int):
    """POST /settlements/:id/reject — The pending record is removed."""
    settlement_service.reject_settlement(
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"rejected": True, "settlement_id": settlement_id},
        "warnings": [],
    }), 200


@settlements_bp.route("/settlements/<int:settlement_id>", methods=["DELETE"])
@require_auth
def delete_settlement(settlement_id: int):
    settlement_service.delete_settlement(
        settlement_id=settlement_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"deleted": True, "settlement_id": settlement_id},
        "warnings": [],
    }), 200
