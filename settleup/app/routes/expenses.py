"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the group-scoped paths (/groups/:id/expenses) and the
expense-ID paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - _serialize_expense() is a pure data-shape helper — not business logic.

Endpoints:
  POST   /groups/:id/expenses   → 201  create expense
  GET    /groups/:id/expenses   → 200  list active expenses
  GET    /expenses/:id          → 200  get expense + splits + items
  PUT    /expenses/:id          → 200  full-field update
  DELETE /expenses/:id          → 200  soft-delete
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from settleup.app.extensions import db
from settleup.app.middleware.auth_middleware import require_auth
from settleup.app.models.expense import Expense
from settleup.app.schemas.expense_schema import ExpenseSchema
from settleup.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────
# Pure data-shaping — no logic. Amounts as strings.

def _ref(user_id: int | None, pending_member_id: int | None) -> dict:
    return {"user_id": user_id, "pending_member_id": pending_member_id}


def _payer_name(expense: Expense) -> str | None:
    if expense.payer is not None:
        return expense.payer.name
    if expense.pending_payer is not None:
        return expense.pending_payer.name
    return None


def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "paid_by_user_id": expense.paid_by_user_id,
        "paid_by_pending_id": expense.paid_by_pending_id,
        "paid_by_name": _payer_name(expense),
        "created_by_user_id": expense.created_by_user_id,
        "description": expense.description,
        "amount": str(expense.amount),
        "split_mode": expense.split_mode.value,
        "category": expense.category.value,
        "expense_date": expense.expense_date.isoformat(),
        "notes": expense.notes,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at": expense.deleted_at.isoformat() if expense.deleted_at else None,
        "splits": [
            {
                "id": s.id,
                **_ref(s.user_id, s.pending_member_id),
                "amount": str(s.amount),
            }
            for s in expense.splits
        ],
        "items": [
            {
                "id": item.id,
                "name": item.name,
                "amount": str(item.amount),
                "participants": [
                    _ref(p.user_id, p.pending_member_id) for p in item.participants
                ],
            }
            for item in expense.items
        ],
    }


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """
    POST /groups/:id/expenses — Record a new expense.
    Handles 'equal', 'custom' and 'itemized' split modes.
    """
    data = ExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — Active (non-deleted) expenses, newest first."""
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PUT"])
@require_auth
def update_expense(expense_id: int):
    """
    PUT /expenses/:id — Replace every editable field; splits are recomputed.
    Only the creator of the expense or a group admin may edit.
    """
    data = ExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.update_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """
    DELETE /expenses/:id — Soft-delete (sets deleted_at).
    The row and its splits stay; balances no longer include it.
    """
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200
