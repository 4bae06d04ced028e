"""
Unit tests for balance_service loaders and get_balance_response.

These tests intentionally avoid Flask and real DB access. Loaders are fed
SimpleNamespace rows through a mocked session; get_balance_response is
tested with the loaders patched out.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from settleup.app.errors import AppError, ErrorCode
from settleup.app.models.expense import Category
from settleup.app.services import balance_service
from settleup.app.services.ledger import (
    LedgerExpense,
    LedgerSplit,
    Member,
    Participant,
    Roster,
)

A = Participant.registered(1)
B = Participant.registered(2)
C = Participant.registered(3)


def _mock_scalars_all(session: MagicMock, rows: list) -> None:
    session.execute.return_value.scalars.return_value.all.return_value = rows


def _roster() -> Roster:
    return Roster.from_members(
        [
            Member(A, "Alice", is_admin=True),
            Member(B, "Bob"),
            Member(C, "Cara"),
        ]
    )


def _expenses() -> list[LedgerExpense]:
    """Alice pays 90 split three ways; Bob pays 30 split with Cara."""
    return [
        LedgerExpense(
            id=1,
            payer=A,
            amount=Decimal("90.00"),
            splits=(
                LedgerSplit(A, Decimal("30.00")),
                LedgerSplit(B, Decimal("30.00")),
                LedgerSplit(C, Decimal("30.00")),
            ),
            description="Dinner",
        ),
        LedgerExpense(
            id=2,
            payer=B,
            amount=Decimal("30.00"),
            splits=(
                LedgerSplit(B, Decimal("15.00")),
                LedgerSplit(C, Decimal("15.00")),
            ),
            description="Taxi",
        ),
    ]


# ── Loaders ────────────────────────────────────────────────────────────────

def test_to_ledger_expense_converts_refs_to_participants():
    expense = SimpleNamespace(
        id=5,
        paid_by_user_id=None,
        paid_by_pending_id=9,
        amount=Decimal("20.00"),
        splits=[
            SimpleNamespace(user_id=1, pending_member_id=None, amount=Decimal("10.00")),
            SimpleNamespace(user_id=None, pending_member_id=9, amount=Decimal("10.00")),
        ],
        description="Snacks",
        expense_date=date(2026, 3, 1),
        category=Category.FOOD,
    )

    result = balance_service.to_ledger_expense(expense)

    assert result.payer == Participant.pending(9)
    assert [s.participant for s in result.splits] == [A, Participant.pending(9)]
    assert result.category == "food"


def test_to_ledger_expense_malformed_split_has_no_participant():
    expense = SimpleNamespace(
        id=5,
        paid_by_user_id=1,
        paid_by_pending_id=None,
        amount=Decimal("20.00"),
        splits=[SimpleNamespace(user_id=None, pending_member_id=None, amount=Decimal("20.00"))],
        description="Snacks",
        expense_date=None,
        category=None,
    )

    result = balance_service.to_ledger_expense(expense)

    assert result.splits[0].participant is None
    assert result.category is None


def test_load_confirmed_settlements_returns_snapshots():
    session = MagicMock()
    _mock_scalars_all(session, [
        SimpleNamespace(
            id=3, from_user_id=2, to_user_id=1,
            amount=Decimal("30.00"), created_at=None, note=None,
        ),
    ])

    result = balance_service.load_confirmed_settlements(group_id=1, session=session)

    assert len(result) == 1
    assert result[0].from_ == B
    assert result[0].to == A
    session.execute.assert_called_once()


# ── get_balance_response ───────────────────────────────────────────────────

def _respond(caller_id: int, **kwargs) -> dict:
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=1, creator_user_id=1)
    with patch.object(balance_service, "load_roster", return_value=_roster()), \
            patch.object(balance_service, "load_active_expenses", return_value=_expenses()), \
            patch.object(balance_service, "load_confirmed_settlements", return_value=[]):
        return balance_service.get_balance_response(
            group_id=1, caller_id=caller_id, session=session, **kwargs,
        )


def _debt_pairs(response: dict) -> set[tuple[int, int]]:
    return {(d["from"]["id"], d["to"]["id"]) for d in response["simplified_debts"]}


def test_group_not_found():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        balance_service.get_balance_response(group_id=404, caller_id=1, session=session)

    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND
    assert exc_info.value.http_status == 404


def test_non_member_forbidden():
    with pytest.raises(AppError) as exc_info:
        _respond(caller_id=99)

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_balances_always_cover_whole_roster():
    response = _respond(caller_id=2)

    assert {b["id"]: b["balance"] for b in response["balances"]} == {
        1: "60.00",
        2: "-15.00",
        3: "-45.00",
    }
    assert response["balance_sum"] == "0.00"
    assert response["is_admin"] is False


def test_member_sees_only_own_debts():
    response = _respond(caller_id=2)

    assert _debt_pairs(response) == {(2, 1), (3, 2)}
    assert all(
        2 in (p["person_a"]["id"], p["person_b"]["id"])
        for p in response["detailed_debts"]
    )


def test_member_view_all_flag_is_ignored():
    response = _respond(caller_id=3, view_all=True)

    assert _debt_pairs(response) == {(3, 1), (3, 2)}


def test_admin_defaults_to_own_debts():
    response = _respond(caller_id=1)

    assert response["is_admin"] is True
    assert _debt_pairs(response) == {(2, 1), (3, 1)}


def test_admin_view_all_sees_every_pair():
    response = _respond(caller_id=1, view_all=True)

    assert _debt_pairs(response) == {(2, 1), (3, 1), (3, 2)}
    assert len(response["detailed_debts"]) == 3


def test_simplify_flag_is_echoed():
    response = _respond(caller_id=1, simplify=True)

    assert response["simplify"] is True
    assert response["group_id"] == 1
