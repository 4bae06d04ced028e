"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  SPLIT_SUM_MISMATCH (422)      — sum(splits.amount) == expense.amount exactly
  PAYER_NOT_MEMBER (422)        — the payer is a registered or pending member
  PARTICIPANT_NOT_MEMBER (422)  — every split / item participant is a member
  EXPENSE_DELETED (422)         — a soft-deleted expense cannot be updated
  FORBIDDEN (403)               — caller must be a group member

The balance engine tolerates splits that do not add up; this service is the
place where new data is kept consistent.

Who may do what:
  - Create: any member. A member records expenses they paid, or ones a
            pending member paid. An admin may record any member as payer.
  - Update: the creator of the expense or a group admin. Full-field.
  - Delete: the payer or a group admin (the creator too, when a pending
            member paid). Soft delete; idempotent.

Split modes:
  equal    — amount divided among ALL members, registered and pending,
             ROUND_DOWN to the cent; the remainder goes to the payer.
  custom   — client supplies splits; amounts may be zero.
  itemized — client supplies items, each with the participants involved;
             each item is divided equally among its participants and the
             per-participant totals become the splits.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import ROUND_DOWN, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from settleup.app.errors import (
    AppError,
    AuthorizationError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from settleup.app.models.expense import Category, Expense, SplitMode
from settleup.app.models.expense_item import ExpenseItem, ExpenseItemParticipant
from settleup.app.models.group import Group
from settleup.app.models.split import Split
from settleup.app.services.balance_service import load_roster
from settleup.app.services.ledger import (
    Participant,
    ParticipantKind,
    Roster,
    participant_from_refs,
)

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
        )
    return expense


def _require_member(roster: Roster, group_id: int, user_id: int) -> None:
    """Non-members receive 403, not 404."""
    if Participant.registered(user_id) not in roster:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
        )


def _payer_of(expense: Expense) -> Participant | None:
    return participant_from_refs(expense.paid_by_user_id, expense.paid_by_pending_id)


def _resolve_payer(
        data: dict,
        roster: Roster,
        group_id: int,
        caller_id: int,
        default: Participant,
) -> Participant:
    """
    Picks the payer from paid_by_user_id / paid_by_pending_id.

    The schema guarantees at most one is present. Without either, `default`
    is used. Only an admin may name a registered payer other than themselves.
    """
    if data.get("paid_by_pending_id") is not None:
        payer = Participant.pending(data["paid_by_pending_id"])
    elif data.get("paid_by_user_id") is not None:
        payer = Participant.registered(data["paid_by_user_id"])
    else:
        payer = default

    if payer not in roster:
        raise ValidationError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"Payer {payer} is not a member of group {group_id}.",
            field="paid_by_pending_id" if payer.is_pending else "paid_by_user_id",
        )

    if (
        payer.kind is ParticipantKind.REGISTERED
        and payer.id != caller_id
        and payer != default
        and not roster.is_admin(caller_id)
    ):
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only a group admin can record an expense paid by another member.",
        )
    return payer


def _require_participants_are_members(
        participants: list[Participant],
        roster: Roster,
        group_id: int,
        field: str,
) -> None:
    for participant in participants:
        if participant not in roster:
            raise ValidationError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"Participant {participant} is not a member of group {group_id}.",
                field=field,
            )


def _validate_split_sum(
        splits: dict[Participant, Decimal],
        expected_amount: Decimal,
) -> None:
    """Uses Decimal arithmetic — never float."""
    total = sum(splits.values(), Decimal("0"))
    if total != expected_amount:
        raise ValidationError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts ({total}) do not equal expense amount ({expected_amount}).",
            field="splits",
        )


def _split_equally(
        amount: Decimal,
        participants: list[Participant],
        remainder_to: Participant | None,
) -> "OrderedDict[Participant, Decimal]":
    """
    Divides amount evenly using ROUND_DOWN. The remainder (under n cents)
    goes to remainder_to if they participate, otherwise to the first.
    Guarantees: sum(result) == amount.
    """
    n = len(participants)
    base = (amount / Decimal(n)).quantize(_CENT, rounding=ROUND_DOWN)
    remainder = amount - (base * n)

    shares: "OrderedDict[Participant, Decimal]" = OrderedDict(
        (p, base) for p in participants
    )
    if remainder > Decimal("0"):
        target = remainder_to if remainder_to in shares else participants[0]
        shares[target] += remainder

    # Must always hold; a failure here is a programming error.
    computed = sum(shares.values(), Decimal("0"))
    if computed != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed} for amount {amount}.",
            500,
        )
    return shares


def _item_participants(item: dict) -> list[Participant]:
    """Registered first, then pending; repeated ids count once."""
    return list(dict.fromkeys(
        [Participant.registered(uid) for uid in item.get("user_ids") or []]
        + [Participant.pending(pid) for pid in item.get("pending_member_ids") or []]
    ))


def _compute_splits(
        data: dict,
        roster: Roster,
        group_id: int,
        payer: Participant,
) -> dict[Participant, Decimal]:
    """Builds {participant: share} for the requested split mode."""
    amount: Decimal = data["amount"]
    split_mode: SplitMode = data["split_mode"]

    if split_mode == SplitMode.EQUAL:
        return _split_equally(amount, [m.participant for m in roster], payer)

    if split_mode == SplitMode.ITEMIZED:
        shares: dict[Participant, Decimal] = OrderedDict()
        for item in data["items"]:
            involved = _item_participants(item)
            _require_participants_are_members(involved, roster, group_id, "items")
            for participant, share in _split_equally(item["amount"], involved, payer).items():
                shares[participant] = shares.get(participant, Decimal("0")) + share
        _validate_split_sum(shares, amount)
        return shares

    shares = OrderedDict(
        (participant_from_refs(s.get("user_id"), s.get("pending_member_id")), s["amount"])
        for s in data["splits"]
    )
    _require_participants_are_members(list(shares), roster, group_id, "splits")
    _validate_split_sum(shares, amount)
    return shares


def _write_splits(expense: Expense, shares: dict[Participant, Decimal]) -> None:
    expense.splits = [
        Split(
            user_id=None if p.is_pending else p.id,
            pending_member_id=p.id if p.is_pending else None,
            amount=share,
        )
        for p, share in shares.items()
    ]


def _write_items(expense: Expense, items: list[dict] | None) -> None:
    new_items = []
    for item in items or []:
        new_items.append(ExpenseItem(
            name=item["name"],
            amount=item["amount"],
            participants=[
                ExpenseItemParticipant(
                    user_id=None if p.is_pending else p.id,
                    pending_member_id=p.id if p.is_pending else None,
                )
                for p in _item_participants(item)
            ],
        ))
    expense.items = new_items


def _delete_children(expense: Expense, session: Session) -> None:
    """Removes existing splits and items before they are re-created on update."""
    for child in list(expense.splits) + list(expense.items):
        session.delete(child)
    expense.splits = []
    expense.items = []
    session.flush()


def _apply_payer(expense: Expense, payer: Participant) -> None:
    expense.paid_by_user_id = None if payer.is_pending else payer.id
    expense.paid_by_pending_id = payer.id if payer.is_pending else None


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense for a group.

    Args:
        data: Validated dict from ExpenseSchema.

    Returns:
        The newly created Expense ORM object with splits and items loaded.
    """
    group = _get_group_or_404(group_id, session)
    roster = load_roster(group, session)
    _require_member(roster, group_id, caller_id)

    payer = _resolve_payer(data, roster, group_id, caller_id, Participant.registered(caller_id))
    shares = _compute_splits(data, roster, group_id, payer)

    expense = Expense(
        group_id=group_id,
        created_by_user_id=caller_id,
        description=data["description"],
        amount=data["amount"],
        split_mode=data["split_mode"],
        category=data.get("category") or Category.OTHER,
        expense_date=data.get("expense_date") or date.today(),
        notes=data.get("notes"),
    )
    _apply_payer(expense, payer)
    _write_splits(expense, shares)
    _write_items(expense, data.get("items"))

    session.add(expense)
    session.flush()

    logger.info(
        "Expense %s created in group %s: amount=%s payer=%s splits=%s",
        expense.id, group_id, expense.amount, payer, len(shares),
    )
    return expense


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Expense]:
    """Active (non-deleted) expenses for a group, newest first."""
    group = _get_group_or_404(group_id, session)
    _require_member(load_roster(group, session), group_id, caller_id)

    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits), selectinload(Expense.items))
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    """
    Returns a single expense including its splits and items.

    Returns the expense even if soft-deleted; deleted_at is part of the
    response so the client can show it.
    """
    expense = _get_expense_or_404(expense_id, session)
    group = _get_group_or_404(expense.group_id, session)
    _require_member(load_roster(group, session), expense.group_id, caller_id)
    return expense


def update_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Full-field update. Splits and items are recomputed from the new data.

    Without paid_by_user_id / paid_by_pending_id the current payer is kept.

    Raises:
        NotFoundError(EXPENSE_NOT_FOUND)
        AuthorizationError(FORBIDDEN)     — not the creator or an admin
        ValidationError(EXPENSE_DELETED)
        plus every check create_expense() makes
    """
    expense = _get_expense_or_404(expense_id, session)
    group = _get_group_or_404(expense.group_id, session)
    roster = load_roster(group, session)
    _require_member(roster, expense.group_id, caller_id)

    if expense.created_by_user_id != caller_id and not roster.is_admin(caller_id):
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only the creator of this expense or a group admin may edit it.",
        )

    if expense.is_deleted:
        raise ValidationError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
        )

    current_payer = _payer_of(expense) or Participant.registered(caller_id)
    payer = _resolve_payer(data, roster, expense.group_id, caller_id, current_payer)
    shares = _compute_splits(data, roster, expense.group_id, payer)

    expense.description = data["description"]
    expense.amount = data["amount"]
    expense.split_mode = data["split_mode"]
    expense.category = data.get("category") or Category.OTHER
    expense.expense_date = data.get("expense_date") or expense.expense_date
    expense.notes = data.get("notes")
    _apply_payer(expense, payer)
    _delete_children(expense, session)
    _write_splits(expense, shares)
    _write_items(expense, data.get("items"))
    expense.updated_at = datetime.now(timezone.utc)

    session.flush()

    logger.info("Expense %s updated by user %s", expense_id, caller_id)
    return expense


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Soft-deletes an expense by setting deleted_at = NOW().

    The row and its splits stay for audit; balance loaders skip it.
    Re-deleting is a no-op.
    """
    expense = _get_expense_or_404(expense_id, session)
    group = _get_group_or_404(expense.group_id, session)
    roster = load_roster(group, session)
    _require_member(roster, expense.group_id, caller_id)

    is_payer = expense.paid_by_user_id == caller_id
    recorded_for_pending = (
        expense.paid_by_pending_id is not None
        and expense.created_by_user_id == caller_id
    )
    if not (is_payer or recorded_for_pending or roster.is_admin(caller_id)):
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only the payer or a group admin may delete this expense.",
        )

    if not expense.is_deleted:
        expense.deleted_at = datetime.now(timezone.utc)
        session.flush()
        logger.info("Expense %s deleted by user %s", expense_id, caller_id)
