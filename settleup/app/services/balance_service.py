"""
services/balance_service.py — Balance computation and debt simplification.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
Group removal checks, the balances endpoint and the tests all go through the
functions below; the formula must not be reimplemented elsewhere.

Two layers:

  Pure engine (no Flask, no Session, no I/O):
    aggregate_balances()     — per-participant {paid, owes, balance}
    net_pairs()              — one PairLedger per unordered participant pair
    detailed_debts()         — up to two directed debts per pair (raw)
    simplified_debts()       — at most one directed debt per pair (netted)
    filter_debts_for_caller()— a non-admin only sees pairs they are part of

  Loaders (Session in, snapshots out):
    load_roster(), load_active_expenses(), load_confirmed_settlements()
    get_balance_response() glues the two together for the route.

Inputs are always: every ACTIVE expense (deleted_at IS NULL) and every
CONFIRMED settlement of one group, plus the group's roster. Pending
settlements never reach the engine.

Rounding: amounts accumulate at full precision and are rounded half-up to
2 dp only when turned into output (round_money). Directed debts of 0.01 or
less are treated as settled.

Zero-sum: before settlements, Σ balance == 0 whenever every split and payer
resolves to a roster member. Each confirmed settlement credits and debits
the same amount, so Σ balance stays 0. References to removed members are
skipped silently, which is the only way the sum can drift; balance_sum is
reported so callers can see it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from settleup.app.errors import AuthorizationError, ErrorCode, NotFoundError
from settleup.app.models.expense import Expense
from settleup.app.models.group import Group
from settleup.app.models.membership import Membership
from settleup.app.models.pending_member import PendingMember
from settleup.app.models.settlement import Settlement
from settleup.app.models.user import User
from settleup.app.services.ledger import (
    THRESHOLD,
    ZERO,
    LedgerExpense,
    LedgerSettlement,
    LedgerSplit,
    Member,
    Participant,
    Roster,
    participant_from_refs,
    resolve_participant,
    round_money,
)

logger = logging.getLogger(__name__)

A_TO_B = "AtoB"
B_TO_A = "BtoA"

# Category shown on pair transactions that come from confirmed settlements.
PAYMENT_CATEGORY = "payment"


# ── Engine output types ────────────────────────────────────────────────────

@dataclass
class ParticipantBalance:
    member: Member
    paid: Decimal = ZERO
    owes: Decimal = ZERO
    balance: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            **self.member.to_dict(),
            "paid": str(round_money(self.paid)),
            "owes": str(round_money(self.owes)),
            "balance": str(round_money(self.balance)),
        }


@dataclass(frozen=True)
class PairTransaction:
    """One contribution to a pair: an expense split or a confirmed payment."""
    source_id: int
    amount: Decimal
    payer: Participant
    payer_name: str
    description: str
    occurred_on: date | datetime | None = None
    category: str | None = None
    note: str | None = None
    is_payment: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.source_id,
            "amount": str(round_money(self.amount)),
            "paid_by": self.payer_name,
            "description": self.description,
            "date": self.occurred_on.isoformat() if self.occurred_on else None,
            "category": self.category,
            "note": self.note,
            "is_payment": self.is_payment,
        }


@dataclass
class PairLedger:
    """
    Undirected pair entry. person_a < person_b in Participant order.

    a_owes_b / b_owes_a accumulate split amounts and are reduced by confirmed
    settlements, so either may go negative after an overpayment.
    """
    person_a: Member
    person_b: Member
    a_owes_b: Decimal = ZERO
    b_owes_a: Decimal = ZERO
    transactions: list[PairTransaction] = field(default_factory=list)

    @property
    def key(self) -> tuple[Participant, Participant]:
        return (self.person_a.participant, self.person_b.participant)

    @property
    def net_amount(self) -> Decimal:
        return round_money(abs(self.a_owes_b - self.b_owes_a))

    @property
    def net_direction(self) -> str:
        # Strict comparison: an exact tie reports BtoA with a zero amount.
        return A_TO_B if self.a_owes_b > self.b_owes_a else B_TO_A

    def involves(self, participant: Participant) -> bool:
        return participant in self.key

    def to_dict(self) -> dict:
        return {
            "person_a": self.person_a.to_dict(),
            "person_b": self.person_b.to_dict(),
            "a_owes_b": str(round_money(self.a_owes_b)),
            "b_owes_a": str(round_money(self.b_owes_a)),
            "net_amount": str(self.net_amount),
            "net_direction": self.net_direction,
            "transactions": [t.to_dict() for t in self.transactions],
            "transaction_count": len(self.transactions),
        }


@dataclass(frozen=True)
class DirectedDebt:
    debtor: Member
    creditor: Member
    amount: Decimal
    expense_count: int = 0

    def involves(self, participant: Participant) -> bool:
        return participant in (self.debtor.participant, self.creditor.participant)

    def to_dict(self) -> dict:
        return {
            "from": self.debtor.to_dict(),
            "to": self.creditor.to_dict(),
            "amount": str(self.amount),
            "expense_count": self.expense_count,
        }


# ── Balance Aggregator ─────────────────────────────────────────────────────

def aggregate_balances(
        roster: Roster,
        expenses: Iterable[LedgerExpense],
        settlements: Iterable[LedgerSettlement],
) -> dict[Participant, ParticipantBalance]:
    """
    Folds expenses and confirmed settlements into per-participant balances.

    Every roster participant appears in the result, in roster order, even
    with a zero balance. Payers, splits and settlement parties that do not
    resolve against the roster are skipped. Never raises.
    """
    totals = {
        member.participant: ParticipantBalance(member=member)
        for member in roster
    }

    for expense in expenses:
        payer = totals.get(expense.payer)
        if payer is not None:
            payer.paid += expense.amount

        for split in expense.splits:
            ower = totals.get(split.participant)
            if ower is not None:
                ower.owes += split.amount

    for entry in totals.values():
        entry.balance = entry.paid - entry.owes

    # A settlement moves the payer toward zero and the recipient's credit down.
    for settlement in settlements:
        payer = totals.get(settlement.from_)
        recipient = totals.get(settlement.to)
        if payer is not None:
            payer.balance += settlement.amount
        if recipient is not None:
            recipient.balance -= settlement.amount

    return totals


# ── Pairwise Netter ────────────────────────────────────────────────────────

def net_pairs(
        roster: Roster,
        expenses: Iterable[LedgerExpense],
        settlements: Iterable[LedgerSettlement],
) -> list[PairLedger]:
    """
    Builds one PairLedger per unordered pair of roster participants that
    share at least one split or confirmed settlement.

    Splits where the participant is the payer contribute nothing. Settlements
    subtract from the slot matching the payer's position, creating the pair
    on demand. Returned sorted by pair key so output is stable.
    """
    pairs: dict[tuple[Participant, Participant], PairLedger] = {}

    def _pair_for(x: Member, y: Member) -> PairLedger:
        a, b = (x, y) if x.participant < y.participant else (y, x)
        key = (a.participant, b.participant)
        if key not in pairs:
            pairs[key] = PairLedger(person_a=a, person_b=b)
        return pairs[key]

    for expense in expenses:
        payer = resolve_participant(roster, expense.payer)
        if payer is None:
            continue

        for split in expense.splits:
            ower = resolve_participant(roster, split.participant)
            if ower is None or ower.participant == payer.participant:
                continue

            pair = _pair_for(ower, payer)
            if ower is pair.person_a:
                pair.a_owes_b += split.amount
            else:
                pair.b_owes_a += split.amount

            pair.transactions.append(PairTransaction(
                source_id=expense.id,
                amount=split.amount,
                payer=payer.participant,
                payer_name=payer.name,
                description=expense.description,
                occurred_on=expense.expense_date,
                category=expense.category,
            ))

    for settlement in settlements:
        payer = resolve_participant(roster, settlement.from_)
        recipient = resolve_participant(roster, settlement.to)
        if payer is None or recipient is None:
            continue

        pair = _pair_for(payer, recipient)
        if payer is pair.person_a:
            pair.a_owes_b -= settlement.amount
        else:
            pair.b_owes_a -= settlement.amount

        pair.transactions.append(PairTransaction(
            source_id=settlement.id,
            amount=settlement.amount,
            payer=payer.participant,
            payer_name=payer.name,
            description=f"Payment to {recipient.name}",
            occurred_on=settlement.created_at,
            category=PAYMENT_CATEGORY,
            note=settlement.note,
            is_payment=True,
        ))

    return [pairs[key] for key in sorted(pairs)]


# ── Debt Simplifier ────────────────────────────────────────────────────────

def _expense_count(pair: PairLedger, creditor: Member) -> int:
    return sum(
        1 for t in pair.transactions
        if not t.is_payment and t.payer == creditor.participant
    )


def detailed_debts(pairs: Iterable[PairLedger]) -> list[DirectedDebt]:
    """Raw per-direction debts: up to two entries per pair, each > 0.01."""
    debts: list[DirectedDebt] = []
    for pair in pairs:
        a_owes_b = round_money(pair.a_owes_b)
        b_owes_a = round_money(pair.b_owes_a)

        if a_owes_b > THRESHOLD:
            debts.append(DirectedDebt(
                debtor=pair.person_a,
                creditor=pair.person_b,
                amount=a_owes_b,
                expense_count=_expense_count(pair, pair.person_b),
            ))
        if b_owes_a > THRESHOLD:
            debts.append(DirectedDebt(
                debtor=pair.person_b,
                creditor=pair.person_a,
                amount=b_owes_a,
                expense_count=_expense_count(pair, pair.person_a),
            ))
    return debts


def simplified_debts(pairs: Iterable[PairLedger]) -> list[DirectedDebt]:
    """Netted debts: at most one entry per pair, using net_direction."""
    debts: list[DirectedDebt] = []
    for pair in pairs:
        if pair.net_amount <= THRESHOLD:
            continue
        if pair.net_direction == A_TO_B:
            debtor, creditor = pair.person_a, pair.person_b
        else:
            debtor, creditor = pair.person_b, pair.person_a
        debts.append(DirectedDebt(
            debtor=debtor,
            creditor=creditor,
            amount=pair.net_amount,
            expense_count=len(pair.transactions),
        ))
    return debts


def filter_debts_for_caller(
        pairs: list[PairLedger],
        debts: list[DirectedDebt],
        caller: Participant,
        whole_group: bool,
) -> tuple[list[PairLedger], list[DirectedDebt]]:
    """
    Restricts both views to entries the caller is party to.

    whole_group=True returns both lists untouched; callers pass it only for
    group admins who asked for the whole-group view.
    """
    if whole_group:
        return pairs, debts
    return (
        [p for p in pairs if p.involves(caller)],
        [d for d in debts if d.involves(caller)],
    )


# ── Data access helpers ────────────────────────────────────────────────────
# The ONLY sanctioned way to read expense/settlement data for balances.

def load_roster(group: Group, session: Session) -> Roster:
    """Registered members (by join order) followed by pending members."""
    rows = session.execute(
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.group_id == group.id)
        .order_by(Membership.id)
    ).all()

    members = [
        Member(
            participant=Participant.registered(user.id),
            name=user.name,
            phone=user.phone,
            is_admin=membership.is_admin,
        )
        for membership, user in rows
    ]

    pending = session.execute(
        select(PendingMember)
        .where(PendingMember.group_id == group.id)
        .order_by(PendingMember.id)
    ).scalars().all()

    members.extend(
        Member(
            participant=Participant.pending(pm.id),
            name=pm.name,
            phone=pm.phone,
        )
        for pm in pending
    )
    return Roster.from_members(members)


def to_ledger_expense(expense: Expense) -> LedgerExpense:
    return LedgerExpense(
        id=expense.id,
        payer=participant_from_refs(expense.paid_by_user_id, expense.paid_by_pending_id),
        amount=expense.amount,
        splits=tuple(
            LedgerSplit(
                participant=participant_from_refs(s.user_id, s.pending_member_id),
                amount=s.amount,
            )
            for s in expense.splits
        ),
        description=expense.description,
        expense_date=expense.expense_date,
        category=expense.category.value if expense.category else None,
    )


def to_ledger_settlement(settlement: Settlement) -> LedgerSettlement:
    return LedgerSettlement(
        id=settlement.id,
        from_=Participant.registered(settlement.from_user_id),
        to=Participant.registered(settlement.to_user_id),
        amount=settlement.amount,
        created_at=settlement.created_at,
        note=settlement.note,
    )


def load_active_expenses(group_id: int, session: Session) -> list[LedgerExpense]:
    """Expenses WHERE deleted_at IS NULL, with their splits, as snapshots."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.id)
    )
    return [to_ledger_expense(e) for e in session.execute(stmt).scalars().all()]


def load_confirmed_settlements(group_id: int, session: Session) -> list[LedgerSettlement]:
    """Only confirmed settlements affect balances."""
    stmt = (
        select(Settlement)
        .where(
            Settlement.group_id == group_id,
            Settlement.confirmed_by_recipient.is_(True),
        )
        .order_by(Settlement.id)
    )
    return [to_ledger_settlement(s) for s in session.execute(stmt).scalars().all()]


def compute_balances(group: Group, session: Session) -> dict[Participant, ParticipantBalance]:
    """Aggregated balances for the whole group, straight from the database."""
    return aggregate_balances(
        load_roster(group, session),
        load_active_expenses(group.id, session),
        load_confirmed_settlements(group.id, session),
    )


# ── Public service function ────────────────────────────────────────────────

def get_balance_response(
        group_id: int,
        caller_id: int,
        session: Session,
        simplify: bool = False,
        view_all: bool = False,
) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Response keys:
      balances          every roster participant, with paid/owes/balance
      simplified_debts  directed debts; netted when simplify is set, raw
                        per-direction entries otherwise
      detailed_debts    the pair ledger (both directions, net, transactions)
      is_admin          whether the caller administers the group
      simplify          echo of the requested mode
      balance_sum       Σ balance, "0.00" for consistent data

    Non-admins, and admins who did not ask for view_all, only see debts and
    pairs they are part of. Balances are always returned for everyone.

    Raises:
        NotFoundError(GROUP_NOT_FOUND)  -- group does not exist.
        AuthorizationError(FORBIDDEN)   -- caller not a group member.
    """
    group = session.get(Group, group_id)
    if group is None:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )

    roster = load_roster(group, session)
    caller = Participant.registered(caller_id)
    if caller not in roster:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
        )

    expenses = load_active_expenses(group_id, session)
    settlements = load_confirmed_settlements(group_id, session)

    balances = aggregate_balances(roster, expenses, settlements)
    pairs = net_pairs(roster, expenses, settlements)
    debts = simplified_debts(pairs) if simplify else detailed_debts(pairs)

    is_admin = roster.is_admin(caller_id)
    pairs, debts = filter_debts_for_caller(pairs, debts, caller, is_admin and view_all)

    balance_sum = sum((b.balance for b in balances.values()), ZERO)
    if round_money(balance_sum) != ZERO:
        # Only possible when rows reference participants no longer on the roster.
        logger.warning(
            "Group %s balances sum to %s; some references did not resolve",
            group_id,
            balance_sum,
        )

    return {
        "group_id": group_id,
        "balances": [b.to_dict() for b in balances.values()],
        "simplified_debts": [d.to_dict() for d in debts],
        "detailed_debts": [p.to_dict() for p in pairs],
        "is_admin": is_admin,
        "simplify": simplify,
        "balance_sum": str(round_money(balance_sum)),
    }
