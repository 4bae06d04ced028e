"""
services/reconcile_service.py — Pending-participant reconciliation.

When someone registers with a phone number that a group already tracks as a
pending member, every reference to that pending member is rewritten to the
new user:

  1. Expenses the pending member paid      → paid_by_user_id = new user
  2. Splits owed by the pending member      → user_id = new user
     (merged into the user's own split if the expense already has one)
  3. Item involvements                      → user_id = new user
     (dropped if the user is already involved in that item)
  4. Membership added if missing; the pending_members row is deleted.

Amounts are never touched, so group balances are unchanged in value; only
the identity they are attributed to changes.

Idempotence: a pending member is only ever found while its row exists, and
the row is deleted as the last step of its group. Re-running after a
completed pass finds nothing. Re-running inside a rolled-back transaction
starts from the untouched state. Membership creation checks first.

Everything happens in the caller's session; the route that triggered the
registration commits once, so a crash leaves either the fully old or the
fully new state.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from settleup.app.models.expense import Expense
from settleup.app.models.expense_item import ExpenseItemParticipant
from settleup.app.models.membership import Membership
from settleup.app.models.pending_member import PendingMember
from settleup.app.models.split import Split
from settleup.app.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


# ── Per-step helpers ───────────────────────────────────────────────────────

def _repoint_payers(pending: PendingMember, user_id: int, session: Session) -> int:
    result = session.execute(
        update(Expense)
        .where(
            Expense.group_id == pending.group_id,
            Expense.paid_by_pending_id == pending.id,
        )
        .values(paid_by_user_id=user_id, paid_by_pending_id=None)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def _repoint_splits(pending: PendingMember, user_id: int, session: Session) -> int:
    pending_splits = session.execute(
        select(Split).where(Split.pending_member_id == pending.id)
    ).scalars().all()

    moved = 0
    for split in pending_splits:
        existing = session.execute(
            select(Split).where(
                Split.expense_id == split.expense_id,
                Split.user_id == user_id,
            )
        ).scalar_one_or_none()

        if existing is not None:
            existing.amount += split.amount
            session.delete(split)
        else:
            split.pending_member_id = None
            split.user_id = user_id
        moved += 1

    session.flush()
    return moved


def _repoint_items(pending: PendingMember, user_id: int, session: Session) -> int:
    involvements = session.execute(
        select(ExpenseItemParticipant).where(
            ExpenseItemParticipant.pending_member_id == pending.id
        )
    ).scalars().all()

    moved = 0
    for involvement in involvements:
        already_involved = session.execute(
            select(ExpenseItemParticipant.id).where(
                ExpenseItemParticipant.item_id == involvement.item_id,
                ExpenseItemParticipant.user_id == user_id,
            )
        ).scalar_one_or_none()

        if already_involved is not None:
            session.delete(involvement)
        else:
            involvement.pending_member_id = None
            involvement.user_id = user_id
        moved += 1

    session.flush()
    return moved


def _ensure_membership(group_id: int, user_id: int, session: Session) -> bool:
    existing = session.execute(
        select(Membership.id).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return False

    session.add(Membership(group_id=group_id, user_id=user_id, is_admin=False))
    return True


# ── Public service function ────────────────────────────────────────────────

def reconcile_pending_participant(
        phone: str,
        new_user_id: int,
        session: Session,
        default_country_code: str = "1",
) -> dict:
    """
    Migrates every pending member with this phone number to new_user_id.

    Args:
        phone:       Raw or normalized phone; normalized before matching.
        new_user_id: The freshly registered user.

    Returns:
        {"groups": [group ids], "expenses_repointed": n,
         "splits_repointed": n, "items_repointed": n}
    """
    normalized = normalize_phone(phone, default_country_code)

    pending_members = session.execute(
        select(PendingMember)
        .where(PendingMember.phone == normalized)
        .order_by(PendingMember.group_id)
    ).scalars().all()

    summary = {
        "groups": [],
        "expenses_repointed": 0,
        "splits_repointed": 0,
        "items_repointed": 0,
    }

    for pending in pending_members:
        summary["expenses_repointed"] += _repoint_payers(pending, new_user_id, session)
        summary["splits_repointed"] += _repoint_splits(pending, new_user_id, session)
        summary["items_repointed"] += _repoint_items(pending, new_user_id, session)

        _ensure_membership(pending.group_id, new_user_id, session)
        session.delete(pending)
        session.flush()

        summary["groups"].append(pending.group_id)

    if summary["groups"]:
        logger.info(
            "Reconciled pending member(s) into user %s: groups=%s expenses=%s splits=%s items=%s",
            new_user_id,
            summary["groups"],
            summary["expenses_repointed"],
            summary["splits_repointed"],
            summary["items_repointed"],
        )
    return summary
