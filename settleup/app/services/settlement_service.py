"""
services/settlement_service.py — Settlement state machine.

States (stored as Settlement.confirmed_by_recipient):

    create ──► PENDING ──confirm (recipient)──► CONFIRMED
                  │                                 │
                  └─reject (recipient) / delete ──► (row removed)
                                                    │
                        delete (admin correction) ◄─┘

  create_settlement   — PENDING; recipient is notified. With
                        mark_received=True the recipient records a payment
                        they already got: the row starts CONFIRMED and the
                        pending window is skipped.
  confirm_settlement  — recipient only; PENDING → CONFIRMED, irreversible.
  reject_settlement   — recipient only; PENDING only; row deleted.
  delete_settlement   — payer, recipient or admin while PENDING;
                        admin only once CONFIRMED.

At most one PENDING settlement per (group, from, to):
  The pre-check below gives a friendly error in the common case. The
  guarantee comes from the partial unique index
  uq_settlements_pending_direction; a concurrent create that slips past the
  pre-check fails on flush with IntegrityError, which is reported as the
  same ConflictError.

Double confirm / confirm-vs-reject races:
  Both transitions are compare-and-swap statements filtered on
  `NOT confirmed_by_recipient`. Exactly one racer sees rowcount == 1.

Parties are registered members only; pending members cannot log in to
confirm.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here. The one
    exception is the rollback after an IntegrityError, which leaves the
    session usable for the error response.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settleup.app.errors import (
    AuthorizationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from settleup.app.models.group import Group
from settleup.app.models.membership import Membership
from settleup.app.models.notification import NotificationKind
from settleup.app.models.settlement import Settlement
from settleup.app.services import notification_service

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    group = session.get(Group, group_id)
    if group is None:
        raise NotFoundError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def _get_settlement_or_404(settlement_id: int, session: Session) -> Settlement:
    settlement = session.get(Settlement, settlement_id)
    if settlement is None:
        raise NotFoundError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} does not exist.",
        )
    return settlement


def _get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def _require_member(group_id: int, user_id: int, session: Session) -> Membership:
    membership = _get_membership(group_id, user_id, session)
    if membership is None:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
        )
    return membership


def _find_pending(
        group_id: int,
        from_user_id: int,
        to_user_id: int,
        session: Session,
) -> Settlement | None:
    return session.execute(
        select(Settlement).where(
            Settlement.group_id == group_id,
            Settlement.from_user_id == from_user_id,
            Settlement.to_user_id == to_user_id,
            Settlement.confirmed_by_recipient.is_(False),
        )
    ).scalar_one_or_none()


def _pending_conflict(from_user_id: int, to_user_id: int) -> ConflictError:
    return ConflictError(
        ErrorCode.SETTLEMENT_PENDING_EXISTS,
        f"A payment from user {from_user_id} to user {to_user_id} is already "
        f"waiting for confirmation.",
    )


def _payload(settlement: Settlement) -> dict:
    return {
        "settlement_id": settlement.id,
        "group_id": settlement.group_id,
        "from_user_id": settlement.from_user_id,
        "to_user_id": settlement.to_user_id,
        "amount": str(settlement.amount),
    }


def _resolve_parties(
        caller_id: int,
        caller_is_admin: bool,
        data: dict,
) -> tuple[int, int]:
    """
    Works out (from, to) for a new settlement.

    Normal create: the caller pays unless an admin records on someone's
    behalf. Receiver-marks-as-received: the caller is always the recipient.
    """
    if data.get("mark_received"):
        to_user_id = data.get("to_user_id", caller_id)
        if to_user_id != caller_id:
            raise AuthorizationError(
                ErrorCode.FORBIDDEN,
                "Only the recipient can mark a payment as received.",
            )
        return data["from_user_id"], to_user_id

    from_user_id = data.get("from_user_id", caller_id)
    if from_user_id != caller_id and not caller_is_admin:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only a group admin can record a payment made by someone else.",
        )
    return from_user_id, data["to_user_id"]


# ── Public service functions ───────────────────────────────────────────────

def create_settlement(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Settlement:
    """
    Records a payment between two members of a group.

    Args:
        data: Validated dict from CreateSettlementSchema.
              Keys: amount (Decimal), to_user_id / from_user_id (int,
              optional per mode), note (str | None), mark_received (bool).

    Raises:
        NotFoundError(GROUP_NOT_FOUND)
        AuthorizationError(FORBIDDEN)          -- caller not a member, or not
                                                  allowed to record this payer
        ValidationError(SELF_SETTLEMENT)       -- from == to
        ValidationError(NON_POSITIVE_AMOUNT)   -- amount <= 0
        ValidationError(PARTICIPANT_NOT_MEMBER)-- a party is not a member
        ConflictError(SETTLEMENT_PENDING_EXISTS)
    """
    _get_group_or_404(group_id, session)
    caller_membership = _require_member(group_id, caller_id, session)

    from_user_id, to_user_id = _resolve_parties(
        caller_id, caller_membership.is_admin, data,
    )
    amount: Decimal = data["amount"]
    mark_received: bool = bool(data.get("mark_received"))

    if from_user_id == to_user_id:
        raise ValidationError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            field="to_user_id",
        )

    if amount <= Decimal("0"):
        raise ValidationError(
            ErrorCode.NON_POSITIVE_AMOUNT,
            "Amount must be greater than zero.",
            field="amount",
        )

    for field_name, user_id in (("from_user_id", from_user_id), ("to_user_id", to_user_id)):
        if _get_membership(group_id, user_id, session) is None:
            raise ValidationError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {user_id} is not a member of group {group_id}.",
                field=field_name,
            )

    if not mark_received and _find_pending(group_id, from_user_id, to_user_id, session):
        raise _pending_conflict(from_user_id, to_user_id)

    settlement = Settlement(
        group_id=group_id,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount=amount,
        note=data.get("note"),
        confirmed_by_recipient=mark_received,
        confirmed_at=datetime.now(timezone.utc) if mark_received else None,
    )
    session.add(settlement)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        logger.info(
            "Concurrent pending settlement rejected: group=%s from=%s to=%s",
            group_id, from_user_id, to_user_id,
        )
        raise _pending_conflict(from_user_id, to_user_id)

    if mark_received:
        notification_service.notify(
            from_user_id, NotificationKind.SETTLEMENT_CONFIRMED, _payload(settlement), session,
        )
    else:
        notification_service.notify(
            to_user_id, NotificationKind.SETTLEMENT_REQUESTED, _payload(settlement), session,
        )
    session.flush()

    logger.info(
        "Settlement %s created: group=%s from=%s to=%s amount=%s status=%s",
        settlement.id, group_id, from_user_id, to_user_id, amount,
        settlement.status.value,
    )
    return settlement


def confirm_settlement(settlement_id: int, caller_id: int, session: Session) -> Settlement:
    """
    PENDING → CONFIRMED. Only the recipient may confirm.

    Raises:
        NotFoundError(SETTLEMENT_NOT_FOUND)
        AuthorizationError(FORBIDDEN)               -- caller is not `to`
        ConflictError(SETTLEMENT_ALREADY_CONFIRMED) -- already confirmed,
                                                       including by a racer
    """
    settlement = _get_settlement_or_404(settlement_id, session)

    if settlement.to_user_id != caller_id:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only the recipient can confirm this settlement.",
        )

    if settlement.confirmed_by_recipient:
        raise ConflictError(
            ErrorCode.SETTLEMENT_ALREADY_CONFIRMED,
            f"Settlement {settlement_id} is already confirmed.",
        )

    result = session.execute(
        update(Settlement)
        .where(
            Settlement.id == settlement_id,
            Settlement.confirmed_by_recipient.is_(False),
        )
        .values(
            confirmed_by_recipient=True,
            confirmed_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            ErrorCode.SETTLEMENT_ALREADY_CONFIRMED,
            f"Settlement {settlement_id} is already confirmed.",
        )
    session.refresh(settlement)

    notification_service.notify(
        settlement.from_user_id,
        NotificationKind.SETTLEMENT_CONFIRMED,
        _payload(settlement),
        session,
    )
    session.flush()

    logger.info("Settlement %s confirmed by user %s", settlement_id, caller_id)
    return settlement


def reject_settlement(settlement_id: int, caller_id: int, session: Session) -> None:
    """
    Recipient declines a PENDING settlement; the row is removed.

    Raises:
        NotFoundError(SETTLEMENT_NOT_FOUND)
        AuthorizationError(FORBIDDEN)               -- caller is not `to`
        ConflictError(SETTLEMENT_ALREADY_CONFIRMED)
    """
    settlement = _get_settlement_or_404(settlement_id, session)

    if settlement.to_user_id != caller_id:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only the recipient can reject this settlement.",
        )

    if settlement.confirmed_by_recipient:
        raise ConflictError(
            ErrorCode.SETTLEMENT_ALREADY_CONFIRMED,
            f"Settlement {settlement_id} is already confirmed and cannot be rejected.",
        )

    payload = _payload(settlement)
    result = session.execute(
        delete(Settlement)
        .where(
            Settlement.id == settlement_id,
            Settlement.confirmed_by_recipient.is_(False),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            ErrorCode.SETTLEMENT_ALREADY_CONFIRMED,
            f"Settlement {settlement_id} is already confirmed and cannot be rejected.",
        )
    session.expunge(settlement)

    notification_service.notify(
        payload["from_user_id"], NotificationKind.SETTLEMENT_REJECTED, payload, session,
    )
    session.flush()

    logger.info("Settlement %s rejected by user %s", settlement_id, caller_id)


def delete_settlement(settlement_id: int, caller_id: int, session: Session) -> None:
    """
    Removes a settlement.

    PENDING:   payer, recipient or a group admin.
    CONFIRMED: group admin only, as a correction.

    Raises:
        NotFoundError(SETTLEMENT_NOT_FOUND)
        AuthorizationError(FORBIDDEN)               -- not a party or admin
        ConflictError(SETTLEMENT_ALREADY_CONFIRMED) -- a non-admin party
                                                       deleting a confirmed row
    """
    settlement = _get_settlement_or_404(settlement_id, session)

    membership = _get_membership(settlement.group_id, caller_id, session)
    is_admin = membership is not None and membership.is_admin
    is_party = caller_id in (settlement.from_user_id, settlement.to_user_id)

    if not (is_party or is_admin):
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only the payer, the recipient or a group admin can delete this settlement.",
        )

    if settlement.confirmed_by_recipient and not is_admin:
        raise ConflictError(
            ErrorCode.SETTLEMENT_ALREADY_CONFIRMED,
            "A confirmed settlement can only be removed by a group admin.",
        )

    was_confirmed = settlement.confirmed_by_recipient
    session.delete(settlement)
    session.flush()

    logger.info(
        "Settlement %s deleted by user %s (was %s)",
        settlement_id, caller_id, "confirmed" if was_confirmed else "pending",
    )


def list_settlements(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Settlement]:
    """
    Settlements of a group, newest first.

    Admins see every settlement; other members only those they paid or
    received.
    """
    _get_group_or_404(group_id, session)
    membership = _require_member(group_id, caller_id, session)

    stmt = select(Settlement).where(Settlement.group_id == group_id)
    if not membership.is_admin:
        stmt = stmt.where(
            or_(
                Settlement.from_user_id == caller_id,
                Settlement.to_user_id == caller_id,
            )
        )
    stmt = stmt.order_by(Settlement.created_at.desc(), Settlement.id.desc())
    return list(session.execute(stmt).scalars().all())
