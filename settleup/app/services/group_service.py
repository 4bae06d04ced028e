"""
services/group_service.py — Group, membership and pending-member logic.

Authorization rules:
  - Reading a group:             any member
  - Renaming a group:            the creator
  - Adding / removing members:   admins only
  - Promoting to admin:          admins only
  - The creator can never be removed.
  - Nobody (registered or pending) is removed while their balance magnitude
    exceeds 0.01; the balance comes from balance_service.compute_balances().

Adding by phone:
  The phone is normalized first. If a registered user has that phone they
  become a member straight away; otherwise a pending member is created and
  will be reconciled when that person registers.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from settleup.app.errors import (
    AuthorizationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from settleup.app.models.expense import Expense
from settleup.app.models.group import Group
from settleup.app.models.membership import Membership
from settleup.app.models.pending_member import PendingMember
from settleup.app.models.split import Split
from settleup.app.models.user import User
from settleup.app.services import balance_service
from settleup.app.services.ledger import THRESHOLD, Participant, round_money
from settleup.app.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


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


def _get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def _require_member(group_id: int, user_id: int, session: Session) -> Membership:
    """Non-members receive 403, not 404."""
    membership = _get_membership(group_id, user_id, session)
    if membership is None:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
        )
    return membership


def _require_admin(group_id: int, user_id: int, session: Session, action: str) -> None:
    membership = _require_member(group_id, user_id, session)
    if not membership.is_admin:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            f"Only group admins can {action}.",
        )


def _normalize(phone: str, default_country_code: str) -> str:
    try:
        return normalize_phone(phone, default_country_code)
    except ValueError as exc:
        raise ValidationError(ErrorCode.INVALID_PHONE, str(exc), field="phone") from exc


def _build_group_dict(group: Group, session: Session) -> dict:
    """Serialises a Group with registered and pending members."""
    rows = session.execute(
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.group_id == group.id)
        .order_by(Membership.id)
    ).all()

    pending = session.execute(
        select(PendingMember)
        .where(PendingMember.group_id == group.id)
        .order_by(PendingMember.id)
    ).scalars().all()

    return {
        "id": group.id,
        "name": group.name,
        "creator_user_id": group.creator_user_id,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "members": [
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "phone": user.phone,
                "is_admin": membership.is_admin,
                "is_pending": False,
            }
            for membership, user in rows
        ],
        "pending_members": [
            {
                "id": pm.id,
                "name": pm.name,
                "phone": pm.phone,
                "is_pending": True,
            }
            for pm in pending
        ],
    }


def _add_by_phone(
        group: Group,
        name: str | None,
        phone: str,
        session: Session,
) -> tuple[str, int]:
    """
    Adds a registered user or a pending member for an already-normalized
    phone. Returns ("user", user_id) or ("pending", pending_member_id).
    """
    user = session.execute(
        select(User).where(User.phone == phone)
    ).scalar_one_or_none()

    if user is not None:
        if _get_membership(group.id, user.id, session) is not None:
            raise ConflictError(
                ErrorCode.ALREADY_MEMBER,
                f"User {user.id} is already a member of group {group.id}.",
            )
        session.add(Membership(group_id=group.id, user_id=user.id, is_admin=False))
        session.flush()
        return "user", user.id

    already_pending = session.execute(
        select(PendingMember).where(
            PendingMember.group_id == group.id,
            PendingMember.phone == phone,
        )
    ).scalar_one_or_none()
    if already_pending is not None:
        raise ConflictError(
            ErrorCode.ALREADY_PENDING_MEMBER,
            f"{phone} is already a pending member of group {group.id}.",
        )

    if not name:
        raise ValidationError(
            ErrorCode.MISSING_FIELD,
            "A name is required to add someone who has not registered yet.",
            field="name",
        )

    pending = PendingMember(group_id=group.id, name=name, phone=phone)
    session.add(pending)
    session.flush()
    return "pending", pending.id


def _require_settled(group: Group, participant: Participant, session: Session) -> None:
    balances = balance_service.compute_balances(group, session)
    entry = balances.get(participant)
    if entry is None:
        return

    balance = round_money(entry.balance)
    if abs(balance) > THRESHOLD:
        status = "is owed" if balance > 0 else "owes"
        raise ConflictError(
            ErrorCode.OUTSTANDING_BALANCE,
            f"{entry.member.name} {status} {abs(balance)}. Settle up before removing them.",
        )


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        name: str,
        creator_id: int,
        session: Session,
        members: list[dict] | None = None,
        default_country_code: str = "1",
) -> dict:
    """
    Creates a group. The creator becomes its first member and an admin.

    Args:
        members: Optional [{"name": str, "phone": str}] to add right away;
                 the same rules as add_member() apply, except that people
                 already in the group are skipped rather than rejected.
    """
    group = Group(name=name, creator_user_id=creator_id)
    session.add(group)
    session.flush()  # populate group.id before creating membership

    session.add(Membership(user_id=creator_id, group_id=group.id, is_admin=True))
    session.flush()

    for entry in members or []:
        phone = _normalize(entry["phone"], default_country_code)
        try:
            _add_by_phone(group, entry.get("name"), phone, session)
        except ConflictError:
            continue

    logger.info("Group %s created by user %s", group.id, creator_id)
    return _build_group_dict(group, session)


def list_groups(user_id: int, session: Session) -> list[dict]:
    """
    Groups the user belongs to, oldest first. No member lists.

    user_balance is the caller's own aggregated balance in each group:
    positive when they are owed, negative when they owe.
    """
    rows = session.execute(
        select(Group, Membership.is_admin)
        .join(Membership, Group.id == Membership.group_id)
        .where(Membership.user_id == user_id)
        .order_by(Group.created_at.asc(), Group.id.asc())
    ).all()

    me = Participant.registered(user_id)
    result = []
    for g, is_admin in rows:
        mine = balance_service.compute_balances(g, session).get(me)
        result.append({
            "id": g.id,
            "name": g.name,
            "creator_user_id": g.creator_user_id,
            "is_admin": is_admin,
            "user_balance": str(round_money(mine.balance if mine else 0)),
            "created_at": g.created_at.isoformat() if g.created_at else None,
        })
    return result


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Full group details. Caller must be a member (403, not 404)."""
    group = _get_group_or_404(group_id, session)
    _require_member(group_id, caller_id, session)
    return _build_group_dict(group, session)


def rename_group(group_id: int, caller_id: int, name: str, session: Session) -> dict:
    """Only the creator may rename a group."""
    group = _get_group_or_404(group_id, session)
    if group.creator_user_id != caller_id:
        raise AuthorizationError(
            ErrorCode.FORBIDDEN,
            "Only the group creator can rename this group.",
        )
    group.name = name
    session.flush()
    return _build_group_dict(group, session)


def add_member(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        default_country_code: str = "1",
) -> dict:
    """
    Adds someone to a group by phone number. Admins only.

    Args:
        data: {"phone": str, "name": str | None}

    Raises:
      NotFoundError(GROUP_NOT_FOUND)
      AuthorizationError(FORBIDDEN)          — caller is not an admin
      ValidationError(INVALID_PHONE)
      ConflictError(ALREADY_MEMBER)          — phone belongs to a member
      ConflictError(ALREADY_PENDING_MEMBER)  — phone already pending here

    Returns: the updated group dict.
    """
    group = _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session, "add members")

    phone = _normalize(data["phone"], default_country_code)
    kind, member_id = _add_by_phone(group, data.get("name"), phone, session)

    logger.info("Group %s: user %s added %s member %s", group_id, caller_id, kind, member_id)
    return _build_group_dict(group, session)


def promote_to_admin(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
) -> dict:
    """Admins only. Pending members cannot be admins."""
    group = _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session, "promote members")

    membership = _get_membership(group_id, target_user_id, session)
    if membership is None:
        raise NotFoundError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
        )
    if membership.is_admin:
        raise ConflictError(
            ErrorCode.ALREADY_ADMIN,
            f"User {target_user_id} is already an admin of group {group_id}.",
        )

    membership.is_admin = True
    session.flush()
    return _build_group_dict(group, session)


def remove_member(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
) -> dict:
    """
    Removes a registered member. Admins only.

    Raises:
      NotFoundError(GROUP_NOT_FOUND / MEMBER_NOT_FOUND)
      AuthorizationError(FORBIDDEN)         — caller is not an admin
      ConflictError(CANNOT_REMOVE_CREATOR)
      ConflictError(OUTSTANDING_BALANCE)    — |balance| > 0.01
    """
    group = _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session, "remove members")

    membership = _get_membership(group_id, target_user_id, session)
    if membership is None:
        raise NotFoundError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
        )

    if target_user_id == group.creator_user_id:
        raise ConflictError(
            ErrorCode.CANNOT_REMOVE_CREATOR,
            "The group creator cannot be removed.",
        )

    _require_settled(group, Participant.registered(target_user_id), session)

    session.delete(membership)
    session.flush()

    logger.info("Group %s: user %s removed member %s", group_id, caller_id, target_user_id)
    return _build_group_dict(group, session)


def remove_pending_member(
        group_id: int,
        caller_id: int,
        pending_member_id: int,
        session: Session,
) -> dict:
    """
    Removes a pending member. Admins only; blocked while they have a balance.

    A pending member still referenced by an expense cannot be removed even
    when their balance is zero, because the expense would lose its payer or
    split owner.
    """
    group = _get_group_or_404(group_id, session)
    _require_admin(group_id, caller_id, session, "remove pending members")

    pending = session.get(PendingMember, pending_member_id)
    if pending is None or pending.group_id != group_id:
        raise NotFoundError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"Pending member {pending_member_id} is not part of group {group_id}.",
        )

    _require_settled(group, Participant.pending(pending_member_id), session)

    referenced = session.execute(
        select(Split.id).where(Split.pending_member_id == pending_member_id).limit(1)
    ).scalar_one_or_none() or session.execute(
        select(Expense.id).where(Expense.paid_by_pending_id == pending_member_id).limit(1)
    ).scalar_one_or_none()
    if referenced is not None:
        raise ConflictError(
            ErrorCode.MEMBER_HAS_EXPENSES,
            f"Pending member {pending_member_id} still appears on expenses.",
        )

    session.delete(pending)
    session.flush()

    logger.info("Group %s: user %s removed pending member %s", group_id, caller_id, pending_member_id)
    return _build_group_dict(group, session)
