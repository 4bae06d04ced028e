"""
services/ledger.py — Value objects shared by the balance engine.

Everything in this module is plain data. No Flask, no SQLAlchemy, no I/O.
balance_service.py loads rows from the database, converts them into these
snapshots once per request, and runs the pure engine over them.

Participant
  A person who can pay for or share an expense. Storage keeps two mutually
  exclusive nullable columns (user_id / pending_member_id); the engine only
  ever sees a Participant, built by participant_from_refs(). A row with both
  or neither column set has no Participant and is skipped by the engine.

  Participants order by (kind, id). That order is the canonical pair order
  used by the Pairwise Netter: for any two participants, the smaller is
  person A and the larger is person B.

Roster
  Registered and pending members of one group, keyed by Participant.
  resolve_participant() is the single lookup used by every fold. A reference
  to someone not on the roster (a removed member) resolves to None.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

# One currency minor unit. Amounts at or below this are treated as settled.
THRESHOLD = Decimal("0.01")

_CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal) -> Decimal:
    """Half-up rounding to 2 dp. Applied at output only, never while summing."""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


# ── Participant ────────────────────────────────────────────────────────────

class ParticipantKind(str, enum.Enum):
    PENDING    = "pending"
    REGISTERED = "user"


@dataclass(frozen=True, order=True)
class Participant:
    kind: ParticipantKind
    id: int

    @classmethod
    def registered(cls, user_id: int) -> "Participant":
        return cls(ParticipantKind.REGISTERED, user_id)

    @classmethod
    def pending(cls, pending_member_id: int) -> "Participant":
        return cls(ParticipantKind.PENDING, pending_member_id)

    @property
    def is_pending(self) -> bool:
        return self.kind is ParticipantKind.PENDING

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def participant_from_refs(
        user_id: int | None,
        pending_member_id: int | None,
) -> Participant | None:
    """
    Turns a (user_id, pending_member_id) column pair into a Participant.

    Returns None when both or neither are set.
    """
    if (user_id is None) == (pending_member_id is None):
        return None
    if user_id is not None:
        return Participant.registered(user_id)
    return Participant.pending(pending_member_id)


# ── Roster ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Member:
    participant: Participant
    name: str
    phone: str | None = None
    is_admin: bool = False

    def to_dict(self) -> dict:
        return {
            **self.participant.to_dict(),
            "name": self.name,
            "is_pending": self.participant.is_pending,
        }


@dataclass
class Roster:
    members: dict[Participant, Member] = field(default_factory=dict)

    @classmethod
    def from_members(cls, members: Iterable[Member]) -> "Roster":
        return cls({m.participant: m for m in members})

    @property
    def admin_ids(self) -> set[int]:
        return {
            m.participant.id
            for m in self.members.values()
            if m.is_admin and not m.participant.is_pending
        }

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids

    def __contains__(self, participant: Participant) -> bool:
        return participant in self.members

    def __iter__(self):
        return iter(self.members.values())


def resolve_participant(roster: Roster, participant: Participant | None) -> Member | None:
    """Looks a participant up in the roster; None if absent or malformed."""
    if participant is None:
        return None
    return roster.members.get(participant)


# ── Snapshots ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LedgerSplit:
    participant: Participant | None
    amount: Decimal


@dataclass(frozen=True)
class LedgerExpense:
    id: int
    payer: Participant | None
    amount: Decimal
    splits: tuple[LedgerSplit, ...] = ()
    description: str = ""
    expense_date: date | None = None
    category: str | None = None


@dataclass(frozen=True)
class LedgerSettlement:
    id: int
    from_: Participant
    to: Participant
    amount: Decimal
    created_at: datetime | None = None
    note: str | None = None
