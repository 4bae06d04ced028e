"""
tests/unit/test_ledger.py — Unit tests for the ledger value objects.
"""

from __future__ import annotations

from decimal import Decimal

from settleup.app.services.ledger import (
    Member,
    Participant,
    ParticipantKind,
    Roster,
    participant_from_refs,
    resolve_participant,
    round_money,
)


def test_participant_from_refs_picks_the_set_column():
    assert participant_from_refs(4, None) == Participant.registered(4)
    assert participant_from_refs(None, 9) == Participant.pending(9)


def test_participant_from_refs_rejects_both_or_neither():
    assert participant_from_refs(4, 9) is None
    assert participant_from_refs(None, None) is None


def test_pending_participants_sort_before_registered():
    ordered = sorted([
        Participant.registered(1),
        Participant.pending(50),
        Participant.registered(3),
        Participant.pending(2),
    ])

    assert ordered == [
        Participant.pending(2),
        Participant.pending(50),
        Participant.registered(1),
        Participant.registered(3),
    ]


def test_same_id_different_kind_are_different_participants():
    assert Participant.registered(5) != Participant.pending(5)
    assert len({Participant.registered(5), Participant.pending(5)}) == 2


def test_participant_serialisation():
    p = Participant.pending(3)

    assert p.kind is ParticipantKind.PENDING
    assert p.to_dict() == {"kind": "pending", "id": 3}
    assert str(p) == "pending:3"


def test_round_money_is_half_up():
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money(Decimal("-2.345")) == Decimal("-2.35")
    assert round_money(Decimal("2.344")) == Decimal("2.34")
    assert round_money(Decimal("7")) == Decimal("7.00")


def test_roster_admins_and_lookup():
    alice = Member(Participant.registered(1), "Alice", is_admin=True)
    bob = Member(Participant.registered(2), "Bob")
    dev = Member(Participant.pending(1), "Dev", phone="+15550100000")
    roster = Roster.from_members([alice, bob, dev])

    assert roster.admin_ids == {1}
    assert roster.is_admin(1) and not roster.is_admin(2)
    assert Participant.pending(1) in roster
    assert resolve_participant(roster, Participant.registered(2)) is bob
    assert resolve_participant(roster, Participant.registered(99)) is None
    assert resolve_participant(roster, None) is None
    assert [m.name for m in roster] == ["Alice", "Bob", "Dev"]
