"""
tests/integration/test_settlements.py — Settlement lifecycle over HTTP.

Endpoints covered:
  POST   /groups/:id/settlements           → 201 (PENDING, or CONFIRMED with
                                                    mark_received)
  GET    /groups/:id/settlements           → 200
  POST   /settlements/:id/confirm          → 200 (recipient only)
  POST   /settlements/:id/reject           → 200 (recipient only; row removed)
  DELETE /settlements/:id                  → 200

Error cases:
  SETTLEMENT_PENDING_EXISTS   409 — second pending A→B
  SETTLEMENT_ALREADY_CONFIRMED 409
  SELF_SETTLEMENT             422
  NON_POSITIVE_AMOUNT         400 — rejected by the schema
  PARTICIPANT_NOT_MEMBER      422
  FORBIDDEN                   403
"""

from __future__ import annotations

import pytest

from settleup.app.services import settlement_service

from .conftest import (
    auth_headers,
    get_balances,
    make_group,
    make_settlement,
    register,
)


@pytest.fixture
def pair(client):
    """Alice (admin) and Bob in one group; returns (alice, bob, group)."""
    alice = register(client, "Alice", phone="5550100001")
    bob = register(client, "Bob", phone="5550100002")
    group = make_group(client, alice["access_token"], "Pair", members=[{"phone": "5550100002"}])
    return alice, bob, group


def _list(client, token, group_id) -> list[dict]:
    resp = client.get(f"/api/v1/groups/{group_id}/settlements", headers=auth_headers(token))
    assert resp.status_code == 200
    return resp.get_json()["data"]


def _notifications(client, token) -> list[dict]:
    resp = client.get("/api/v1/notifications/", headers=auth_headers(token))
    assert resp.status_code == 200
    return resp.get_json()["data"]


# ═══════════════════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════════════════

class TestCreate:

    def test_create_is_pending_and_notifies_recipient(self, client, pair):
        alice, bob, group = pair

        resp = make_settlement(
            client, bob["access_token"], group["id"], "25.00",
            to_user_id=alice["user"]["id"], note="cash",
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["status"] == "pending"
        assert data["from_user_id"] == bob["user"]["id"]
        assert data["amount"] == "25.00"
        assert data["confirmed_at"] is None

        notes = _notifications(client, alice["access_token"])
        assert notes[0]["kind"] == "settlement_requested"
        assert notes[0]["payload"]["settlement_id"] == data["id"]

    def test_second_pending_same_direction_conflicts(self, client, pair):
        alice, bob, group = pair
        make_settlement(client, bob["access_token"], group["id"], "25.00", to_user_id=alice["user"]["id"])

        resp = make_settlement(client, bob["access_token"], group["id"], "5.00", to_user_id=alice["user"]["id"])

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "SETTLEMENT_PENDING_EXISTS"
        assert len(_list(client, alice["access_token"], group["id"])) == 1

    def test_unique_index_rejects_racing_pending_create(self, client, pair, monkeypatch):
        """A create that slips past the pending lookup hits the partial unique index."""
        alice, bob, group = pair
        make_settlement(client, bob["access_token"], group["id"], "25.00", to_user_id=alice["user"]["id"])
        monkeypatch.setattr(settlement_service, "_find_pending", lambda *args: None)

        resp = make_settlement(client, bob["access_token"], group["id"], "5.00", to_user_id=alice["user"]["id"])

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "SETTLEMENT_PENDING_EXISTS"
        pending = [
            s for s in _list(client, alice["access_token"], group["id"])
            if s["status"] == "pending"
        ]
        assert [s["amount"] for s in pending] == ["25.00"]

    def test_opposite_direction_allowed(self, client, pair):
        alice, bob, group = pair
        make_settlement(client, bob["access_token"], group["id"], "25.00", to_user_id=alice["user"]["id"])

        resp = make_settlement(client, alice["access_token"], group["id"], "5.00", to_user_id=bob["user"]["id"])

        assert resp.status_code == 201

    def test_self_settlement(self, client, pair):
        alice, bob, group = pair

        resp = make_settlement(client, alice["access_token"], group["id"], "5.00", to_user_id=alice["user"]["id"])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SELF_SETTLEMENT"

    @pytest.mark.parametrize("amount", ["0", "-3.00"])
    def test_non_positive_amount(self, client, pair, amount):
        alice, bob, group = pair

        resp = make_settlement(client, bob["access_token"], group["id"], amount, to_user_id=alice["user"]["id"])

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "NON_POSITIVE_AMOUNT"

    def test_recipient_not_member(self, client, pair):
        alice, bob, group = pair
        eve = register(client, "Eve", phone="5550100005")

        resp = make_settlement(client, bob["access_token"], group["id"], "5.00", to_user_id=eve["user"]["id"])

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_MEMBER"

    def test_member_cannot_record_for_someone_else(self, client, pair):
        alice, bob, group = pair

        resp = make_settlement(
            client, bob["access_token"], group["id"], "5.00",
            from_user_id=alice["user"]["id"], to_user_id=bob["user"]["id"],
        )

        assert resp.status_code == 403

    def test_mark_received_is_confirmed_immediately(self, client, pair):
        alice, bob, group = pair

        resp = make_settlement(
            client, alice["access_token"], group["id"], "12.00",
            from_user_id=bob["user"]["id"], mark_received=True,
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["status"] == "confirmed"
        assert data["to_user_id"] == alice["user"]["id"]
        assert data["confirmed_at"] is not None

        balances = get_balances(client, alice["access_token"], group["id"])
        assert balances["balance_sum"] == "0.00"
        assert _notifications(client, bob["access_token"])[0]["kind"] == "settlement_confirmed"


# ═══════════════════════════════════════════════════════════════════════════
# Confirm / reject / delete
# ═══════════════════════════════════════════════════════════════════════════

def _pending_id(client, pair) -> int:
    alice, bob, group = pair
    resp = make_settlement(client, bob["access_token"], group["id"], "25.00", to_user_id=alice["user"]["id"])
    return resp.get_json()["data"]["id"]


class TestConfirm:

    def test_recipient_confirms(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)

        resp = client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "confirmed"
        assert _notifications(client, bob["access_token"])[0]["kind"] == "settlement_confirmed"

    def test_payer_cannot_confirm(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)

        resp = client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(bob["access_token"]))

        assert resp.status_code == 403

    def test_double_confirm_conflicts(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)
        client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        resp = client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "SETTLEMENT_ALREADY_CONFIRMED"

    def test_new_pending_allowed_after_confirm(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)
        client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        resp = make_settlement(client, bob["access_token"], group["id"], "1.00", to_user_id=alice["user"]["id"])

        assert resp.status_code == 201

    def test_missing_settlement_404(self, client, pair):
        alice, bob, group = pair

        resp = client.post("/api/v1/settlements/9999/confirm", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SETTLEMENT_NOT_FOUND"


class TestReject:

    def test_recipient_rejects_and_row_is_gone(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)

        resp = client.post(f"/api/v1/settlements/{sid}/reject", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"rejected": True, "settlement_id": sid}
        assert _list(client, alice["access_token"], group["id"]) == []
        assert _notifications(client, bob["access_token"])[0]["kind"] == "settlement_rejected"

    def test_cannot_reject_confirmed(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)
        client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        resp = client.post(f"/api/v1/settlements/{sid}/reject", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 409


class TestDelete:

    def test_payer_deletes_pending(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)

        resp = client.delete(f"/api/v1/settlements/{sid}", headers=auth_headers(bob["access_token"]))

        assert resp.status_code == 200
        assert _list(client, bob["access_token"], group["id"]) == []

    def test_party_cannot_delete_confirmed(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)
        client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        resp = client.delete(f"/api/v1/settlements/{sid}", headers=auth_headers(bob["access_token"]))

        assert resp.status_code == 409

    def test_admin_deletes_confirmed(self, client, pair):
        alice, bob, group = pair
        sid = _pending_id(client, pair)
        client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth_headers(alice["access_token"]))

        resp = client.delete(f"/api/v1/settlements/{sid}", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 200


def test_list_visibility(client, pair):
    alice, bob, group = pair
    carol = register(client, "Carol", phone="5550100003")
    client.post(
        f"/api/v1/groups/{group['id']}/members",
        json={"phone": "5550100003"},
        headers=auth_headers(alice["access_token"]),
    )
    make_settlement(client, bob["access_token"], group["id"], "5.00", to_user_id=alice["user"]["id"])

    assert len(_list(client, alice["access_token"], group["id"])) == 1
    assert len(_list(client, bob["access_token"], group["id"])) == 1
    assert _list(client, carol["access_token"], group["id"]) == []


def test_mark_notification_read(client, pair):
    alice, bob, group = pair
    _pending_id(client, pair)
    note_id = _notifications(client, alice["access_token"])[0]["id"]

    resp = client.post(f"/api/v1/notifications/{note_id}/read", headers=auth_headers(alice["access_token"]))
    assert resp.status_code == 200
    assert resp.get_json()["data"]["read_at"] is not None

    unread = client.get(
        "/api/v1/notifications/",
        query_string={"unread": "true"},
        headers=auth_headers(alice["access_token"]),
    ).get_json()["data"]
    assert unread == []

    resp = client.post(f"/api/v1/notifications/{note_id}/read", headers=auth_headers(bob["access_token"]))
    assert resp.status_code == 404
