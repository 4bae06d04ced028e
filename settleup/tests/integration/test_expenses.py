"""
tests/integration/test_expenses.py — Expense endpoints.

Endpoints covered:
  POST   /groups/:id/expenses   → 201 (equal / custom / itemized)
  GET    /groups/:id/expenses   → 200 (active only, newest first)
  GET    /expenses/:id          → 200 (deleted ones too)
  PUT    /expenses/:id          → 200 (creator or admin; splits recomputed)
  DELETE /expenses/:id          → 200 (soft delete, idempotent)

Write-time rules:
  SPLIT_SUM_MISMATCH       422 — splits must add up to the amount exactly
  PARTICIPANT_NOT_MEMBER   422
  PAYER_NOT_MEMBER         422
  EXPENSE_DELETED          422
  INVALID_AMOUNT_PRECISION 400 — rejected, never rounded
"""

from __future__ import annotations

import pytest

from .conftest import (
    add_member,
    auth_headers,
    make_expense,
    make_group,
    register,
)


@pytest.fixture
def trio(client):
    alice = register(client, "Alice", phone="5550100001")
    bob = register(client, "Bob", phone="5550100002")
    group = make_group(client, alice["access_token"], "Trip", members=[
        {"phone": "5550100002"},
        {"phone": "5550100009", "name": "Dev"},
    ])
    return alice, bob, group


def _shares(expense: dict) -> dict[tuple, str]:
    return {
        (s["user_id"], s["pending_member_id"]): s["amount"]
        for s in expense["splits"]
    }


# ═══════════════════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════════════════

class TestCreate:

    def test_equal_split_includes_pending_and_payer_gets_remainder(self, client, trio):
        alice, bob, group = trio
        a, b = alice["user"]["id"], bob["user"]["id"]
        dev = group["pending_members"][0]["id"]

        resp = make_expense(client, bob["access_token"], group["id"], "10.00", split_mode="equal")

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["paid_by_user_id"] == b
        assert data["paid_by_name"] == "Bob"
        assert data["category"] == "other"
        assert data["split_mode"] == "equal"
        assert _shares(data) == {
            (a, None): "3.33",
            (b, None): "3.34",
            (None, dev): "3.33",
        }

    def test_custom_split(self, client, trio):
        alice, bob, group = trio
        dev = group["pending_members"][0]["id"]

        resp = make_expense(
            client, alice["access_token"], group["id"], "50.00",
            splits=[
                {"user_id": bob["user"]["id"], "amount": "20.00"},
                {"pending_member_id": dev, "amount": "30.00"},
            ],
            category="food",
            expense_date="2026-03-14",
            notes="tapas",
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["category"] == "food"
        assert data["expense_date"] == "2026-03-14"
        assert data["notes"] == "tapas"
        assert len(data["splits"]) == 2

    def test_custom_split_sum_mismatch(self, client, trio):
        alice, bob, group = trio

        resp = make_expense(
            client, alice["access_token"], group["id"], "50.00",
            splits=[{"user_id": bob["user"]["id"], "amount": "49.99"}],
        )

        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "SPLIT_SUM_MISMATCH"
        assert error["field"] == "splits"

    def test_itemized(self, client, trio):
        alice, bob, group = trio
        a, b = alice["user"]["id"], bob["user"]["id"]
        dev = group["pending_members"][0]["id"]

        resp = make_expense(
            client, alice["access_token"], group["id"], "45.00",
            split_mode="itemized",
            items=[
                {"name": "Pizza", "amount": "30.00", "user_ids": [a, b], "pending_member_ids": [dev]},
                {"name": "Wine", "amount": "15.00", "user_ids": [b]},
            ],
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert _shares(data) == {
            (a, None): "10.00",
            (b, None): "25.00",
            (None, dev): "10.00",
        }
        assert [i["name"] for i in data["items"]] == ["Pizza", "Wine"]
        assert len(data["items"][0]["participants"]) == 3

    def test_pending_member_as_payer(self, client, trio):
        alice, bob, group = trio
        dev = group["pending_members"][0]["id"]

        resp = make_expense(
            client, bob["access_token"], group["id"], "9.00",
            split_mode="equal", paid_by_pending_id=dev,
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["paid_by_user_id"] is None
        assert data["paid_by_pending_id"] == dev
        assert data["paid_by_name"] == "Dev"
        assert data["created_by_user_id"] == bob["user"]["id"]

    def test_split_for_non_member(self, client, trio):
        alice, bob, group = trio
        eve = register(client, "Eve", phone="5550100005")

        resp = make_expense(
            client, alice["access_token"], group["id"], "10.00",
            splits=[{"user_id": eve["user"]["id"], "amount": "10.00"}],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PARTICIPANT_NOT_MEMBER"

    def test_unknown_pending_payer(self, client, trio):
        alice, bob, group = trio

        resp = make_expense(
            client, alice["access_token"], group["id"], "10.00",
            split_mode="equal", paid_by_pending_id=9999,
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PAYER_NOT_MEMBER"

    def test_precision_rejected(self, client, trio):
        alice, bob, group = trio

        resp = make_expense(client, alice["access_token"], group["id"], "10.005", split_mode="equal")

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "amount"

    def test_nested_split_error_has_dotted_field(self, client, trio):
        alice, bob, group = trio

        resp = make_expense(
            client, alice["access_token"], group["id"], "10.00",
            splits=[{"user_id": bob["user"]["id"], "amount": "1.001"}],
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "splits.0.amount"

    def test_non_member_forbidden(self, client, trio):
        alice, bob, group = trio
        eve = register(client, "Eve", phone="5550100005")

        resp = make_expense(client, eve["access_token"], group["id"], "10.00", split_mode="equal")

        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Read / update / delete
# ═══════════════════════════════════════════════════════════════════════════

def test_list_newest_first(client, trio):
    alice, bob, group = trio
    make_expense(client, alice["access_token"], group["id"], "3.00", split_mode="equal",
                 description="Old", expense_date="2026-01-01")
    make_expense(client, alice["access_token"], group["id"], "3.00", split_mode="equal",
                 description="New", expense_date="2026-02-01")

    resp = client.get(f"/api/v1/groups/{group['id']}/expenses", headers=auth_headers(bob["access_token"]))

    assert resp.status_code == 200
    assert [e["description"] for e in resp.get_json()["data"]] == ["New", "Old"]


class TestUpdate:

    def _create(self, client, token, group_id) -> int:
        resp = make_expense(client, token, group_id, "30.00", split_mode="equal")
        return resp.get_json()["data"]["id"]

    def test_full_update_recomputes_splits(self, client, trio):
        alice, bob, group = trio
        expense_id = self._create(client, alice["access_token"], group["id"])

        resp = client.put(
            f"/api/v1/expenses/{expense_id}",
            json={
                "description": "Dinner (fixed)",
                "amount": "40.00",
                "split_mode": "custom",
                "splits": [
                    {"user_id": alice["user"]["id"], "amount": "10.00"},
                    {"user_id": bob["user"]["id"], "amount": "30.00"},
                ],
            },
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["amount"] == "40.00"
        assert data["paid_by_user_id"] == alice["user"]["id"]
        assert data["updated_at"] is not None
        assert _shares(data) == {
            (alice["user"]["id"], None): "10.00",
            (bob["user"]["id"], None): "30.00",
        }

    def test_update_back_to_same_participants(self, client, trio):
        """Re-writing splits for the same people must not trip unique constraints."""
        alice, bob, group = trio
        expense_id = self._create(client, alice["access_token"], group["id"])

        resp = client.put(
            f"/api/v1/expenses/{expense_id}",
            json={"description": "Again", "amount": "60.00", "split_mode": "equal"},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 200
        assert len(resp.get_json()["data"]["splits"]) == 3

    def test_other_member_cannot_update(self, client, trio):
        alice, bob, group = trio
        expense_id = self._create(client, alice["access_token"], group["id"])

        resp = client.put(
            f"/api/v1/expenses/{expense_id}",
            json={"description": "Mine now", "amount": "30.00", "split_mode": "equal"},
            headers=auth_headers(bob["access_token"]),
        )

        assert resp.status_code == 403

    def test_update_deleted_expense(self, client, trio):
        alice, bob, group = trio
        expense_id = self._create(client, alice["access_token"], group["id"])
        client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice["access_token"]))

        resp = client.put(
            f"/api/v1/expenses/{expense_id}",
            json={"description": "Zombie", "amount": "30.00", "split_mode": "equal"},
            headers=auth_headers(alice["access_token"]),
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "EXPENSE_DELETED"


class TestDelete:

    def test_soft_delete_hides_from_list_but_not_get(self, client, trio):
        alice, bob, group = trio
        resp = make_expense(client, alice["access_token"], group["id"], "30.00", split_mode="equal")
        expense_id = resp.get_json()["data"]["id"]

        resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 200

        listed = client.get(
            f"/api/v1/groups/{group['id']}/expenses",
            headers=auth_headers(alice["access_token"]),
        ).get_json()["data"]
        assert listed == []

        single = client.get(
            f"/api/v1/expenses/{expense_id}",
            headers=auth_headers(alice["access_token"]),
        ).get_json()["data"]
        assert single["deleted_at"] is not None

    def test_delete_twice_is_ok(self, client, trio):
        alice, bob, group = trio
        resp = make_expense(client, alice["access_token"], group["id"], "30.00", split_mode="equal")
        expense_id = resp.get_json()["data"]["id"]

        client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice["access_token"]))
        resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 200

    def test_non_payer_member_cannot_delete(self, client, trio):
        alice, bob, group = trio
        resp = make_expense(client, alice["access_token"], group["id"], "30.00", split_mode="equal")
        expense_id = resp.get_json()["data"]["id"]

        resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(bob["access_token"]))

        assert resp.status_code == 403

    def test_missing_expense_404(self, client, trio):
        alice, bob, group = trio

        resp = client.delete("/api/v1/expenses/9999", headers=auth_headers(alice["access_token"]))

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"
