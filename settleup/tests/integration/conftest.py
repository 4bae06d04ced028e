"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    defaults to in-memory SQLite. Set TEST_DATABASE_URL to run the same
    suite against PostgreSQL.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are
    isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)    → dict with user + access token
  - login(client, ...)       → dict with user + access token
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)  → group dict
  - add_member(...)          → HTTP response
  - make_expense(...)        → HTTP response
  - make_settlement(...)     → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from settleup.app import create_app
from settleup.app.extensions import db as _db

# Child tables first.
_TABLES = (
    "notifications",
    "expense_item_participants",
    "expense_items",
    "splits",
    "settlements",
    "expenses",
    "pending_members",
    "memberships",
    "groups",
    "users",
)


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.session.remove()
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after EVERY test in the integration suite."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        for table in _TABLES:
            _db.session.execute(text(f"DELETE FROM {table}"))
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    name: str = "Alice",
    phone: str = "5550100001",
    email: str | None = None,
    password: str = "Password1",
) -> dict:
    """
    Registers a new user and returns the full response data dict.
    Returns: {"user": {...}, "access_token": "...", "reconciled": {...}}
    """
    if email is None:
        email = f"{name.lower()}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"name": name, "email": email, "phone": phone, "password": password},
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, identifier: str, password: str = "Password1") -> dict:
    """identifier is an email or a phone number."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"identifier": identifier, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(
    client,
    token: str,
    name: str = "Test Group",
    members: list[dict] | None = None,
) -> dict:
    """
    Creates a group and returns the group data dict.
    The caller (token owner) becomes the creator and first admin.
    """
    payload: dict = {"name": name}
    if members is not None:
        payload["members"] = members
    resp = client.post(
        "/api/v1/groups/",
        json=payload,
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, group_id: int, phone: str, name: str | None = None):
    """Adds someone by phone (admin token required). Returns the HTTP response."""
    payload: dict = {"phone": phone}
    if name is not None:
        payload["name"] = name
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json=payload,
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    group_id: int,
    amount: str,
    splits: list[dict] | None = None,
    description: str = "Test Expense",
    split_mode: str = "custom",
    **extra,
):
    """
    Creates an expense and returns the HTTP response.
    For split_mode='equal', do not pass splits; the server computes them.
    For split_mode='custom', pass splits as {user_id | pending_member_id, amount}.
    extra carries paid_by_user_id, paid_by_pending_id, items, category, ...
    """
    payload: dict = {
        "description": description,
        "amount": amount,
        "split_mode": split_mode,
        **extra,
    }
    if splits is not None:
        payload["splits"] = splits

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def make_settlement(client, token: str, group_id: int, amount: str, **extra):
    """extra carries to_user_id, from_user_id, mark_received, note."""
    return client.post(
        f"/api/v1/groups/{group_id}/settlements",
        json={"amount": amount, **extra},
        headers=auth_headers(token),
    )


def get_balances(client, token: str, group_id: int, **params) -> dict:
    resp = client.get(
        f"/api/v1/groups/{group_id}/balances",
        query_string=params,
        headers=auth_headers(token),
    )
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return resp.get_json()["data"]


def balance_of(data: dict, kind: str, participant_id: int) -> str:
    for entry in data["balances"]:
        if entry["kind"] == kind and entry["id"] == participant_id:
            return entry["balance"]
    raise AssertionError(f"{kind}:{participant_id} not in balances")


def debt_tuples(data: dict) -> set[tuple[int, int, str]]:
    """{(from id, to id, amount)} of the simplified_debts list."""
    return {
        (d["from"]["id"], d["to"]["id"], d["amount"])
        for d in data["simplified_debts"]
    }
