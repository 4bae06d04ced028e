"""
tests/unit/test_config.py — Environment parsing and the production guard.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from settleup import config


def _app(**values):
    return SimpleNamespace(config=values)


def test_first_non_empty_env_skips_blank_values(monkeypatch):
    monkeypatch.setenv("SETTLEUP_A", "")
    monkeypatch.setenv("SETTLEUP_B", "second")

    assert config._first_non_empty_env("SETTLEUP_A", "SETTLEUP_B", default="x") == "second"
    assert config._first_non_empty_env("SETTLEUP_MISSING", default="x") == "x"


@pytest.mark.parametrize("raw, expected", [("900", 900), ("soon", 3600), ("", 3600)])
def test_int_env_falls_back_on_garbage(monkeypatch, raw, expected):
    monkeypatch.setenv("SETTLEUP_TTL", raw)

    assert config._int_env("SETTLEUP_TTL", 3600) == expected


def test_production_requires_database_url():
    with pytest.raises(ValueError, match="DATABASE_URL"):
        config.validate_production_config(
            _app(SQLALCHEMY_DATABASE_URI="", SECRET_KEY="s", JWT_SECRET_KEY="j")
        )


@pytest.mark.parametrize("placeholder", ["SECRET_KEY", "JWT_SECRET_KEY"])
def test_production_rejects_placeholder_secrets(placeholder):
    values = {
        "SQLALCHEMY_DATABASE_URI": "postgresql://db/settleup",
        "SECRET_KEY": "s",
        "JWT_SECRET_KEY": "j",
        placeholder: "change-me-in-production",
    }

    with pytest.raises(ValueError, match=placeholder):
        config.validate_production_config(_app(**values))


def test_production_accepts_real_values():
    config.validate_production_config(
        _app(
            SQLALCHEMY_DATABASE_URI="postgresql://db/settleup",
            SECRET_KEY="s",
            JWT_SECRET_KEY="j",
        )
    )


def test_testing_config_uses_fast_hashing():
    assert config.config_by_name["testing"].BCRYPT_LOG_ROUNDS == 4
    assert config.config_by_name["testing"].TESTING is True
