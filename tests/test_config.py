from __future__ import annotations

import logging

import pytest

from core.env import env_bool, env_csv, env_int, env_str
from core.logging import resolve_log_level
from web.deps_admin import load_admin_token_map


def test_env_str_treats_blank_as_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BILLING_TEST_VALUE", "   ")
    assert env_str("BILLING_TEST_VALUE", "fallback") == "fallback"
    monkeypatch.setenv("BILLING_TEST_VALUE", " value ")
    assert env_str("BILLING_TEST_VALUE") == "value"


@pytest.mark.parametrize(("raw", "expected"), [("21", 21), ("0", 14), ("abc", 14)])
def test_env_int_respects_minimum(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    monkeypatch.setenv("BILLING_TEST_INT", raw)
    assert env_int("BILLING_TEST_INT", 14, minimum=1) == expected


@pytest.mark.parametrize(("raw", "expected"), [("YES", True), ("off", False), ("maybe", True)])
def test_env_bool(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("BILLING_TEST_FLAG", raw)
    assert env_bool("BILLING_TEST_FLAG", True) is expected


def test_env_csv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BILLING_TEST_LIST", " a, ,b ,")
    assert env_csv("BILLING_TEST_LIST") == ["a", "b"]
    monkeypatch.delenv("BILLING_TEST_LIST")
    assert env_csv("BILLING_TEST_LIST") == []


def test_resolve_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert resolve_log_level() == logging.DEBUG
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    assert resolve_log_level(logging.WARNING) == logging.WARNING


def test_admin_token_map(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADMIN_API_TOKENS", "ops:tok-1, billing=tok-2, tok-3")
    monkeypatch.setenv("ADMIN_API_TOKEN", "tok-4")
    monkeypatch.setenv("ADMIN_API_ACTOR", "cron")
    assert load_admin_token_map() == {"tok-1": "ops", "tok-2": "billing", "tok-3": "cron", "tok-4": "cron"}
