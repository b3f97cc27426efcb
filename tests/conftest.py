import os
from pathlib import Path
from typing import Callable, Generator

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import database as database_module
import models  # noqa: F401  # registers subscription tables on Base.metadata
from database import Base
from services.payments.paypal_webhook_store import PayPalWebhookStore
from services.subscription_store import SubscriptionStore


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database per test."""
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine, monkeypatch: pytest.MonkeyPatch) -> Callable[[], Session]:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(database_module, "SessionLocal", factory)
    monkeypatch.setattr(database_module, "engine", engine)
    return factory


@pytest.fixture()
def store(session_factory: Callable[[], Session]) -> SubscriptionStore:
    return SubscriptionStore(session_factory=session_factory)


@pytest.fixture()
def webhook_events(session_factory: Callable[[], Session]) -> PayPalWebhookStore:
    return PayPalWebhookStore(session_factory=session_factory)


@pytest.fixture(autouse=True)
def catalog_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the plan catalog at an isolated file so defaults are used."""
    target = tmp_path / "plan_catalog.json"
    monkeypatch.setenv("PLAN_CATALOG_FILE", str(target))
    monkeypatch.delenv("PAYPAL_TEST_BUTTON_ID", raising=False)
    monkeypatch.delenv("PAYMENTS_ENABLE_TEST_PLAN", raising=False)
    monkeypatch.delenv("PAYPAL_MONTHLY_PLAN_ID", raising=False)
    monkeypatch.delenv("PAYPAL_YEARLY_PLAN_ID", raising=False)
    return target
