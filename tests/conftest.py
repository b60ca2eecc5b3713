import os
from datetime import datetime, timedelta, timezone
from threading import Lock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import stockledger.models  # noqa: F401
from stockledger.core.deps import get_item_service, get_ledger_service, get_session_factory
from stockledger.core.locks import KeyedLockRegistry
from stockledger.db.base import Base
from stockledger.main import app
from stockledger.models.stock_event import StockChangeReason as R
from stockledger.services.item_service import ItemService
from stockledger.services.ledger_service import LedgerService

CLOCK_START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns ``current`` and moves it forward by ``step`` on every call."""

    def __init__(self, start: datetime = CLOCK_START, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step
        self._lock = Lock()

    def __call__(self) -> datetime:
        with self._lock:
            value = self.current
            self.current = value + self.step
            return value

    def jump_to(self, moment: datetime) -> None:
        with self._lock:
            self.current = moment


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    yield session_local
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path):
    # Thread tests need real connections per thread, which StaticPool cannot give.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    yield session_local
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def clock():
    return StepClock()


@pytest.fixture()
def locks():
    return KeyedLockRegistry(timeout_seconds=5)


@pytest.fixture()
def ledger(session_factory, locks, clock):
    return LedgerService(session_factory, locks=locks, clock=clock)


@pytest.fixture()
def items(session_factory, locks, clock):
    return ItemService(session_factory, locks=locks, clock=clock)


@pytest.fixture()
def test_context(session_factory, ledger, items):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_ledger_service] = lambda: ledger
    app.dependency_overrides[get_item_service] = lambda: items

    with TestClient(app) as client:
        yield client, session_factory

    app.dependency_overrides.clear()


@pytest.fixture()
def seeded(items, ledger, clock):
    """
    Widget (sup-a) and Gadget (sup-b) with a month and a half of history:

    2026-03-02  Widget opens at 10.00, +100 @10.00, -30; Gadget opens with 10 @4.00
    2026-03-10  Widget +50 @12.00, -20
    2026-03-12  Widget price -> 15.00
    2026-04-02  Widget -5
    """
    widget = items.create_item(name="Widget", unit_price="10.00", supplier_id="sup-a", actor="admin")
    ledger.record_change(widget.id, 100, R.RECEIVED, "10.00", actor="clerk")
    ledger.record_change(widget.id, -30, R.SOLD, actor="clerk")
    gadget = items.create_item(name="Gadget", unit_price="4.00", quantity=10, supplier_id="sup-b", actor="admin")

    clock.jump_to(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))
    ledger.record_change(widget.id, 50, R.RECEIVED, "12.00", actor="clerk")
    ledger.record_change(widget.id, -20, R.SOLD, actor="clerk")

    clock.jump_to(datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc))
    ledger.record_change(widget.id, 0, R.PRICE_CHANGE, "15.00", actor="pricing")

    clock.jump_to(datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc))
    ledger.record_change(widget.id, -5, R.SOLD, actor="clerk")

    return {"widget": widget.id, "gadget": gadget.id}
