import itertools
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement.database import make_session_factory
from settlement.models import OrderStatus
from settlement.service import SettlementService
from settlement.tables import Client, Driver, Order

DAY = date(2026, 3, 10)
DELIVERED_AT = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)


class Seeder:
    """Writes fixture rows straight through the session factory."""

    def __init__(self, factory):
        self.factory = factory
        self._order_numbers = itertools.count(1)

    def _add(self, row):
        with self.factory() as db, db.begin():
            db.add(row)
        return row

    def driver(self, name="Driver One", wallet_usd="0", wallet_lbp="0"):
        return self._add(Driver(name=name, wallet_usd=Decimal(wallet_usd), wallet_lbp=Decimal(wallet_lbp)))

    def client(self, name="Client One"):
        return self._add(Client(name=name))

    def order(self, driver=None, client=None, **fields):
        values = {
            "order_id": f"ORD-{next(self._order_numbers):04d}",
            "status": OrderStatus.DELIVERED.value,
            "delivered_at": DELIVERED_AT,
            "driver_id": driver.id if driver else None,
            "client_id": client.id if client else None,
        }
        for key, value in fields.items():
            values[key] = Decimal(value) if isinstance(value, str) and key.endswith(("_usd", "_lbp")) else value
        return self._add(Order(**values))

    def rows(self, model, **filters):
        with self.factory() as db:
            stmt = select(model)
            for key, value in filters.items():
                stmt = stmt.where(getattr(model, key) == value)
            return db.scalars(stmt).all()

    def get(self, model, key):
        with self.factory() as db:
            return db.get(model, key)

    def update_order(self, order, **fields):
        with self.factory() as db, db.begin():
            row = db.get(Order, order.id)
            for key, value in fields.items():
                setattr(row, key, value)


@pytest.fixture
def session_factory():
    return make_session_factory("sqlite://")


@pytest.fixture
def service(session_factory):
    return SettlementService(session_factory)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def file_session_factory(tmp_path):
    """A store on disk, so every session gets a connection of its own."""
    factory = make_session_factory(f"sqlite:///{tmp_path / 'settlement.db'}")
    yield factory
    factory.kw["bind"].dispose()
