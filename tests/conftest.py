"""Shared fixtures: a fresh SQLite database per test plus small factories."""

import itertools
import os
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

# Must be set before payouts.core.database builds the module-level engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
import pytz
from sqlalchemy.orm import sessionmaker

from payouts.core.database import Base, make_engine
from payouts.models import Commission, Order, PayoutRequest, User
from payouts.models.payout_settings import DEFAULT_SETTINGS
from payouts.schemas.payout_settings import PayoutPolicy

NAIROBI = pytz.timezone("Africa/Nairobi")
BASE_TIME = datetime(2026, 10, 1, 9, 0, 0)


def nairobi(*args) -> datetime:
    return NAIROBI.localize(datetime(*args))


def default_policy(**overrides) -> PayoutPolicy:
    policy = PayoutPolicy.from_row(SimpleNamespace(version=1, **DEFAULT_SETTINGS))
    return policy.model_copy(update=overrides) if overrides else policy


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'payouts.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role: str = "agent", **fields) -> User:
        n = next(counter)
        values = {
            "email": f"{role}{n}@example.com",
            "full_name": f"{role.title()} {n}",
            "role": role,
            "is_active": True,
        }
        values.update(fields)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def agent(make_user):
    return make_user("agent", phone="0712345678")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_order(db):
    counter = itertools.count(1)

    def _make(total="1000", item_count: int = 1, **fields) -> Order:
        n = next(counter)
        values = {
            "order_number": f"ORD-{n:05d}",
            "total_price": Decimal(str(total)),
            "item_count": item_count,
            "status": "pending",
            "created_by": "customer",
        }
        values.update(fields)
        order = Order(**values)
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def make_commission(db, make_order):
    """Insert a ledger entry directly; each gets its own order and a later created_at."""
    counter = itertools.count(0)

    def _make(agent: User, amount, status: str = "pending", created_at: datetime = None, **fields) -> Commission:
        n = next(counter)
        order = make_order(total=Decimal(str(amount)) * 10)
        values = {
            "order_id": order.id,
            "agent_id": agent.id,
            "type": "agent_order",
            "amount": Decimal(str(amount)),
            "order_total": order.total_price,
            "commission_rate": Decimal("0.1"),
            "is_fixed_amount": False,
            "delivery_count": 1,
            "description": f"Test commission {n}",
            "status": status,
            "settings_version": 1,
            "created_at": created_at or BASE_TIME + timedelta(minutes=n),
        }
        values.update(fields)
        commission = Commission(**values)
        db.add(commission)
        db.commit()
        db.refresh(commission)
        return commission

    return _make


@pytest.fixture
def make_payout_request(db):
    """Insert a payout request row without going through validation."""

    def _make(agent: User, amount, status: str = "approved", **fields) -> PayoutRequest:
        values = {
            "agent_id": agent.id,
            "amount": Decimal(str(amount)),
            "method": "mobile_money",
            "account_details": "0712345678",
            "status": status,
            "notes": "",
            "commission_ids": [],
        }
        values.update(fields)
        payout = PayoutRequest(**values)
        db.add(payout)
        db.commit()
        db.refresh(payout)
        return payout

    return _make
