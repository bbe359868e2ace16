"""Shared fixtures: small SQLite databases built through SQLAlchemy."""

import datetime as dt
import os
from decimal import Decimal
from pathlib import Path

import pytest
import sqlalchemy as sa


def build_shop(path: Path, variant: str = "before") -> str:
    """Create a two-table shop database and return its URL.

    The ``after`` variant widens ``customers.name``, adds ``customers.phone``,
    drops table ``legacy``, adds table ``audit`` and changes one order.
    """
    url = f"sqlite:///{path}"
    engine = sa.create_engine(url)
    metadata = sa.MetaData()

    name_length = 40 if variant == "before" else 80
    customer_columns = [
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(name_length), nullable=False),
        sa.Column("email", sa.String(100)),
        sa.Column("created_at", sa.DateTime),
        sa.Column("active", sa.Boolean, server_default="1"),
    ]
    if variant == "after":
        customer_columns.append(sa.Column("phone", sa.String(20)))
    customers = sa.Table("customers", metadata, *customer_columns)
    sa.Index("ix_customers_email", customers.c.email, unique=True)

    orders = sa.Table(
        "orders",
        metadata,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("total", sa.Numeric(10, 2)),
        sa.Column("note", sa.Text),
        sa.Column("placed_on", sa.Date),
    )
    sa.Index("ix_orders_customer_id", orders.c.customer_id)

    if variant == "before":
        sa.Table("legacy", metadata, sa.Column("id", sa.Integer, primary_key=True))
    else:
        sa.Table("audit", metadata, sa.Column("id", sa.Integer, primary_key=True), sa.Column("event", sa.Text))

    metadata.create_all(engine)

    with engine.begin() as conn:
        conn.execute(
            customers.insert(),
            [
                {"id": 1, "name": "Ann", "email": "ann@example.com", "created_at": dt.datetime(2020, 1, 2, 3, 4, 5), "active": True},
                {"id": 2, "name": "Bob", "email": None, "created_at": None, "active": False},
            ],
        )
        conn.execute(
            orders.insert(),
            [
                {"id": 1, "customer_id": 1, "total": Decimal("12.00"), "note": "first", "placed_on": dt.date(2021, 5, 6)},
                {"id": 2, "customer_id": 1, "total": Decimal("7.50"), "note": None, "placed_on": None},
                {"id": 3, "customer_id": 2, "total": Decimal("3.25"), "note": "gift", "placed_on": dt.date(2021, 6, 1)},
            ],
        )
        if variant == "after":
            conn.execute(orders.update().where(orders.c.id == 1).values(total=Decimal("12.30")))
            conn.execute(orders.delete().where(orders.c.id == 3))
            conn.execute(
                orders.insert(),
                [{"id": 4, "customer_id": 2, "total": Decimal("1.00"), "note": None, "placed_on": None}],
            )
    engine.dispose()
    return url


@pytest.fixture
def shop_url(tmp_path: Path) -> str:
    return build_shop(tmp_path / "shop.db")


@pytest.fixture
def shop_after_url(tmp_path: Path) -> str:
    return build_shop(tmp_path / "shop_after.db", variant="after")


@pytest.fixture
def empty_url(tmp_path: Path) -> str:
    path = tmp_path / "empty.db"
    engine = sa.create_engine(f"sqlite:///{path}")
    with engine.connect():
        pass
    engine.dispose()
    return f"sqlite:///{path}"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's SQLDELTA_* settings out of the tests."""
    for key in list(os.environ):
        if key.startswith("SQLDELTA_"):
            monkeypatch.delenv(key)
