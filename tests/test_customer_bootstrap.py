import pytest

from loyalty.models.loyalty_account import LoyaltyAccount
from loyalty.models.shop import SHOP_STATUS_INACTIVE, Shop
from loyalty.services.auth import verify_password
from loyalty.services.customer_bootstrap import ensure_loyalty_tables, upsert_test_customer
from tests.fixtures_data import HAPPY_PATH_CUSTOMER, HAPPY_PATH_SHOP, OTHER_SHOP
from tests.loyalty_db import build_seeded_session


def test_new_customer_gets_accounts_in_active_shops():
    db = build_seeded_session()
    db.get(Shop, OTHER_SHOP["id"]).status = SHOP_STATUS_INACTIVE
    db.commit()

    result = upsert_test_customer(db, email="  Novo@Example.com ", password="senha123", first_name="Novo")

    assert result.created is True
    assert result.customer.email == "novo@example.com"
    assert verify_password("senha123", result.customer.password_hash)
    assert [(account.shop_id, account.points_balance) for account in result.accounts] == [
        (HAPPY_PATH_SHOP["id"], 2000)
    ]


def test_existing_customer_keeps_balance_and_gains_missing_accounts():
    db = build_seeded_session(points_balance=75)

    result = upsert_test_customer(
        db,
        email=HAPPY_PATH_CUSTOMER["email"],
        password=None,
        initial_points=900,
        shop_ids=[HAPPY_PATH_SHOP["id"], OTHER_SHOP["id"]],
    )

    assert result.created is False
    balances = {account.shop_id: account.points_balance for account in result.accounts}
    assert balances == {HAPPY_PATH_SHOP["id"]: 75, OTHER_SHOP["id"]: 900}
    assert db.query(LoyaltyAccount).count() == 2


def test_new_customer_requires_password():
    db = build_seeded_session()

    with pytest.raises(ValueError):
        upsert_test_customer(db, email="sem-senha@example.com", password=None)


def test_negative_initial_points_are_rejected():
    db = build_seeded_session()

    with pytest.raises(ValueError):
        upsert_test_customer(db, email="x@example.com", password="abc", initial_points=-5)


def test_missing_tables_are_reported():
    from sqlalchemy import create_engine

    with pytest.raises(RuntimeError, match="alembic upgrade head"):
        ensure_loyalty_tables(create_engine("sqlite://"))
