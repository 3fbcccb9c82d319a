"""Helpers de banco para os testes: SQLite em memória e dados base de uma loja."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from loyalty.core.database import Base
import loyalty.models  # noqa: F401
from loyalty.models.app_user import AppUser
from loyalty.models.coupon import Coupon, CouponLineItem
from loyalty.models.loyalty_account import LoyaltyAccount
from loyalty.models.pos_provider import PosProvider
from loyalty.models.product import Product
from loyalty.models.shop import Shop
from loyalty.models.shop_user import ShopUser
from loyalty.services.auth import hash_password
from tests.fixtures_data import (
    FIXED_ORDER_COUPON,
    FROZEN_NOW,
    HAPPY_PATH_COUPON,
    HAPPY_PATH_CUSTOMER,
    HAPPY_PATH_PRODUCT,
    HAPPY_PATH_SHOP,
    OTHER_POS_PROVIDER,
    OTHER_SHOP,
    POS_PROVIDER,
    SHOP_MANAGER,
)


# hashes calculados uma vez por sessão de testes
_CUSTOMER_PASSWORD_HASH = hash_password(HAPPY_PATH_CUSTOMER["password"])
_MANAGER_PASSWORD_HASH = hash_password(SHOP_MANAGER["password"])


class FakeClock:
    def __init__(self, now=FROZEN_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def build_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def seed_loyalty_data(db: Session, *, points_balance: int = HAPPY_PATH_CUSTOMER["points_balance"]) -> None:
    """Loja com POS, cliente com saldo, produto e dois cupons (percentual no Latte e fixo no pedido)."""
    db.add(PosProvider(**POS_PROVIDER, is_active=True))
    db.add(PosProvider(**OTHER_POS_PROVIDER, is_active=True))
    db.add(Shop(**HAPPY_PATH_SHOP, pos_provider_id=POS_PROVIDER["id"]))
    db.add(Shop(**OTHER_SHOP, pos_provider_id=POS_PROVIDER["id"]))
    db.flush()

    db.add(
        AppUser(
            id=HAPPY_PATH_CUSTOMER["id"],
            email=HAPPY_PATH_CUSTOMER["email"],
            first_name=HAPPY_PATH_CUSTOMER["first_name"],
            last_name=HAPPY_PATH_CUSTOMER["last_name"],
            password_hash=_CUSTOMER_PASSWORD_HASH,
            is_active=True,
        )
    )
    db.add(
        ShopUser(
            id=SHOP_MANAGER["id"],
            shop_id=HAPPY_PATH_SHOP["id"],
            email=SHOP_MANAGER["email"],
            name=SHOP_MANAGER["name"],
            role=SHOP_MANAGER["role"],
            password_hash=_MANAGER_PASSWORD_HASH,
            active=True,
        )
    )
    db.add(Product(**HAPPY_PATH_PRODUCT, shop_id=HAPPY_PATH_SHOP["id"], is_active=True))
    db.flush()

    db.add(
        LoyaltyAccount(
            app_user_id=HAPPY_PATH_CUSTOMER["id"],
            shop_id=HAPPY_PATH_SHOP["id"],
            points_balance=points_balance,
            is_active=True,
        )
    )
    db.add(
        Coupon(
            id=HAPPY_PATH_COUPON["id"],
            shop_id=HAPPY_PATH_SHOP["id"],
            name=HAPPY_PATH_COUPON["name"],
            type=HAPPY_PATH_COUPON["type"],
            points_required=HAPPY_PATH_COUPON["points_required"],
            is_active=True,
            used_count=0,
            line_items=[
                CouponLineItem(
                    position=0,
                    product_id=HAPPY_PATH_PRODUCT["id"],
                    product_name=HAPPY_PATH_PRODUCT["name"],
                    discount_value=Decimal(str(HAPPY_PATH_COUPON["discount_value"])),
                )
            ],
        )
    )
    db.add(
        Coupon(
            id=FIXED_ORDER_COUPON["id"],
            shop_id=HAPPY_PATH_SHOP["id"],
            name=FIXED_ORDER_COUPON["name"],
            type=FIXED_ORDER_COUPON["type"],
            points_required=FIXED_ORDER_COUPON["points_required"],
            is_active=True,
            used_count=0,
            line_items=[
                CouponLineItem(
                    position=0,
                    product_id=None,
                    product_name=None,
                    discount_value=Decimal(str(FIXED_ORDER_COUPON["discount_value"])),
                )
            ],
        )
    )
    db.commit()


def build_seeded_session(**kwargs) -> Session:
    db = build_session_factory()()
    seed_loyalty_data(db, **kwargs)
    return db
