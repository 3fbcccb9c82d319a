from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from loyalty.models.app_user import AppUser
from loyalty.models.loyalty_account import LoyaltyAccount
from loyalty.models.shop import SHOP_STATUS_ACTIVE, Shop
from loyalty.services.auth import hash_password

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[CUSTOMER_BOOTSTRAP]"

DEFAULT_INITIAL_POINTS = 2000
MAX_TEST_SHOPS = 5


@dataclass
class BootstrappedCustomer:
    customer: AppUser
    created: bool
    accounts: list[LoyaltyAccount] = field(default_factory=list)


def ensure_loyalty_tables(engine: Engine) -> None:
    inspector = inspect(engine)
    missing = [
        table
        for table in ("app_users", "shops", "customer_loyalty_accounts")
        if not inspector.has_table(table)
    ]
    if missing:
        raise RuntimeError(
            f"Tabelas não encontradas: {', '.join(missing)}. Rode `alembic upgrade head` primeiro."
        )


def upsert_test_customer(
    db: Session,
    *,
    email: str,
    password: str | None,
    first_name: str | None = None,
    last_name: str | None = None,
    initial_points: int = DEFAULT_INITIAL_POINTS,
    shop_ids: list[int] | None = None,
) -> BootstrappedCustomer:
    """Cliente de teste com conta de pontos nas lojas ativas (até 5 quando ``shop_ids`` é omitido).

    Contas já existentes não são tocadas: o saldo só muda pelo ledger.
    """
    if initial_points < 0:
        raise ValueError("Pontos iniciais não podem ser negativos.")

    normalized_email = email.strip().lower()
    customer = db.query(AppUser).filter(func.lower(AppUser.email) == normalized_email).first()
    created = customer is None
    if customer is None:
        if not password:
            raise ValueError("Senha é obrigatória para criar um novo cliente.")
        customer = AppUser(
            email=normalized_email,
            first_name=first_name,
            last_name=last_name,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(customer)
        db.flush()
    else:
        customer.first_name = first_name or customer.first_name
        customer.last_name = last_name or customer.last_name
        customer.is_active = True
        if password:
            customer.password_hash = hash_password(password)

    shops_query = db.query(Shop).filter(Shop.status == SHOP_STATUS_ACTIVE).order_by(Shop.id.asc())
    if shop_ids:
        shops_query = shops_query.filter(Shop.id.in_(shop_ids))
    else:
        shops_query = shops_query.limit(MAX_TEST_SHOPS)
    shops = shops_query.all()

    accounts = []
    for shop in shops:
        account = (
            db.query(LoyaltyAccount)
            .filter(LoyaltyAccount.app_user_id == customer.id, LoyaltyAccount.shop_id == shop.id)
            .first()
        )
        if account is None:
            account = LoyaltyAccount(
                app_user_id=customer.id,
                shop_id=shop.id,
                points_balance=int(initial_points),
                is_active=True,
            )
            db.add(account)
        accounts.append(account)

    db.commit()
    db.refresh(customer)
    for account in accounts:
        db.refresh(account)

    logger.info(
        "%s customer_id=%s created=%s accounts=%s",
        BOOTSTRAP_PREFIX,
        customer.id,
        created,
        len(accounts),
    )
    return BootstrappedCustomer(customer=customer, created=created, accounts=accounts)
