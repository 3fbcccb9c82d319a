from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from loyalty.core.clock import Clock, utcnow
from loyalty.models.loyalty_account import LoyaltyAccount
from loyalty.services.errors import AccountNotFound, InsufficientPoints

logger = logging.getLogger(__name__)
LEDGER_PREFIX = "[LEDGER]"


class LoyaltyLedger:
    """Saldo de pontos por (cliente, loja).

    Débito e crédito são um único UPDATE condicional na linha da conta, então
    duas reservas concorrentes nunca deixam o saldo negativo. Cada operação
    faz commit próprio.
    """

    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def get_account(self, customer_id: int, shop_id: int) -> LoyaltyAccount:
        account = (
            self.db.query(LoyaltyAccount)
            .filter(
                LoyaltyAccount.app_user_id == customer_id,
                LoyaltyAccount.shop_id == shop_id,
                LoyaltyAccount.is_active.is_(True),
            )
            .first()
        )
        if account is None:
            raise AccountNotFound(customer_id, shop_id)
        return account

    def get_balance(self, customer_id: int, shop_id: int) -> int:
        return int(self.get_account(customer_id, shop_id).points_balance)

    def debit(self, customer_id: int, shop_id: int, amount: int) -> int:
        amount = _validate_amount(amount)
        account = self.get_account(customer_id, shop_id)

        stmt = (
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id, LoyaltyAccount.points_balance >= amount)
            .values(points_balance=LoyaltyAccount.points_balance - amount, updated_at=self._clock())
            .returning(LoyaltyAccount.points_balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = self.db.execute(stmt).scalar_one_or_none()
        if new_balance is None:
            self.db.rollback()
            available = self._read_balance(account.id)
            logger.info(
                "%s debit refused account_id=%s required=%s available=%s",
                LEDGER_PREFIX,
                account.id,
                amount,
                available,
            )
            raise InsufficientPoints(required=amount, available=available)

        self.db.commit()
        logger.info(
            "%s debit account_id=%s amount=%s balance_after=%s",
            LEDGER_PREFIX,
            account.id,
            amount,
            new_balance,
        )
        return int(new_balance)

    def credit(self, customer_id: int, shop_id: int, amount: int) -> int:
        amount = _validate_amount(amount)
        account = self.get_account(customer_id, shop_id)

        stmt = (
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id)
            .values(points_balance=LoyaltyAccount.points_balance + amount, updated_at=self._clock())
            .returning(LoyaltyAccount.points_balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = self.db.execute(stmt).scalar_one()
        self.db.commit()
        logger.info(
            "%s credit account_id=%s amount=%s balance_after=%s",
            LEDGER_PREFIX,
            account.id,
            amount,
            new_balance,
        )
        return int(new_balance)

    def _read_balance(self, account_id: int) -> int:
        balance = (
            self.db.query(LoyaltyAccount.points_balance)
            .filter(LoyaltyAccount.id == account_id)
            .scalar()
        )
        return int(balance or 0)


def _validate_amount(amount: int) -> int:
    if isinstance(amount, bool) or int(amount) != amount:
        raise ValueError("amount must be an integer number of points")
    if amount < 0:
        raise ValueError("amount must be non-negative")
    return int(amount)
