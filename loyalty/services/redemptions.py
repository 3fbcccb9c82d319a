from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from loyalty.core.clock import Clock, as_utc, utcnow
from loyalty.core.config import CURRENCY_SYMBOL, REDEMPTION_CODE_REUSE_HOURS
from loyalty.models.coupon import (
    COUPON_TYPE_PERCENTAGE,
    REDEMPTION_STATUS_ACTIVE,
    REDEMPTION_STATUS_CANCELLED,
    REDEMPTION_STATUS_EXPIRED,
    REDEMPTION_STATUS_USED,
    Coupon,
    CouponRedemption,
)
from loyalty.services.coupon_catalog import CouponCatalog
from loyalty.services.errors import (
    AccountNotFound,
    AlreadyFinalizedOrExpired,
    CompensationFailed,
    Expired,
    IdGenerationExhausted,
    LoyaltyError,
    NoLoyaltyAccount,
    RedemptionNotFound,
    ReservationFailed,
    ShopMismatch,
)
from loyalty.services.ledger import LoyaltyLedger
from loyalty.services.redemption_codes import CodeGenerator, generate_redemption_code

logger = logging.getLogger(__name__)
REDEMPTION_PREFIX = "[REDEMPTION]"

REDEMPTION_TTL = timedelta(minutes=5)
MAX_CODE_ATTEMPTS = 10


@dataclass
class Reservation:
    redemption: CouponRedemption
    coupon: Coupon
    balance_before: int
    balance_after: int

    @property
    def points_redeemed(self) -> int:
        return int(self.redemption.points_deducted)


@dataclass
class DiscountInstruction:
    type: str
    value: Decimal
    product_id: int | None
    target: str | None
    message: str


@dataclass
class FinalizedRedemption:
    redemption: CouponRedemption
    coupon: Coupon
    discount: DiscountInstruction


@dataclass
class Cancellation:
    redemption: CouponRedemption
    points_refunded: int
    balance_after: int


def format_amount(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    return f"{value:.2f}"


def build_discount_instruction(coupon: Coupon, currency_symbol: str = CURRENCY_SYMBOL) -> DiscountInstruction:
    """Instrução para o operador do POS.

    Só o primeiro item do cupom é considerado; os demais ficam para quando
    houver regra de desconto por múltiplos itens.
    """
    items = list(coupon.line_items)
    if not items:
        return DiscountInstruction(type=coupon.type, value=Decimal("0"), product_id=None, target=None, message="")

    first = items[0]
    value = Decimal(str(first.discount_value))
    amount = format_amount(value)
    if coupon.type == COUPON_TYPE_PERCENTAGE:
        head = f"Apply {amount}% discount"
    else:
        head = f"Apply {currency_symbol}{amount} discount"

    if first.applies_to_entire_order:
        message = f"{head} (applies to entire order)"
    else:
        message = f"{head} to {first.product_name}"

    return DiscountInstruction(
        type=coupon.type,
        value=value,
        product_id=first.product_id,
        target=first.product_name,
        message=message,
    )


class RedemptionManager:
    """Ciclo de vida do resgate: reserve -> (finalize | expire | cancel).

    Toda transição de status é um UPDATE condicional em ``status = 'active'``;
    quem não afeta linha perdeu a corrida e recebe AlreadyFinalizedOrExpired.
    """

    def __init__(
        self,
        db: Session,
        *,
        ledger: LoyaltyLedger | None = None,
        catalog: CouponCatalog | None = None,
        clock: Clock = utcnow,
        code_generator: CodeGenerator = generate_redemption_code,
        code_reuse_window: timedelta = timedelta(hours=REDEMPTION_CODE_REUSE_HOURS),
        max_code_attempts: int = MAX_CODE_ATTEMPTS,
        currency_symbol: str = CURRENCY_SYMBOL,
    ) -> None:
        self.db = db
        self.ledger = ledger or LoyaltyLedger(db, clock=clock)
        self.catalog = catalog or CouponCatalog(db, clock=clock)
        self._clock = clock
        self._code_generator = code_generator
        self._code_reuse_window = code_reuse_window
        self._max_code_attempts = max_code_attempts
        self._currency_symbol = currency_symbol

    # ------------------------------------------------------------------
    # reserve
    # ------------------------------------------------------------------
    def reserve(self, customer_id: int, coupon_id: int) -> Reservation:
        coupon = self.catalog.get_active_coupon(coupon_id)
        shop_id = int(coupon.shop_id)
        points = int(coupon.points_required)

        try:
            balance_after = self.ledger.debit(customer_id, shop_id, points)
        except AccountNotFound as exc:
            raise NoLoyaltyAccount(customer_id, shop_id) from exc

        try:
            redemption = self._persist_reservation(coupon_id, customer_id, shop_id, points)
        except IdGenerationExhausted:
            logger.critical(
                "%s code space exhausted coupon_id=%s customer_id=%s attempts=%s",
                REDEMPTION_PREFIX,
                coupon_id,
                customer_id,
                self._max_code_attempts,
            )
            self._compensate(customer_id, shop_id, points)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "%s persist failed after debit coupon_id=%s customer_id=%s points=%s",
                REDEMPTION_PREFIX,
                coupon_id,
                customer_id,
                points,
            )
            self._compensate(customer_id, shop_id, points)
            raise ReservationFailed() from exc

        logger.info(
            "%s reserved code=%s coupon_id=%s customer_id=%s shop_id=%s points=%s",
            REDEMPTION_PREFIX,
            redemption.code,
            coupon_id,
            customer_id,
            shop_id,
            points,
        )
        return Reservation(
            redemption=redemption,
            coupon=redemption.coupon,
            balance_before=balance_after + points,
            balance_after=balance_after,
        )

    def _persist_reservation(self, coupon_id: int, customer_id: int, shop_id: int, points: int) -> CouponRedemption:
        for attempt in range(1, self._max_code_attempts + 1):
            now = self._clock()
            code = self._code_generator()
            if self._code_taken(code, now):
                logger.warning("%s code collision code=%s attempt=%s", REDEMPTION_PREFIX, code, attempt)
                continue

            redemption = CouponRedemption(
                code=code,
                coupon_id=coupon_id,
                app_user_id=customer_id,
                shop_id=shop_id,
                points_deducted=points,
                status=REDEMPTION_STATUS_ACTIVE,
                reserved_at=now,
                expires_at=now + REDEMPTION_TTL,
                updated_at=now,
            )
            self.db.add(redemption)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                # índice parcial em code: outra reserva ativa levou o mesmo código
                if not self._code_taken(code, now):
                    raise
                logger.warning("%s code collision on insert code=%s attempt=%s", REDEMPTION_PREFIX, code, attempt)
                continue
            self.db.refresh(redemption)
            return redemption

        raise IdGenerationExhausted(self._max_code_attempts)

    def _code_taken(self, code: str, now: datetime) -> bool:
        cutoff = now - self._code_reuse_window
        row = (
            self.db.query(CouponRedemption.id)
            .filter(
                CouponRedemption.code == code,
                or_(
                    CouponRedemption.status == REDEMPTION_STATUS_ACTIVE,
                    CouponRedemption.reserved_at >= cutoff,
                ),
            )
            .first()
        )
        return row is not None

    def _compensate(self, customer_id: int, shop_id: int, points: int) -> None:
        try:
            self.ledger.credit(customer_id, shop_id, points)
        except (SQLAlchemyError, LoyaltyError) as exc:
            self.db.rollback()
            logger.critical(
                "%s compensation failed customer_id=%s shop_id=%s points=%s",
                REDEMPTION_PREFIX,
                customer_id,
                shop_id,
                points,
                exc_info=True,
            )
            raise CompensationFailed(customer_id, shop_id, points) from exc
        logger.warning(
            "%s debit compensated customer_id=%s shop_id=%s points=%s",
            REDEMPTION_PREFIX,
            customer_id,
            shop_id,
            points,
        )

    # ------------------------------------------------------------------
    # finalize
    # ------------------------------------------------------------------
    def finalize(self, code: str, expected_shop_id: int) -> FinalizedRedemption:
        now = self._clock()
        redemption = self._load_by_code(code)
        if redemption is None:
            raise RedemptionNotFound(code)
        if int(redemption.shop_id) != int(expected_shop_id):
            logger.warning(
                "%s shop mismatch code=%s redemption_shop=%s expected_shop=%s",
                REDEMPTION_PREFIX,
                code,
                redemption.shop_id,
                expected_shop_id,
            )
            raise ShopMismatch()

        self._ensure_active(redemption, now)

        coupon = redemption.coupon
        discount = build_discount_instruction(coupon, self._currency_symbol)
        result = self.db.execute(
            update(CouponRedemption)
            .where(
                CouponRedemption.id == redemption.id,
                CouponRedemption.status == REDEMPTION_STATUS_ACTIVE,
            )
            .values(
                status=REDEMPTION_STATUS_USED,
                validated_at=now,
                discount_applied=discount.value,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise self._terminal_error(self._current_status(redemption.id))

        self.db.execute(
            update(Coupon)
            .where(Coupon.id == coupon.id)
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(redemption)

        logger.info(
            "%s finalized code=%s shop_id=%s discount=%s",
            REDEMPTION_PREFIX,
            redemption.code,
            redemption.shop_id,
            discount.message,
        )
        return FinalizedRedemption(redemption=redemption, coupon=redemption.coupon, discount=discount)

    # ------------------------------------------------------------------
    # leitura / cancelamento / varredura
    # ------------------------------------------------------------------
    def get_redemption(self, code: str, customer_id: int) -> CouponRedemption:
        redemption = self._load_by_code(code, customer_id=customer_id)
        if redemption is None:
            raise RedemptionNotFound(code)

        now = self._clock()
        if redemption.status == REDEMPTION_STATUS_ACTIVE and now > as_utc(redemption.expires_at):
            self._mark_expired(redemption.id, now)
            self.db.refresh(redemption)
        return redemption

    def cancel(self, code: str, customer_id: int) -> Cancellation:
        now = self._clock()
        redemption = self._load_by_code(code, customer_id=customer_id)
        if redemption is None:
            raise RedemptionNotFound(code)

        self._ensure_active(redemption, now)

        result = self.db.execute(
            update(CouponRedemption)
            .where(
                CouponRedemption.id == redemption.id,
                CouponRedemption.status == REDEMPTION_STATUS_ACTIVE,
            )
            .values(status=REDEMPTION_STATUS_CANCELLED, cancelled_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise self._terminal_error(self._current_status(redemption.id))

        points = int(redemption.points_deducted)
        try:
            # credit faz o commit: status e estorno entram na mesma transação
            balance_after = self.ledger.credit(customer_id, int(redemption.shop_id), points)
        except (SQLAlchemyError, LoyaltyError):
            self.db.rollback()
            logger.exception("%s cancel refund failed code=%s", REDEMPTION_PREFIX, code)
            raise

        self.db.refresh(redemption)
        logger.info(
            "%s cancelled code=%s customer_id=%s refunded=%s",
            REDEMPTION_PREFIX,
            redemption.code,
            customer_id,
            points,
        )
        return Cancellation(redemption=redemption, points_refunded=points, balance_after=balance_after)

    def count_stale(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        return (
            self.db.query(CouponRedemption)
            .filter(
                CouponRedemption.status == REDEMPTION_STATUS_ACTIVE,
                CouponRedemption.expires_at < now,
            )
            .count()
        )

    def expire_stale(self, now: datetime | None = None) -> int:
        """Marca como expired todas as reservas ativas vencidas. Sem estorno de pontos."""
        now = now or self._clock()
        result = self.db.execute(
            update(CouponRedemption)
            .where(
                CouponRedemption.status == REDEMPTION_STATUS_ACTIVE,
                CouponRedemption.expires_at < now,
            )
            .values(status=REDEMPTION_STATUS_EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        expired = int(result.rowcount or 0)
        logger.info("%s expiry sweep expired=%s", REDEMPTION_PREFIX, expired)
        return expired

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _load_by_code(self, code: str, *, customer_id: int | None = None) -> CouponRedemption | None:
        query = self.db.query(CouponRedemption).filter(CouponRedemption.code == code)
        if customer_id is not None:
            query = query.filter(CouponRedemption.app_user_id == customer_id)
        return query.order_by(CouponRedemption.reserved_at.desc(), CouponRedemption.id.desc()).first()

    def _ensure_active(self, redemption: CouponRedemption, now: datetime) -> None:
        if redemption.status != REDEMPTION_STATUS_ACTIVE:
            raise self._terminal_error(redemption.status)

        if now > as_utc(redemption.expires_at):
            status = self._mark_expired(redemption.id, now)
            raise self._terminal_error(status)

    def _mark_expired(self, redemption_id: int, now: datetime) -> str:
        result = self.db.execute(
            update(CouponRedemption)
            .where(
                CouponRedemption.id == redemption_id,
                CouponRedemption.status == REDEMPTION_STATUS_ACTIVE,
            )
            .values(status=REDEMPTION_STATUS_EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 1:
            logger.info("%s lazily expired redemption_id=%s", REDEMPTION_PREFIX, redemption_id)
            return REDEMPTION_STATUS_EXPIRED
        return self._current_status(redemption_id)

    def _current_status(self, redemption_id: int) -> str:
        status = (
            self.db.query(CouponRedemption.status)
            .filter(CouponRedemption.id == redemption_id)
            .scalar()
        )
        return str(status)

    @staticmethod
    def _terminal_error(status: str) -> AlreadyFinalizedOrExpired:
        if status == REDEMPTION_STATUS_EXPIRED:
            return Expired()
        return AlreadyFinalizedOrExpired(status)
