from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from loyalty.models.coupon import Coupon, CouponRedemption
from loyalty.services.coupon_catalog import CouponCatalog, CouponSpec, LineItemSpec
from loyalty.services.errors import (
    AlreadyFinalizedOrExpired,
    CompensationFailed,
    CouponNotFound,
    Expired,
    IdGenerationExhausted,
    InsufficientPoints,
    NoLoyaltyAccount,
    RedemptionNotFound,
    ReservationFailed,
    ShopMismatch,
)
from loyalty.services.ledger import LoyaltyLedger
from loyalty.services.redemption_codes import is_valid_redemption_code
from loyalty.services.redemptions import MAX_CODE_ATTEMPTS, RedemptionManager
from tests.fixtures_data import (
    FIXED_ORDER_COUPON,
    HAPPY_PATH_COUPON,
    HAPPY_PATH_CUSTOMER,
    HAPPY_PATH_PRODUCT,
    HAPPY_PATH_SHOP,
    OTHER_SHOP,
)
from tests.loyalty_db import FakeClock, build_seeded_session

CUSTOMER_ID = HAPPY_PATH_CUSTOMER["id"]
SHOP_ID = HAPPY_PATH_SHOP["id"]
COUPON_ID = HAPPY_PATH_COUPON["id"]


def _sequence(*codes):
    pending = iter(codes)
    return lambda: next(pending)


def _manager(points_balance=2000, **kwargs):
    db = build_seeded_session(points_balance=points_balance)
    clock = kwargs.pop("clock", FakeClock())
    manager = RedemptionManager(db, clock=clock, **kwargs)
    return db, clock, manager


def _balance(db):
    return LoyaltyLedger(db).get_balance(CUSTOMER_ID, SHOP_ID)


def _flaky_commit(monkeypatch, db, failing_calls):
    original_commit = db.commit
    calls = {"count": 0}

    def commit():
        calls["count"] += 1
        if calls["count"] in failing_calls:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        return original_commit()

    monkeypatch.setattr(db, "commit", commit)


# --- reserve ---


def test_reserve_debits_points_and_creates_active_redemption():
    db, clock, manager = _manager()

    reservation = manager.reserve(CUSTOMER_ID, COUPON_ID)

    redemption = reservation.redemption
    assert reservation.balance_before == 2000
    assert reservation.balance_after == 1500
    assert reservation.points_redeemed == 500
    assert _balance(db) == 1500
    assert redemption.status == "active"
    assert redemption.points_deducted == 500
    assert redemption.shop_id == SHOP_ID
    assert is_valid_redemption_code(redemption.code)
    stored = db.query(CouponRedemption).filter(CouponRedemption.code == redemption.code).one()
    assert stored.expires_at.replace(tzinfo=None) == (clock() + timedelta(minutes=5)).replace(tzinfo=None)


def test_reserve_with_insufficient_points_leaves_balance_untouched():
    db, _, manager = _manager(points_balance=499)

    with pytest.raises(InsufficientPoints) as exc_info:
        manager.reserve(CUSTOMER_ID, COUPON_ID)

    assert exc_info.value.shortfall == 1
    assert _balance(db) == 499
    assert db.query(CouponRedemption).count() == 0


def test_reserve_unknown_coupon_is_not_found():
    _, _, manager = _manager()

    with pytest.raises(CouponNotFound):
        manager.reserve(CUSTOMER_ID, 999)


def test_reserve_without_account_in_coupon_shop_fails():
    db, clock, manager = _manager()
    other_coupon = CouponCatalog(db, clock=clock).create_coupon(
        OTHER_SHOP["id"],
        CouponSpec(
            name="Other shop coupon",
            type="fixed",
            points_required=10,
            line_items=[LineItemSpec(discount_value=Decimal("1"))],
        ),
    )

    with pytest.raises(NoLoyaltyAccount):
        manager.reserve(CUSTOMER_ID, other_coupon.id)
    assert _balance(db) == 2000


def test_reserve_retries_on_code_collision():
    db, _, manager = _manager(code_generator=_sequence("A11-111", "A11-111", "B22-222"))

    first = manager.reserve(CUSTOMER_ID, COUPON_ID)
    second = manager.reserve(CUSTOMER_ID, COUPON_ID)

    assert first.redemption.code == "A11-111"
    assert second.redemption.code == "B22-222"
    assert _balance(db) == 1000


def test_reserve_exhausting_codes_refunds_points():
    db, _, manager = _manager(code_generator=lambda: "A11-111")
    manager.reserve(CUSTOMER_ID, COUPON_ID)

    with pytest.raises(IdGenerationExhausted) as exc_info:
        manager.reserve(CUSTOMER_ID, COUPON_ID)

    assert exc_info.value.attempts == MAX_CODE_ATTEMPTS
    assert exc_info.value.alert is True
    assert _balance(db) == 1500
    assert db.query(CouponRedemption).count() == 1


def test_codes_issued_within_reuse_window_are_taken_and_reusable_after():
    db, clock, manager = _manager(code_generator=lambda: "C33-333")
    first = manager.reserve(CUSTOMER_ID, COUPON_ID)
    manager.finalize(first.redemption.code, SHOP_ID)

    clock.advance(hours=1)
    with pytest.raises(IdGenerationExhausted):
        manager.reserve(CUSTOMER_ID, COUPON_ID)

    clock.advance(hours=24)
    reused = manager.reserve(CUSTOMER_ID, COUPON_ID)
    assert reused.redemption.code == "C33-333"
    assert reused.redemption.id != first.redemption.id

    # a busca pelo código pega a reserva mais recente
    finalized = manager.finalize("C33-333", SHOP_ID)
    assert finalized.redemption.id == reused.redemption.id


def test_persist_failure_after_debit_compensates_and_raises(monkeypatch):
    db, _, manager = _manager()
    _flaky_commit(monkeypatch, db, failing_calls={2})

    with pytest.raises(ReservationFailed):
        manager.reserve(CUSTOMER_ID, COUPON_ID)

    assert _balance(db) == 2000
    assert db.query(CouponRedemption).count() == 0


def test_failed_compensation_raises_compensation_failed(monkeypatch):
    db, _, manager = _manager()
    _flaky_commit(monkeypatch, db, failing_calls={2, 3})

    with pytest.raises(CompensationFailed) as exc_info:
        manager.reserve(CUSTOMER_ID, COUPON_ID)

    assert exc_info.value.amount == 500
    assert exc_info.value.customer_id == CUSTOMER_ID
    assert exc_info.value.shop_id == SHOP_ID
    assert exc_info.value.alert is True
    assert _balance(db) == 1500


# --- finalize ---


def test_finalize_marks_used_and_returns_discount_instruction():
    db, clock, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code
    clock.advance(minutes=4)

    finalized = manager.finalize(code, SHOP_ID)

    assert finalized.redemption.status == "used"
    assert finalized.redemption.validated_at is not None
    assert finalized.redemption.discount_applied == Decimal("20")
    assert finalized.discount.type == "percentage"
    assert finalized.discount.value == Decimal("20")
    assert finalized.discount.product_id == HAPPY_PATH_PRODUCT["id"]
    assert finalized.discount.message == "Apply 20% discount to Latte"
    assert db.get(Coupon, COUPON_ID).used_count == 1
    assert _balance(db) == 1500


def test_fixed_order_discount_message():
    _, _, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, FIXED_ORDER_COUPON["id"]).redemption.code

    finalized = manager.finalize(code, SHOP_ID)

    assert finalized.discount.message == "Apply €5 discount (applies to entire order)"
    assert finalized.discount.target is None


def test_only_first_line_item_drives_discount():
    db, clock, manager = _manager()
    coupon = CouponCatalog(db, clock=clock).create_coupon(
        SHOP_ID,
        CouponSpec(
            name="Combo",
            type="percentage",
            points_required=100,
            line_items=[
                LineItemSpec(discount_value=Decimal("12.5"), product_id=HAPPY_PATH_PRODUCT["id"]),
                LineItemSpec(discount_value=Decimal("50")),
            ],
        ),
    )
    code = manager.reserve(CUSTOMER_ID, coupon.id).redemption.code

    finalized = manager.finalize(code, SHOP_ID)

    assert finalized.discount.message == "Apply 12.50% discount to Latte"
    assert finalized.redemption.discount_applied == Decimal("12.5")


def test_finalize_twice_fails_the_same_way_without_side_effects():
    db, _, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code
    manager.finalize(code, SHOP_ID)

    for _ in range(2):
        with pytest.raises(AlreadyFinalizedOrExpired) as exc_info:
            manager.finalize(code, SHOP_ID)
        assert not isinstance(exc_info.value, Expired)
        assert exc_info.value.status == "used"

    assert db.get(Coupon, COUPON_ID).used_count == 1
    assert _balance(db) == 1500


def test_finalize_after_expiry_fails_even_on_first_call():
    db, clock, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code
    clock.advance(minutes=5, seconds=1)

    with pytest.raises(Expired):
        manager.finalize(code, SHOP_ID)
    with pytest.raises(Expired):
        manager.finalize(code, SHOP_ID)

    stored = db.query(CouponRedemption).filter(CouponRedemption.code == code).one()
    assert stored.status == "expired"
    assert db.get(Coupon, COUPON_ID).used_count == 0


def test_finalize_exactly_at_expiry_is_still_accepted():
    _, clock, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code
    clock.advance(minutes=5)

    assert manager.finalize(code, SHOP_ID).redemption.status == "used"


def test_finalize_for_other_shop_does_not_change_status():
    db, _, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code

    with pytest.raises(ShopMismatch):
        manager.finalize(code, OTHER_SHOP["id"])

    stored = db.query(CouponRedemption).filter(CouponRedemption.code == code).one()
    assert stored.status == "active"
    assert manager.finalize(code, SHOP_ID).redemption.status == "used"


def test_finalize_unknown_code_is_not_found():
    _, _, manager = _manager()

    with pytest.raises(RedemptionNotFound):
        manager.finalize("Z99-999", SHOP_ID)


# --- leitura / cancelamento / varredura ---


def test_get_redemption_applies_lazy_expiry():
    _, clock, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code

    assert manager.get_redemption(code, CUSTOMER_ID).status == "active"
    clock.advance(minutes=6)
    assert manager.get_redemption(code, CUSTOMER_ID).status == "expired"


def test_get_redemption_of_other_customer_is_not_found():
    _, _, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code

    with pytest.raises(RedemptionNotFound):
        manager.get_redemption(code, CUSTOMER_ID + 1)


def test_cancel_refunds_points_once():
    db, _, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code

    cancellation = manager.cancel(code, CUSTOMER_ID)

    assert cancellation.redemption.status == "cancelled"
    assert cancellation.redemption.cancelled_at is not None
    assert cancellation.points_refunded == 500
    assert cancellation.balance_after == 2000
    assert _balance(db) == 2000

    with pytest.raises(AlreadyFinalizedOrExpired) as exc_info:
        manager.cancel(code, CUSTOMER_ID)
    assert exc_info.value.status == "cancelled"
    with pytest.raises(AlreadyFinalizedOrExpired):
        manager.finalize(code, SHOP_ID)
    assert _balance(db) == 2000


def test_cancel_after_expiry_does_not_refund():
    db, clock, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code
    clock.advance(minutes=6)

    with pytest.raises(Expired):
        manager.cancel(code, CUSTOMER_ID)
    assert _balance(db) == 1500


def test_cancel_of_used_redemption_is_refused():
    db, _, manager = _manager()
    code = manager.reserve(CUSTOMER_ID, COUPON_ID).redemption.code
    manager.finalize(code, SHOP_ID)

    with pytest.raises(AlreadyFinalizedOrExpired) as exc_info:
        manager.cancel(code, CUSTOMER_ID)
    assert exc_info.value.status == "used"
    assert _balance(db) == 1500


def test_expire_stale_sweeps_only_overdue_active_redemptions():
    db, clock, manager = _manager(code_generator=_sequence("A11-111", "B22-222", "C33-333"))
    manager.reserve(CUSTOMER_ID, COUPON_ID)
    used = manager.reserve(CUSTOMER_ID, COUPON_ID)
    manager.finalize(used.redemption.code, SHOP_ID)
    clock.advance(minutes=3)
    manager.reserve(CUSTOMER_ID, COUPON_ID)
    clock.advance(minutes=3)

    assert manager.count_stale() == 1
    assert manager.expire_stale() == 1
    assert manager.expire_stale() == 0

    statuses = {
        row.code: row.status
        for row in db.query(CouponRedemption).all()
    }
    assert statuses == {"A11-111": "expired", "B22-222": "used", "C33-333": "active"}
    assert _balance(db) == 500


# --- cenários ponta a ponta ---


def test_end_to_end_reserve_then_pos_finalize_within_window():
    db, clock, manager = _manager()

    reservation = manager.reserve(CUSTOMER_ID, COUPON_ID)
    assert _balance(db) == 1500
    assert reservation.redemption.status == "active"

    clock.advance(minutes=2)
    finalized = manager.finalize(reservation.redemption.code, SHOP_ID)
    assert finalized.redemption.status == "used"
    assert finalized.discount.message
    assert _balance(db) == 1500

    with pytest.raises(AlreadyFinalizedOrExpired):
        manager.finalize(reservation.redemption.code, SHOP_ID)
    assert _balance(db) == 1500


def test_end_to_end_reserve_then_left_to_expire():
    db, clock, manager = _manager()

    reservation = manager.reserve(CUSTOMER_ID, COUPON_ID)
    assert _balance(db) == 1500

    clock.advance(minutes=6)
    with pytest.raises(Expired):
        manager.finalize(reservation.redemption.code, SHOP_ID)
    assert _balance(db) == 1500
