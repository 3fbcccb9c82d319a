from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Sequence

from sqlalchemy.orm import Session, selectinload

from loyalty.core.clock import Clock, as_utc, utcnow
from loyalty.models.coupon import COUPON_TYPE_PERCENTAGE, COUPON_TYPES, Coupon, CouponLineItem
from loyalty.models.product import Product
from loyalty.models.shop import Shop
from loyalty.services.errors import CouponNotFound, InvalidCouponSpec

logger = logging.getLogger(__name__)
CATALOG_PREFIX = "[CATALOG]"

MAX_PERCENTAGE = Decimal("100")


@dataclass
class LineItemSpec:
    discount_value: Decimal | float | int
    product_id: int | None = None
    product_name: str | None = None


@dataclass
class CouponSpec:
    name: str
    type: str
    points_required: int
    line_items: Sequence[LineItemSpec] = field(default_factory=list)
    description: str | None = None
    expires_at: datetime | None = None
    is_active: bool = True


class CouponCatalog:
    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def get_active_coupon(self, coupon_id: int) -> Coupon:
        """Cupom resgatável agora.

        Inexistente, inativo, expirado ou de loja inativa viram o mesmo
        CouponNotFound para não vazar estado a quem não deveria vê-lo.
        """
        coupon = (
            self.db.query(Coupon)
            .options(selectinload(Coupon.line_items))
            .filter(Coupon.id == coupon_id)
            .first()
        )
        if coupon is None or not coupon.is_active:
            raise CouponNotFound(coupon_id)

        expires_at = as_utc(coupon.expires_at)
        if expires_at is not None and expires_at < self._clock():
            raise CouponNotFound(coupon_id)

        shop = coupon.shop
        if shop is None or not shop.is_active:
            raise CouponNotFound(coupon_id)
        return coupon

    def get_shop_coupon(self, shop_id: int, coupon_id: int) -> Coupon:
        coupon = (
            self.db.query(Coupon)
            .filter(Coupon.id == coupon_id, Coupon.shop_id == shop_id)
            .first()
        )
        if coupon is None:
            raise CouponNotFound(coupon_id)
        return coupon

    def list_coupons(self, shop_id: int, *, active_only: bool = False) -> list[Coupon]:
        query = (
            self.db.query(Coupon)
            .options(selectinload(Coupon.line_items))
            .filter(Coupon.shop_id == shop_id)
        )
        if active_only:
            query = query.filter(Coupon.is_active.is_(True))
        return query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()

    def create_coupon(self, shop_id: int, spec: CouponSpec) -> Coupon:
        shop = self.db.query(Shop).filter(Shop.id == shop_id).first()
        if shop is None:
            raise InvalidCouponSpec("shop_id", "Shop not found")

        name = (spec.name or "").strip()
        if not name:
            raise InvalidCouponSpec("name", "Name is required")

        coupon_type = (spec.type or "").strip().lower()
        if coupon_type not in COUPON_TYPES:
            raise InvalidCouponSpec("type", "Type must be 'percentage' or 'fixed'")

        points_required = spec.points_required
        if points_required is None or isinstance(points_required, bool) or int(points_required) != points_required:
            raise InvalidCouponSpec("points_required", "Points required must be an integer")
        if points_required < 0:
            raise InvalidCouponSpec("points_required", "Points required must be non-negative")

        if not spec.line_items:
            raise InvalidCouponSpec("line_items", "At least one line item is required")

        line_items = [
            self._build_line_item(shop_id, coupon_type, index, item)
            for index, item in enumerate(spec.line_items)
        ]

        coupon = Coupon(
            shop_id=shop_id,
            name=name,
            description=(spec.description or "").strip() or None,
            type=coupon_type,
            points_required=int(points_required),
            is_active=bool(spec.is_active),
            expires_at=spec.expires_at,
            used_count=0,
            line_items=line_items,
        )
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        logger.info(
            "%s coupon created id=%s shop_id=%s type=%s points_required=%s line_items=%s",
            CATALOG_PREFIX,
            coupon.id,
            shop_id,
            coupon_type,
            coupon.points_required,
            len(line_items),
        )
        return coupon

    def set_active(self, shop_id: int, coupon_id: int, active: bool) -> Coupon:
        coupon = self.get_shop_coupon(shop_id, coupon_id)
        coupon.is_active = bool(active)
        self.db.commit()
        self.db.refresh(coupon)
        logger.info("%s coupon id=%s shop_id=%s active=%s", CATALOG_PREFIX, coupon.id, shop_id, coupon.is_active)
        return coupon

    def _build_line_item(self, shop_id: int, coupon_type: str, index: int, item: LineItemSpec) -> CouponLineItem:
        prefix = f"line_items[{index}]"
        try:
            value = Decimal(str(item.discount_value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise InvalidCouponSpec(f"{prefix}.discount_value", "Discount value must be a number") from exc
        if not value.is_finite():
            raise InvalidCouponSpec(f"{prefix}.discount_value", "Discount value must be a number")
        if value < 0:
            raise InvalidCouponSpec(f"{prefix}.discount_value", "Discount value must be non-negative")
        if coupon_type == COUPON_TYPE_PERCENTAGE and value > MAX_PERCENTAGE:
            raise InvalidCouponSpec(f"{prefix}.discount_value", "Percentage discount cannot exceed 100%")

        product_name = (item.product_name or "").strip() or None
        if item.product_id is not None:
            product = (
                self.db.query(Product)
                .filter(Product.id == item.product_id, Product.shop_id == shop_id)
                .first()
            )
            if product is None:
                raise InvalidCouponSpec(f"{prefix}.product_id", "Product not found for this shop")
            product_name = product_name or product.name

        return CouponLineItem(
            position=index,
            product_id=item.product_id,
            product_name=product_name,
            discount_value=value,
        )
