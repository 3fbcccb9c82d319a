from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from loyalty.core.clock import as_utc
from loyalty.models.coupon import Coupon, CouponRedemption
from loyalty.services.coupon_catalog import CouponSpec, LineItemSpec


class CouponLineItemPayload(BaseModel):
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    discount_value: Decimal


class CreateCouponPayload(BaseModel):
    type: str
    name: str
    description: Optional[str] = None
    points_required: int
    line_items: List[CouponLineItemPayload] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def to_spec(self) -> CouponSpec:
        return CouponSpec(
            name=self.name,
            type=self.type,
            points_required=self.points_required,
            description=self.description,
            expires_at=self.expires_at,
            is_active=self.is_active,
            line_items=[
                LineItemSpec(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    discount_value=item.discount_value,
                )
                for item in self.line_items
            ],
        )


class UpdateCouponPayload(BaseModel):
    is_active: bool


class PosValidatePayload(BaseModel):
    # Opcionais: campos ausentes viram SHOP_NOT_ASSOCIATED / MALFORMED_REDEMPTION_CODE
    shop_id: Optional[int] = None
    redemption_id: Optional[str] = None


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def decimal_number(value: Decimal | None) -> float | int | None:
    if value is None:
        return None
    value = Decimal(str(value))
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def line_items_payload(coupon: Coupon) -> list[dict[str, Any]]:
    return [
        {
            "product_id": item.product_id,
            "product_name": item.product_name,
            "discount_value": decimal_number(item.discount_value),
        }
        for item in coupon.line_items
    ]


def coupon_summary(coupon: Coupon) -> dict[str, Any]:
    return {
        "id": coupon.id,
        "type": coupon.type,
        "name": coupon.name,
        "description": coupon.description,
        "line_items": line_items_payload(coupon),
    }


def coupon_detail(coupon: Coupon) -> dict[str, Any]:
    return {
        **coupon_summary(coupon),
        "shop_id": coupon.shop_id,
        "points_required": coupon.points_required,
        "is_active": bool(coupon.is_active),
        "expires_at": isoformat(coupon.expires_at),
        "used_count": int(coupon.used_count or 0),
        "created_at": isoformat(coupon.created_at),
    }


def redemption_payload(redemption: CouponRedemption) -> dict[str, Any]:
    return {
        "redemption_id": redemption.code,
        "coupon_id": redemption.coupon_id,
        "shop_id": redemption.shop_id,
        "status": redemption.status,
        "points_deducted": redemption.points_deducted,
        "discount_applied": decimal_number(redemption.discount_applied),
        "redeemed_at": isoformat(redemption.reserved_at),
        "expires_at": isoformat(redemption.expires_at),
        "validated_at": isoformat(redemption.validated_at),
        "cancelled_at": isoformat(redemption.cancelled_at),
    }
