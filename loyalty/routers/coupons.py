from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from loyalty.deps import get_current_customer, get_redemption_manager
from loyalty.models.app_user import AppUser
from loyalty.schemas.coupons import coupon_summary, isoformat, redemption_payload
from loyalty.services.redemption_codes import normalize_redemption_code
from loyalty.services.redemptions import REDEMPTION_TTL, RedemptionManager

router = APIRouter(tags=["coupons"])

VALID_FOR_MINUTES = int(REDEMPTION_TTL.total_seconds() // 60)


@router.post("/coupons/{coupon_id}/activate")
def activate_coupon(
    coupon_id: int,
    request: Request,
    customer: AppUser = Depends(get_current_customer),
    manager: RedemptionManager = Depends(get_redemption_manager),
):
    reservation = manager.reserve(customer.id, coupon_id)
    redemption = reservation.redemption
    coupon = reservation.coupon
    request.state.shop_id = redemption.shop_id

    return {
        "success": True,
        "message": "Coupon activated successfully",
        "data": {
            "redemption_id": redemption.code,
            # o QR carrega o próprio código de resgate
            "qr_code_data": redemption.code,
            "coupon": coupon_summary(coupon),
            "customer": {
                "email": customer.email,
                "points_balance_before": reservation.balance_before,
                "points_balance_after": reservation.balance_after,
                "points_redeemed": reservation.points_redeemed,
            },
            "shop": {
                "id": coupon.shop.id,
                "name": coupon.shop.name,
            },
            "expires_at": isoformat(redemption.expires_at),
            "valid_for_minutes": VALID_FOR_MINUTES,
            "usage_instructions": (
                f'Show QR code or tell staff: "{redemption.code}" - Valid for {VALID_FOR_MINUTES} minutes'
            ),
        },
    }


@router.get("/redemptions/{code}")
def get_redemption(
    code: str,
    request: Request,
    customer: AppUser = Depends(get_current_customer),
    manager: RedemptionManager = Depends(get_redemption_manager),
):
    redemption = manager.get_redemption(normalize_redemption_code(code), customer.id)
    request.state.shop_id = redemption.shop_id
    return {"success": True, "data": redemption_payload(redemption)}


@router.post("/redemptions/{code}/cancel")
def cancel_redemption(
    code: str,
    request: Request,
    customer: AppUser = Depends(get_current_customer),
    manager: RedemptionManager = Depends(get_redemption_manager),
):
    cancellation = manager.cancel(normalize_redemption_code(code), customer.id)
    request.state.shop_id = cancellation.redemption.shop_id
    return {
        "success": True,
        "message": "Coupon redemption cancelled",
        "data": {
            **redemption_payload(cancellation.redemption),
            "points_refunded": cancellation.points_refunded,
            "points_balance_after": cancellation.balance_after,
        },
    }
