from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from loyalty.deps import get_pos_gateway
from loyalty.schemas.coupons import PosValidatePayload, coupon_summary, decimal_number, isoformat
from loyalty.services.pos_gateway import PosValidationGateway

router = APIRouter(prefix="/pos", tags=["pos"])


@router.post("/coupons/validate")
def validate_coupon(
    payload: PosValidatePayload,
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="x-api-key"),
    gateway: PosValidationGateway = Depends(get_pos_gateway),
):
    if payload.shop_id is not None:
        request.state.shop_id = payload.shop_id

    result = gateway.validate(x_api_key, payload.shop_id, payload.redemption_id)
    redemption = result.redemption
    coupon = result.finalized.coupon
    customer = redemption.app_user
    discount = result.discount

    # Nada de saldo de pontos aqui: o POS só recebe o necessário para aplicar o desconto
    return {
        "success": True,
        "message": f"Coupon validated and redeemed successfully. {discount.message}".strip(),
        "data": {
            "redemption_id": redemption.code,
            "coupon": coupon_summary(coupon),
            "customer": {
                "id": customer.id,
                "email": customer.email,
                "name": customer.display_name,
            },
            "shop": {
                "id": result.shop.id,
                "name": result.shop.name,
            },
            "discount_info": {
                "type": discount.type,
                "value": decimal_number(discount.value),
                "message": discount.message,
            },
            "valid": True,
            "redeemed_at": isoformat(redemption.reserved_at),
            "validated_at": isoformat(redemption.validated_at),
        },
    }
