from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loyalty.core.database import get_db
from loyalty.deps import get_coupon_catalog, require_shop_role
from loyalty.models.shop_user import ShopUser
from loyalty.schemas.coupons import CreateCouponPayload, UpdateCouponPayload, coupon_detail
from loyalty.services.coupon_catalog import CouponCatalog
from loyalty.services.shop_audit import log_shop_action

router = APIRouter(prefix="/shop-admin/coupons", tags=["shop-admin-coupons"])

_STAFF_ROLES = ["owner", "manager", "staff"]


@router.get("")
def list_coupons(
    active_only: bool = False,
    user: ShopUser = Depends(require_shop_role(_STAFF_ROLES)),
    catalog: CouponCatalog = Depends(get_coupon_catalog),
):
    coupons = catalog.list_coupons(user.shop_id, active_only=active_only)
    return {"success": True, "data": [coupon_detail(coupon) for coupon in coupons]}


@router.post("", status_code=201)
def create_coupon(
    payload: CreateCouponPayload,
    db: Session = Depends(get_db),
    user: ShopUser = Depends(require_shop_role(["manager"])),
    catalog: CouponCatalog = Depends(get_coupon_catalog),
):
    coupon = catalog.create_coupon(user.shop_id, payload.to_spec())
    log_shop_action(
        db,
        shop_id=user.shop_id,
        user_id=user.id,
        action="coupon_created",
        entity_type="coupon",
        entity_id=coupon.id,
        meta={"name": coupon.name, "type": coupon.type, "points_required": coupon.points_required},
    )
    db.commit()
    return {"success": True, "message": "Coupon created", "data": coupon_detail(coupon)}


@router.patch("/{coupon_id}")
def update_coupon(
    coupon_id: int,
    payload: UpdateCouponPayload,
    db: Session = Depends(get_db),
    user: ShopUser = Depends(require_shop_role(["manager"])),
    catalog: CouponCatalog = Depends(get_coupon_catalog),
):
    coupon = catalog.set_active(user.shop_id, coupon_id, payload.is_active)
    log_shop_action(
        db,
        shop_id=user.shop_id,
        user_id=user.id,
        action="coupon_activated" if payload.is_active else "coupon_deactivated",
        entity_type="coupon",
        entity_id=coupon.id,
    )
    db.commit()
    return {"success": True, "data": coupon_detail(coupon)}
