# loyalty/deps.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from loyalty.core.database import get_db
from loyalty.core.request_context import set_request_context
from loyalty.models.app_user import AppUser
from loyalty.models.shop_user import ShopUser
from loyalty.services.auth import ROLE_CUSTOMER, ROLE_SHOP_USER, decode_access_token
from loyalty.services.coupon_catalog import CouponCatalog
from loyalty.services.ledger import LoyaltyLedger
from loyalty.services.pos_gateway import PosValidationGateway
from loyalty.services.redemptions import RedemptionManager

bearer_scheme = HTTPBearer(auto_error=False)

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_subject_id(payload: Dict[str, Any]) -> Optional[int]:
    raw = payload.get("sub")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        raw = raw.strip()
        if raw.isdigit():
            return int(raw)
    return None


def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Dict[str, Any]:
    if credentials is None or (credentials.scheme or "").lower() != "bearer":
        raise _unauthorized("Authentication required")
    try:
        return decode_access_token(credentials.credentials)
    except ValueError:
        raise _unauthorized("Invalid token")


def get_current_customer(
    request: Request,
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> AppUser:
    """Cliente do app autenticado pelo Bearer token."""
    user_id = _extract_subject_id(payload)
    if user_id is None or payload.get("role") != ROLE_CUSTOMER:
        raise _unauthorized("Invalid token")

    customer = (
        db.query(AppUser)
        .filter(AppUser.id == user_id, AppUser.is_active.is_(True))
        .first()
    )
    if not customer:
        raise _unauthorized("Customer not found")

    request.state.user = customer
    set_request_context(user_id=str(customer.id))
    return customer


def get_current_shop_user(
    request: Request,
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> ShopUser:
    user_id = _extract_subject_id(payload)
    if user_id is None or payload.get("role") != ROLE_SHOP_USER:
        raise _unauthorized("Invalid token")

    user = (
        db.query(ShopUser)
        .filter(ShopUser.id == user_id, ShopUser.active.is_(True))
        .first()
    )
    if not user:
        raise _unauthorized("Shop user not found")

    token_shop_id = payload.get("shop_id")
    if token_shop_id is not None and int(token_shop_id) != int(user.shop_id):
        raise _unauthorized("Invalid token")

    request.state.user = user
    request.state.shop_id = user.shop_id
    set_request_context(user_id=str(user.id), shop_id=str(user.shop_id))
    return user


def require_shop_role(roles: Iterable[str]):
    allowed = {role.strip().lower() for role in roles}
    if "manager" in allowed or "owner" in allowed:
        allowed.update({"manager", "owner"})

    def _dependency(
        request: Request,
        user: ShopUser = Depends(get_current_shop_user),
    ) -> ShopUser:
        if (user.role or "").strip().lower() not in allowed:
            logger.warning(
                "Access denied (role_denied): user_id=%s user_role=%s shop_id=%s endpoint=%s",
                user.id,
                user.role,
                user.shop_id,
                f"{request.method} {request.url.path}",
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return _dependency


# =========================
# Serviços (injeção por request)
# =========================
def get_ledger(db: Session = Depends(get_db)) -> LoyaltyLedger:
    return LoyaltyLedger(db)


def get_coupon_catalog(db: Session = Depends(get_db)) -> CouponCatalog:
    return CouponCatalog(db)


def get_redemption_manager(
    db: Session = Depends(get_db),
    ledger: LoyaltyLedger = Depends(get_ledger),
    catalog: CouponCatalog = Depends(get_coupon_catalog),
) -> RedemptionManager:
    return RedemptionManager(db, ledger=ledger, catalog=catalog)


def get_pos_gateway(
    db: Session = Depends(get_db),
    manager: RedemptionManager = Depends(get_redemption_manager),
) -> PosValidationGateway:
    return PosValidationGateway(db, manager)
