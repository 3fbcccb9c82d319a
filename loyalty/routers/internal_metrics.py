from __future__ import annotations

from fastapi import APIRouter, Depends

from loyalty.core.metrics import request_metrics
from loyalty.deps import require_shop_role
from loyalty.models.shop_user import ShopUser

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def shop_metrics(user: ShopUser = Depends(require_shop_role(["owner"]))):
    return {
        "shop_id": user.shop_id,
        "shop": request_metrics.snapshot_for_shop(str(user.shop_id)),
        "endpoints": request_metrics.endpoints_for_shop(str(user.shop_id)),
    }
