from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from loyalty.models.shop_audit_log import ShopAuditLog


def log_shop_action(
    db: Session,
    *,
    shop_id: int,
    user_id: int,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> ShopAuditLog:
    entry = ShopAuditLog(
        shop_id=shop_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_json=json.dumps(meta, default=str) if meta else None,
    )
    db.add(entry)
    return entry
