from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from loyalty.models.pos_provider import PosProvider
from loyalty.models.shop import Shop
from loyalty.services.errors import (
    InvalidApiKey,
    LoyaltyError,
    MalformedRedemptionCode,
    PosValidationError,
    ShopNotAssociated,
)
from loyalty.services.redemption_codes import is_valid_redemption_code
from loyalty.services.redemptions import FinalizedRedemption, RedemptionManager

logger = logging.getLogger(__name__)
POS_PREFIX = "[POS]"


@dataclass
class ValidationResult:
    provider: PosProvider
    shop: Shop
    finalized: FinalizedRedemption

    @property
    def redemption(self):
        return self.finalized.redemption

    @property
    def discount(self):
        return self.finalized.discount


class PosValidationGateway:
    def __init__(self, db: Session, manager: RedemptionManager) -> None:
        self.db = db
        self.manager = manager

    def authenticate(self, api_key: str | None) -> PosProvider:
        key = (api_key or "").strip()
        if not key:
            raise InvalidApiKey("POS API key required")
        provider = (
            self.db.query(PosProvider)
            .filter(PosProvider.api_key == key, PosProvider.is_active.is_(True))
            .first()
        )
        if provider is None:
            logger.warning("%s rejected api key", POS_PREFIX)
            raise InvalidApiKey()
        return provider

    def validate(self, api_key: str | None, shop_id: int, redemption_id: str) -> ValidationResult:
        provider = self.authenticate(api_key)

        shop = (
            self.db.query(Shop)
            .filter(Shop.id == shop_id, Shop.pos_provider_id == provider.id)
            .first()
        )
        if shop is None:
            logger.warning(
                "%s shop not associated provider_id=%s shop_id=%s",
                POS_PREFIX,
                provider.id,
                shop_id,
            )
            raise ShopNotAssociated()

        if not is_valid_redemption_code(redemption_id):
            raise MalformedRedemptionCode()

        try:
            finalized = self.manager.finalize(redemption_id, shop.id)
        except LoyaltyError as exc:
            logger.info(
                "%s validation refused provider_id=%s shop_id=%s code=%s reason=%s",
                POS_PREFIX,
                provider.id,
                shop.id,
                redemption_id,
                exc.code,
            )
            raise PosValidationError.from_error(exc) from exc

        logger.info(
            "%s validated provider_id=%s shop_id=%s code=%s",
            POS_PREFIX,
            provider.id,
            shop.id,
            redemption_id,
        )
        return ValidationResult(provider=provider, shop=shop, finalized=finalized)
