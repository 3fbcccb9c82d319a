from __future__ import annotations

from typing import Any


class LoyaltyError(Exception):
    """Erro de negócio com código estável e status HTTP sugerido.

    As rotas não inspecionam mensagens: o handler em ``loyalty.main`` usa
    ``code``, ``status_code`` e ``details()`` para montar a resposta.
    """

    code = "LOYALTY_ERROR"
    status_code = 400
    message = "Request could not be processed"
    alert = False

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def details(self) -> dict[str, Any] | None:
        return None


# --- ledger ---


class AccountNotFound(LoyaltyError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404
    message = "No loyalty account found for this shop"

    def __init__(self, customer_id: int, shop_id: int) -> None:
        self.customer_id = customer_id
        self.shop_id = shop_id
        super().__init__()


class InsufficientPoints(LoyaltyError):
    code = "INSUFFICIENT_POINTS"
    message = "Insufficient loyalty points"

    def __init__(self, required: int, available: int) -> None:
        self.required = int(required)
        self.available = int(available)
        self.shortfall = max(self.required - self.available, 0)
        super().__init__()

    def details(self) -> dict[str, Any]:
        return {
            "points_required": self.required,
            "points_available": self.available,
            "points_needed": self.shortfall,
        }


# --- catalog ---


class CouponNotFound(LoyaltyError):
    code = "COUPON_NOT_FOUND"
    status_code = 404
    message = "Coupon not found or not available"

    def __init__(self, coupon_id: int) -> None:
        self.coupon_id = coupon_id
        super().__init__()


class InvalidCouponSpec(LoyaltyError):
    code = "INVALID_COUPON_SPEC"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"field": self.field}


# --- reservation ---


class NoLoyaltyAccount(LoyaltyError):
    code = "NO_LOYALTY_ACCOUNT"
    message = "No loyalty account found for this shop"

    def __init__(self, customer_id: int, shop_id: int) -> None:
        self.customer_id = customer_id
        self.shop_id = shop_id
        super().__init__()


class IdGenerationExhausted(LoyaltyError):
    code = "ID_GENERATION_EXHAUSTED"
    status_code = 500
    message = "Failed to generate unique redemption ID"
    alert = True

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__()


class ReservationFailed(LoyaltyError):
    code = "RESERVATION_FAILED"
    status_code = 500
    message = "Failed to activate coupon"


class CompensationFailed(LoyaltyError):
    code = "COMPENSATION_FAILED"
    status_code = 500
    message = "Failed to activate coupon"
    alert = True

    def __init__(self, customer_id: int, shop_id: int, amount: int) -> None:
        self.customer_id = customer_id
        self.shop_id = shop_id
        self.amount = amount
        super().__init__()


# --- finalize ---


class RedemptionNotFound(LoyaltyError):
    code = "REDEMPTION_NOT_FOUND"
    status_code = 404
    message = "Invalid or already used coupon redemption"

    def __init__(self, code: str) -> None:
        self.redemption_code = code
        super().__init__()


class ShopMismatch(LoyaltyError):
    code = "SHOP_MISMATCH"
    message = "Coupon does not belong to this shop"


class AlreadyFinalizedOrExpired(LoyaltyError):
    code = "ALREADY_FINALIZED_OR_EXPIRED"
    message = "Coupon redemption has already been used or cancelled"

    def __init__(self, status: str, message: str | None = None) -> None:
        self.status = status
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"status": self.status}


class Expired(AlreadyFinalizedOrExpired):
    code = "EXPIRED"
    message = "Coupon redemption has expired"

    def __init__(self) -> None:
        super().__init__("expired")


# --- POS ---


class InvalidApiKey(LoyaltyError):
    code = "INVALID_API_KEY"
    status_code = 401
    message = "Invalid POS API key"


class ShopNotAssociated(LoyaltyError):
    code = "SHOP_NOT_ASSOCIATED"
    message = "Shop not found or doesn't belong to this POS provider"


class MalformedRedemptionCode(LoyaltyError):
    code = "MALFORMED_REDEMPTION_CODE"
    message = "Invalid redemption code format - expected A12-345"


class PosValidationError(LoyaltyError):
    """Falha do finalize vista pelo POS: mesmo código, sempre 400, sem detalhes do cliente."""

    status_code = 400

    def __init__(self, source: LoyaltyError) -> None:
        self.source = source
        self.code = source.code
        super().__init__(source.message)

    @classmethod
    def from_error(cls, source: LoyaltyError) -> "PosValidationError":
        return cls(source)

    def details(self) -> dict[str, Any] | None:
        if isinstance(self.source, AlreadyFinalizedOrExpired):
            return self.source.details()
        return None
