from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import relationship

from loyalty.core.database import Base

COUPON_TYPE_PERCENTAGE = "percentage"
COUPON_TYPE_FIXED = "fixed"
COUPON_TYPES = (COUPON_TYPE_PERCENTAGE, COUPON_TYPE_FIXED)

REDEMPTION_STATUS_ACTIVE = "active"
REDEMPTION_STATUS_USED = "used"
REDEMPTION_STATUS_EXPIRED = "expired"
REDEMPTION_STATUS_CANCELLED = "cancelled"

_ACTIVE_ONLY = text("status = 'active'")


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)
    points_required = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    shop = relationship("Shop", back_populates="coupons")
    line_items = relationship(
        "CouponLineItem",
        back_populates="coupon",
        order_by="CouponLineItem.position",
        cascade="all, delete-orphan",
    )
    # Sem cascade: redemptions mantêm o cupom vivo (soft delete via is_active)
    redemptions = relationship("CouponRedemption", back_populates="coupon")


class CouponLineItem(Base):
    __tablename__ = "coupon_line_items"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    # product_id nulo = desconto no pedido inteiro
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    product_name = Column(String(120), nullable=True)
    discount_value = Column(Numeric(10, 2), nullable=False)

    coupon = relationship("Coupon", back_populates="line_items")
    product = relationship("Product")

    @property
    def applies_to_entire_order(self) -> bool:
        return self.product_id is None


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        Index(
            "uq_coupon_redemptions_active_code",
            "code",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index("ix_coupon_redemptions_status_expires_at", "status", "expires_at"),
    )

    id = Column(Integer, primary_key=True)
    code = Column(String(7), nullable=False, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    app_user_id = Column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    points_deducted = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=REDEMPTION_STATUS_ACTIVE)
    discount_applied = Column(Numeric(10, 2), nullable=True)
    reserved_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    coupon = relationship("Coupon", back_populates="redemptions")
    app_user = relationship("AppUser")
    shop = relationship("Shop")
