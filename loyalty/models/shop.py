from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from loyalty.core.database import Base

SHOP_STATUS_ACTIVE = "active"
SHOP_STATUS_INACTIVE = "inactive"


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    status = Column(String(20), nullable=False, default=SHOP_STATUS_ACTIVE)
    points_per_euro = Column(Numeric(10, 2), nullable=False, default=1)
    # Provider de POS que pode validar cupons desta loja
    pos_provider_id = Column(Integer, ForeignKey("pos_providers.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    pos_provider = relationship("PosProvider", back_populates="shops")
    coupons = relationship("Coupon", back_populates="shop")

    @property
    def is_active(self) -> bool:
        return (self.status or "").strip().lower() == SHOP_STATUS_ACTIVE
