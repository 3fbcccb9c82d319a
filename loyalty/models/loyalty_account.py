from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from loyalty.core.database import Base


class LoyaltyAccount(Base):
    __tablename__ = "customer_loyalty_accounts"
    __table_args__ = (
        UniqueConstraint("app_user_id", "shop_id", name="uq_loyalty_accounts_user_shop"),
        CheckConstraint("points_balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    app_user_id = Column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    # Só muda via LoyaltyLedger.debit/credit
    points_balance = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    app_user = relationship("AppUser", back_populates="loyalty_accounts")
    shop = relationship("Shop")
