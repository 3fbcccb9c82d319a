from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from loyalty.core.database import Base


class ShopUser(Base):
    __tablename__ = "shop_users"
    __table_args__ = (UniqueConstraint("shop_id", "email", name="uq_shop_users_shop_email"),)

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)

    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default="manager")
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
