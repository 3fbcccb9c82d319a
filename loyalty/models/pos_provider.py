from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from loyalty.core.database import Base


class PosProvider(Base):
    __tablename__ = "pos_providers"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    api_key = Column(String(128), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    shops = relationship("Shop", back_populates="pos_provider")
