from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from loyalty.core.database import Base


class ShopAuditLog(Base):
    __tablename__ = "shop_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=True)
    entity_id = Column(Integer, nullable=True)
    meta_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
