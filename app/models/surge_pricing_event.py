from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String

from app.database.connection import Base


class SurgePricingEvent(Base):
    __tablename__ = "surge_pricing_events"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    multiplier = Column(Float, nullable=False)
    base_price = Column(Float, nullable=False)  # recommended price before the multiplier
    status = Column(String, default="active", index=True)  # active / expired / deactivated
    is_active = Column(Boolean, default=True, index=True)
    starts_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
