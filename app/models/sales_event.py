from datetime import datetime
from sqlalchemy import Column, DateTime, Float, Index, Integer, String

from app.database.connection import Base


class SalesEvent(Base):
    """Storefront purchase/view feed. Written by the storefront, read here."""

    __tablename__ = "sales_events"
    __table_args__ = (
        Index("ix_sales_events_product_type_time", "product_id", "event_type", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String, nullable=False)  # view / purchase
    quantity = Column(Integer, nullable=False, default=1)
    amount = Column(Float, nullable=False, default=0.0)
    session_id = Column(String, nullable=True)
    occurred_at = Column(DateTime, default=datetime.utcnow, nullable=False)
