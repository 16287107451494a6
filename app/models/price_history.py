from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index
from datetime import datetime
from app.database.connection import Base

class PriceHistory(Base):
    __tablename__ = "price_history"
    __table_args__ = (
        Index("ix_price_history_product_changed", "product_id", "changed_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    old_price = Column(Float, nullable=False)
    new_price = Column(Float, nullable=False)
    change_percentage = Column(Float, nullable=False, default=0.0)
    reason = Column(String, nullable=False, index=True)  # manual / rule_based / demand / competitor / surge
    rule_id = Column(Integer, ForeignKey("price_rules.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Integer, nullable=True)  # null = system
    notes = Column(String, nullable=True)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
