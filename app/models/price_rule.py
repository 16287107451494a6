from sqlalchemy import Column, Integer, String, Float, JSON, Boolean, DateTime
import datetime
from app.database.connection import Base


class PriceRule(Base):
    __tablename__ = "price_rules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    scope = Column(String, nullable=False, default="global")  # product / category / global
    product_id = Column(Integer, nullable=True, index=True)
    category_id = Column(Integer, nullable=True, index=True)
    rule_type = Column(String, nullable=False)
    min_price = Column(Float, nullable=True)
    max_price = Column(Float, nullable=True)
    target_margin = Column(Float, nullable=True)  # fraction, 0.3 = 30%
    # e.g. [{"field": "stock_level", "operator": "<", "value": 10}]
    conditions = Column(JSON, default=list)
    adjustments = Column(JSON, default=dict)
    priority = Column(Integer, nullable=False, default=50)
    is_active = Column(Boolean, default=True)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)
