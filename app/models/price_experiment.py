from datetime import datetime
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String

from app.database.connection import Base


class PriceExperiment(Base):
    __tablename__ = "price_experiments"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    control_price = Column(Float, nullable=False)
    variant_price = Column(Float, nullable=False)
    status = Column(String, default="draft", index=True)  # draft / running / completed / cancelled

    control_impressions = Column(Integer, nullable=False, default=0)
    control_conversions = Column(Integer, nullable=False, default=0)
    control_revenue = Column(Float, nullable=False, default=0.0)
    variant_impressions = Column(Integer, nullable=False, default=0)
    variant_conversions = Column(Integer, nullable=False, default=0)
    variant_revenue = Column(Float, nullable=False, default=0.0)

    winner = Column(String, nullable=True)  # control / variant / inconclusive
    p_value = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
