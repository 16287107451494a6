from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String

from app.database.connection import Base


class CompetitorPrice(Base):
    __tablename__ = "competitor_prices"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    competitor_name = Column(String, nullable=False, index=True)
    competitor_url = Column(String, nullable=True)
    price = Column(Float, nullable=False)
    in_stock = Column(Boolean, default=True)
    quality_score = Column(Float, nullable=False, default=0.0)  # match quality 0-1
    scraped_at = Column(DateTime, default=datetime.utcnow, index=True)
