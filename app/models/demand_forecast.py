from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)

from app.database.connection import Base


class DemandForecast(Base):
    __tablename__ = "demand_forecasts"
    __table_args__ = (
        UniqueConstraint("product_id", "forecast_date", name="uq_forecast_product_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    forecast_date = Column(Date, nullable=False, index=True)
    predicted_demand = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    actual_demand = Column(Float, nullable=True)  # reconciled once the date has passed
    algorithm = Column(String, nullable=False)
    low_confidence = Column(Boolean, default=False)
    calculated_at = Column(DateTime, default=datetime.utcnow)
