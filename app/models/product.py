from sqlalchemy import Boolean, Column, Float, Integer, String, DateTime
from datetime import datetime
from app.database.connection import Base

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    category_id = Column(Integer, nullable=True, index=True)

    current_price = Column(Float, nullable=False)
    cost = Column(Float, nullable=False, default=0.0)

    # inventory collaborator fields
    stock_quantity = Column(Integer, default=0)
    reorder_point = Column(Integer, default=0)

    is_active = Column(Boolean, default=True)
    # bumped on every price write; compare-and-swap target
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
