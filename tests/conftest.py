import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.database.connection import Base
from app.models.competitor_price import CompetitorPrice  # noqa: F401
from app.models.demand_forecast import DemandForecast  # noqa: F401
from app.models.price_experiment import PriceExperiment  # noqa: F401
from app.models.price_history import PriceHistory  # noqa: F401
from app.models.price_rule import PriceRule
from app.models.product import Product
from app.models.sales_event import SalesEvent  # noqa: F401
from app.models.surge_pricing_event import SurgePricingEvent  # noqa: F401
from app.models.user import User

TEST_DB_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="session", autouse=True)
def create_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    # services commit and roll back on their own, so each test gets a plain
    # session and the tables are emptied afterwards
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture()
def make_product(db):
    def _make(name="Test Product", current_price=100.0, cost=60.0, category_id=1,
              stock_quantity=50, reorder_point=10, **kwargs):
        product = Product(
            name=name,
            current_price=current_price,
            cost=cost,
            category_id=category_id,
            stock_quantity=stock_quantity,
            reorder_point=reorder_point,
            **kwargs,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product
    return _make


@pytest.fixture()
def make_rule(db):
    def _make(name="rule", rule_type="demand_based", scope="global", **kwargs):
        rule = PriceRule(name=name, rule_type=rule_type, scope=scope, **kwargs)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule
    return _make


@pytest.fixture()
def admin_user(db):
    user = User(username="admin", hashed_password="x", role="admin", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
