"""create pricing engine tables

Revision ID: 3f9a1c7d2b84
Revises:
Create Date: 2026-01-12 09:41:18.203517

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2b84'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("current_price", sa.Float(), nullable=False),
        sa.Column("cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("reorder_point", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])

    op.create_table(
        "price_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("rule_type", sa.String(), nullable=False),
        sa.Column("min_price", sa.Float(), nullable=True),
        sa.Column("max_price", sa.Float(), nullable=True),
        sa.Column("target_margin", sa.Float(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("adjustments", sa.JSON(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_price_rules_product_id", "price_rules", ["product_id"])
    op.create_index("ix_price_rules_category_id", "price_rules", ["category_id"])

    op.create_table(
        "price_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("old_price", sa.Float(), nullable=False),
        sa.Column("new_price", sa.Float(), nullable=False),
        sa.Column("change_percentage", sa.Float(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("rule_id", sa.Integer(), sa.ForeignKey("price_rules.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_price_history_product_changed", "price_history", ["product_id", "changed_at"])
    op.create_index("ix_price_history_reason", "price_history", ["reason"])

    op.create_table(
        "competitor_prices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("competitor_name", sa.String(), nullable=False),
        sa.Column("competitor_url", sa.String(), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("in_stock", sa.Boolean(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("scraped_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_competitor_prices_product_id", "competitor_prices", ["product_id"])
    op.create_index("ix_competitor_prices_scraped_at", "competitor_prices", ["scraped_at"])

    op.create_table(
        "demand_forecasts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("forecast_date", sa.Date(), nullable=False),
        sa.Column("predicted_demand", sa.Float(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("actual_demand", sa.Float(), nullable=True),
        sa.Column("algorithm", sa.String(), nullable=False),
        sa.Column("low_confidence", sa.Boolean(), nullable=True),
        sa.Column("calculated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("product_id", "forecast_date", name="uq_forecast_product_date"),
    )

    op.create_table(
        "price_experiments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("control_price", sa.Float(), nullable=False),
        sa.Column("variant_price", sa.Float(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("control_impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("control_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("control_revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("variant_impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("variant_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("variant_revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("winner", sa.String(), nullable=True),
        sa.Column("p_value", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_price_experiments_product_id", "price_experiments", ["product_id"])
    op.create_index("ix_price_experiments_status", "price_experiments", ["status"])

    op.create_table(
        "surge_pricing_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("multiplier", sa.Float(), nullable=False),
        sa.Column("base_price", sa.Float(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=False),
        sa.Column("ends_at", sa.DateTime(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_surge_pricing_events_product_id", "surge_pricing_events", ["product_id"])
    op.create_index("ix_surge_pricing_events_is_active", "surge_pricing_events", ["is_active"])

    op.create_table(
        "sales_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sales_events_product_type_time", "sales_events", ["product_id", "event_type", "occurred_at"])


def downgrade():
    op.drop_table("sales_events")
    op.drop_table("surge_pricing_events")
    op.drop_table("price_experiments")
    op.drop_table("demand_forecasts")
    op.drop_table("competitor_prices")
    op.drop_table("price_history")
    op.drop_table("price_rules")
    op.drop_table("products")
    op.drop_table("users")
