import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.competitor_price import CompetitorPrice
from app.models.product import Product

logger = logging.getLogger(__name__)


# ---------- INGEST ----------

def record_price(
    db: Session,
    product_id: int,
    competitor_name: str,
    price: float,
    in_stock: bool = True,
    quality_score: float = 0.0,
    competitor_url: Optional[str] = None,
    scraped_at: Optional[datetime] = None,
) -> CompetitorPrice:
    observation = CompetitorPrice(
        product_id=product_id,
        competitor_name=competitor_name,
        competitor_url=competitor_url,
        price=price,
        in_stock=in_stock,
        quality_score=quality_score,
        scraped_at=scraped_at or datetime.utcnow(),
    )
    db.add(observation)
    db.commit()
    db.refresh(observation)
    return observation


# ---------- QUERY ----------

def list_prices(
    db: Session,
    product_id: int,
    in_stock_only: bool = False,
    high_quality_only: bool = False,
    hours: Optional[int] = None,
) -> List[CompetitorPrice]:
    query = db.query(CompetitorPrice).filter(CompetitorPrice.product_id == product_id)

    if in_stock_only:
        query = query.filter(CompetitorPrice.in_stock.is_(True))
    if high_quality_only:
        query = query.filter(
            CompetitorPrice.quality_score >= settings.COMPETITOR_HIGH_QUALITY_THRESHOLD
        )
    if hours is not None:
        query = query.filter(
            CompetitorPrice.scraped_at >= datetime.utcnow() - timedelta(hours=hours)
        )

    return query.order_by(CompetitorPrice.scraped_at.desc()).all()


def signal_prices(db: Session, product_id: int, hours: Optional[int] = None) -> List[float]:
    """
    Prices that count as a market signal: recent, in stock, high quality,
    latest observation per competitor.
    """
    window = hours if hours is not None else settings.COMPETITOR_FRESHNESS_HOURS
    rows = list_prices(db, product_id, in_stock_only=True, high_quality_only=True, hours=window)

    latest: Dict[str, CompetitorPrice] = {}
    for row in rows:  # newest first
        if row.competitor_name not in latest:
            latest[row.competitor_name] = row
    return [float(r.price) for r in latest.values() if r.price is not None and r.price > 0]


# ---------- POSITION ----------

def percentile_rank(price: float, competitor_prices: List[float]) -> Optional[float]:
    """0 = cheapest, 100 = most expensive. Ties count half."""
    if not competitor_prices:
        return None
    below = sum(1 for p in competitor_prices if p < price)
    equal = sum(1 for p in competitor_prices if p == price)
    return round((below + 0.5 * equal) / len(competitor_prices) * 100, 2)


def price_at_percentile(competitor_prices: List[float], percentile: float) -> Optional[float]:
    if not competitor_prices:
        return None
    percentile = min(max(float(percentile), 0.0), 100.0)
    return round(float(np.percentile(np.array(competitor_prices, dtype=float), percentile)), 2)


def get_competitive_position(db: Session, product: Product) -> Optional[Dict[str, Any]]:
    prices = signal_prices(db, product.id)
    if not prices:
        logger.debug("No competitor signal for product %s", product.id)
        return None

    our_price = float(product.current_price)
    avg_price = sum(prices) / len(prices)

    return {
        "total_competitors": len(prices),
        "our_price": our_price,
        "percentile": percentile_rank(our_price, prices),
        "cheaper_than": sum(1 for p in prices if our_price < p),
        "more_expensive_than": sum(1 for p in prices if our_price > p),
        "avg_competitor_price": round(avg_price, 2),
        "lowest_competitor_price": min(prices),
        "highest_competitor_price": max(prices),
        "price_position": "competitive" if our_price <= avg_price else "premium",
    }


def get_price_trends(db: Session, product_id: int, days: int = 7) -> Dict[str, Dict[str, Any]]:
    rows = list_prices(db, product_id, hours=days * 24)

    by_day: Dict[str, List[float]] = defaultdict(list)
    for row in rows:
        by_day[row.scraped_at.strftime("%Y-%m-%d")].append(float(row.price))

    return {
        day: {
            "avg_competitor_price": round(sum(values) / len(values), 2),
            "min_competitor_price": min(values),
            "max_competitor_price": max(values),
            "competitor_count": len(values),
        }
        for day, values in sorted(by_day.items())
    }
