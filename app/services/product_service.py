"""
Catalog and inventory collaborator.

The catalog owns products; the pricing engine only reads them and writes
`current_price` through `compare_and_swap_price`.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.exceptions import ProductNotFound
from app.models.product import Product


# --------------------------
# GET PRODUCT
# --------------------------
def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_product_or_404(db: Session, product_id: int) -> Product:
    product = get_product(db, product_id)
    if not product:
        raise ProductNotFound(product_id)
    return product


# --------------------------
# BATCHED LOOKUPS
# --------------------------
def list_product_ids(db: Session, category_id: Optional[int] = None) -> List[int]:
    query = db.query(Product.id).filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    return [row.id for row in query.order_by(Product.id.asc()).all()]


def get_products_by_ids(db: Session, product_ids: List[int]) -> List[Product]:
    if not product_ids:
        return []
    return (
        db.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id.asc())
        .all()
    )


def count_products_in_category(db: Session, category_id: Optional[int]) -> int:
    query = db.query(Product).filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    return query.count()


# --------------------------
# INVENTORY
# --------------------------
def get_stock_level(product: Product) -> int:
    return int(product.stock_quantity or 0)


def get_reorder_point(product: Product) -> int:
    return int(product.reorder_point or 0)


# --------------------------
# PRICE WRITE (optimistic)
# --------------------------
def compare_and_swap_price(
    db: Session,
    product_id: int,
    expected_version: int,
    new_price: float,
) -> bool:
    """
    Write current_price only if nobody bumped the version since it was read.
    Returns False when the row changed underneath us. Does not commit.
    """
    res = db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.version == expected_version,
        )
        .values(
            current_price=new_price,
            version=Product.version + 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
