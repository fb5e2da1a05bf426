# storefront/data/seed.py
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.data.database import SessionLocal
from storefront.data.models import CategoryModel, DiscountCodeModel, ProductModel
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DISCOUNT_CODES = [
    dict(code="WELCOME10", type="percentage", value=Decimal("10"), min_order_amount=Decimal("50"),
         max_discount=Decimal("20"), usage_limit=100),
    dict(code="SAVE5", type="fixed", value=Decimal("5"), min_order_amount=Decimal("25"), usage_limit=50),
    dict(code="HONEY20", type="percentage", value=Decimal("20"), min_order_amount=Decimal("100"),
         max_discount=Decimal("50"), usage_limit=25),
]

CATALOG = {
    "Honey": [
        ("Acacia honey 500g", Decimal("39.90"), 40),
        ("Buckwheat honey 500g", Decimal("34.50"), 25),
        ("Linden honey 250g", Decimal("22.00"), 4),
    ],
    "Gifts": [
        ("Honey tasting box", Decimal("119.00"), 10),
    ],
}


def seed_discount_codes(db: Session) -> int:
    added = 0
    for data in DISCOUNT_CODES:
        if db.get(DiscountCodeModel, data["code"]) is None:
            db.add(DiscountCodeModel(used_count=0, is_active=True, **data))
            added += 1
    return added


def seed_catalog(db: Session) -> int:
    # tylko gdy pusto
    if db.execute(select(ProductModel.id).limit(1)).first():
        return 0
    added = 0
    for category_name, products in CATALOG.items():
        category = CategoryModel(name=category_name)
        db.add(category)
        for name, price, stock in products:
            db.add(ProductModel(name=name, price=price, stock=stock, categories=[category]))
            added += 1
    return added


def seed(db: Session | None = None) -> None:
    own = db is None
    db = db or SessionLocal()
    try:
        codes = seed_discount_codes(db)
        products = seed_catalog(db)
        db.commit()
        logger.info("Seed completed", extra={"discount_codes": codes, "products": products})
    finally:
        if own:
            db.close()


if __name__ == "__main__":
    seed()
