# storefront/repos/product_repo.py
from typing import Sequence

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.category import CategoryModel, product_categories
from storefront.data.models.order import OrderModel
from storefront.data.models.order_item import OrderItemModel
from storefront.data.models.product import ProductModel
from storefront.domain.schemas import ProductFilters


def _with_relations(stmt):
    return stmt.options(
        selectinload(ProductModel.categories),
        selectinload(ProductModel.images),
        selectinload(ProductModel.reviews),
    )


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    # =====================================================
    # reads
    # =====================================================
    def get(self, product_id: str) -> ProductModel | None:
        stmt = _with_relations(select(ProductModel).where(ProductModel.id == product_id))
        # stock mogl sie zmienic przez warunkowy UPDATE, zawsze swieze dane
        stmt = stmt.execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_many(self, product_ids: Sequence[str]) -> dict[str, ProductModel]:
        if not product_ids:
            return {}
        stmt = (
            select(ProductModel)
            .where(ProductModel.id.in_(list(product_ids)))
            .execution_options(populate_existing=True)
        )
        return {p.id: p for p in self.db.execute(stmt).scalars().all()}

    def _filtered(self, filters: ProductFilters, include_inactive: bool = False):
        stmt = select(ProductModel)
        if not include_inactive:
            stmt = stmt.where(ProductModel.is_active.is_(True))
        if filters.category_id:
            stmt = stmt.where(
                ProductModel.id.in_(
                    select(product_categories.c.product_id).where(
                        product_categories.c.category_id == filters.category_id
                    )
                )
            )
        if filters.min_price is not None:
            stmt = stmt.where(ProductModel.price >= filters.min_price)
        if filters.max_price is not None:
            stmt = stmt.where(ProductModel.price <= filters.max_price)
        if filters.in_stock:
            stmt = stmt.where(ProductModel.stock > 0)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(or_(ProductModel.name.ilike(pattern), ProductModel.description.ilike(pattern)))
        return stmt

    def find_page(self, filters: ProductFilters, include_inactive: bool = False) -> tuple[list[ProductModel], int]:
        base = self._filtered(filters, include_inactive)
        total = self.db.execute(select(func.count()).select_from(base.subquery())).scalar_one()

        column = getattr(ProductModel, filters.sort_by.value)
        order = column.asc() if filters.sort_order == "asc" else column.desc()
        offset = (filters.page - 1) * filters.limit
        stmt = _with_relations(base.order_by(order, ProductModel.id).offset(offset).limit(filters.limit))
        return list(self.db.execute(stmt).scalars().all()), total

    def search(self, filters: ProductFilters) -> list[ProductModel]:
        column = getattr(ProductModel, filters.sort_by.value)
        order = column.asc() if filters.sort_order == "asc" else column.desc()
        stmt = _with_relations(self._filtered(filters).order_by(order, ProductModel.id))
        return list(self.db.execute(stmt).scalars().all())

    def featured(self, limit: int) -> list[ProductModel]:
        stmt = _with_relations(
            select(ProductModel)
            .where(ProductModel.is_active.is_(True), ProductModel.stock > 0)
            .order_by(ProductModel.created_at.desc(), ProductModel.id)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def related(self, product_id: str, category_ids: Sequence[str], limit: int) -> list[ProductModel]:
        in_categories = select(product_categories.c.product_id).where(
            product_categories.c.category_id.in_(list(category_ids))
        )
        stmt = _with_relations(
            select(ProductModel)
            .where(
                ProductModel.id.in_(in_categories),
                ProductModel.id != product_id,
                ProductModel.stock > 0,
                ProductModel.is_active.is_(True),
            )
            .order_by(ProductModel.created_at.desc(), ProductModel.id)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def in_open_orders(self, product_id: str, open_statuses: Sequence[str]) -> bool:
        stmt = select(
            exists().where(
                OrderItemModel.product_id == product_id,
                OrderItemModel.order_id == OrderModel.id,
                OrderModel.status.in_(list(open_statuses)),
            )
        )
        return bool(self.db.execute(stmt).scalar())

    # =====================================================
    # writes (flush only, commit robi serwis)
    # =====================================================
    def add(self, product: ProductModel) -> ProductModel:
        self.db.add(product)
        self.db.flush()
        return product

    def set_categories(self, product: ProductModel, categories: list[CategoryModel]) -> None:
        product.categories = categories
        self.db.flush()

    def delete(self, product: ProductModel) -> list[str]:
        """Returns customer ids whose carts lost a line."""
        #kaskada: linie koszykow, powiazania z kategoriami, zdjecia, potem sam produkt
        customers = self.db.execute(
            select(CartModel.customer_id)
            .join(CartItemModel, CartItemModel.cart_id == CartModel.id)
            .where(CartItemModel.product_id == product.id)
            .distinct()
        ).scalars().all()
        self.db.execute(delete(CartItemModel).where(CartItemModel.product_id == product.id))
        product.categories.clear()
        for image in list(product.images):
            self.db.delete(image)
        self.db.flush()
        self.db.delete(product)
        self.db.flush()
        return list(customers)

    def adjust_stock(self, product_id: str, delta: int) -> int:
        """
        Atomic conditional stock change.

        UPDATE products SET stock = stock + :delta
        WHERE id = :id AND stock + :delta >= 0

        Returns rowcount: 0 means the product is missing or stock would go negative.
        """
        stmt = (
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock + delta >= 0)
            .values(stock=ProductModel.stock + delta)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
