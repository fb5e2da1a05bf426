# storefront/services/catalog_service.py
import math
import time
from decimal import Decimal
from typing import Sequence

from sqlalchemy.orm import Session

from storefront.data.models.category import CategoryModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import BusinessError, ErrorCode, ValidationError, require, service_action
from storefront.domain.order_status import OPEN_STATUSES
from storefront.domain.schemas import (
    Category,
    CategoryData,
    CreateProductData,
    PaginatedResult,
    Pagination,
    Product,
    ProductFilters,
    ProductImage,
    UpdateProductData,
)
from storefront.repos.category_repo import CategoryRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.cache import TTLCache, make_key
from storefront.services.caches import catalog_cache, invalidate_carts
from storefront.utils.clock import utcnow
from storefront.utils.logging import get_logger
from storefront.utils.money import money

logger = get_logger(__name__)


def to_product(p: ProductModel) -> Product:
    ratings = [r.rating for r in p.reviews]
    return Product(
        id=p.id,
        name=p.name,
        description=p.description,
        price=money(p.price),
        stock=p.stock,
        image_url=p.image_url,
        categories=[Category.model_validate(c) for c in p.categories],
        images=[ProductImage.model_validate(i) for i in p.images],
        average_rating=round(sum(ratings) / len(ratings), 2) if ratings else None,
        review_count=len(ratings),
        is_active=p.is_active,
        created_at=p.created_at,
    )


def paginate(items: list, page: int, limit: int, total: int) -> PaginatedResult:
    return PaginatedResult(
        data=items,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


def _validate_price(price: Decimal) -> None:
    if price is None or price <= 0:
        raise ValidationError("Price must be greater than 0", "price", ErrorCode.INVALID_PRODUCT_PRICE)


def _validate_stock(stock: int) -> None:
    if stock is None or stock < 0:
        raise ValidationError("Stock cannot be negative", "stock")


class CatalogService:
    """
    Produkty i kategorie.

    - odczyty ida przez TTLCache, klucz = (operacja, parametry)
    - kazdy zapis czysci CALY cache katalogu, zadnych starych odczytow po zapisie
    """

    def __init__(self, db: Session, cache: TTLCache | None = None):
        self.db = db
        self.products = ProductRepo(db)
        self.categories = CategoryRepo(db)
        self.cache = cache if cache is not None else catalog_cache

    def _cached(self, operation: str, params: dict, loader):
        return self.cache.get_or_load(make_key(operation, params), loader)

    def _invalidate(self, reason: str) -> None:
        self.cache.clear()
        logger.debug("Catalog cache cleared", extra={"reason": reason})

    # =====================================================
    # helpers for other services (raise, never cached)
    # =====================================================
    def require_product(self, product_id: str) -> ProductModel:
        require(product_id, "product_id")
        product = self.products.get(product_id)
        if product is None:
            raise BusinessError(f"Product {product_id} not found", ErrorCode.PRODUCT_NOT_FOUND)
        return product

    def live_products(self, product_ids: Sequence[str]) -> dict[str, ProductModel]:
        return self.products.get_many(product_ids)

    def apply_stock_delta(self, product_id: str, delta: int) -> None:
        """Atomowa zmiana stanu, bez commita. INSUFFICIENT_STOCK gdy zszedlby ponizej zera."""
        if delta == 0:
            return
        if self.products.adjust_stock(product_id, delta) == 0:
            if self.products.get(product_id) is None:
                raise BusinessError(f"Product {product_id} not found", ErrorCode.PRODUCT_NOT_FOUND)
            raise BusinessError(
                f"Insufficient stock for product {product_id}", ErrorCode.INSUFFICIENT_STOCK
            )
        self._invalidate("stock")

    # =====================================================
    # product queries
    # =====================================================
    @service_action("getProduct")
    def get_product(self, product_id: str) -> Product:
        require(product_id, "product_id")

        def load():
            return to_product(self.require_product(product_id))

        return self._cached("getProduct", {"id": product_id}, load)

    @service_action("getProducts")
    def get_products(self, filters: ProductFilters | None = None, include_inactive: bool = False) -> PaginatedResult[Product]:
        filters = filters or ProductFilters()
        if filters.min_price is not None and filters.max_price is not None and filters.min_price > filters.max_price:
            raise ValidationError("min_price cannot exceed max_price", "min_price")

        def load():
            rows, total = self.products.find_page(filters, include_inactive)
            return paginate([to_product(p) for p in rows], filters.page, filters.limit, total)

        params = {**filters.model_dump(mode="json"), "include_inactive": include_inactive}
        return self._cached("getProducts", params, load)

    @service_action("searchProducts")
    def search_products(self, query: str, filters: ProductFilters | None = None) -> list[Product]:
        require(query, "query", "Search query is required")
        filters = (filters or ProductFilters()).model_copy(update={"search": query.strip()})

        def load():
            return [to_product(p) for p in self.products.search(filters)]

        return self._cached("searchProducts", filters.model_dump(mode="json"), load)

    @service_action("getProductsByCategory")
    def get_products_by_category(self, category_id: str, filters: ProductFilters | None = None) -> PaginatedResult[Product]:
        require(category_id, "category_id")
        if self.categories.get(category_id) is None:
            raise BusinessError(f"Category {category_id} not found", ErrorCode.CATEGORY_NOT_FOUND)
        filters = (filters or ProductFilters()).model_copy(update={"category_id": category_id})

        def load():
            rows, total = self.products.find_page(filters)
            return paginate([to_product(p) for p in rows], filters.page, filters.limit, total)

        return self._cached("getProductsByCategory", filters.model_dump(mode="json"), load)

    @service_action("getFeaturedProducts")
    def get_featured_products(self, limit: int = 8) -> list[Product]:
        if limit < 1:
            raise ValidationError("limit must be positive", "limit")
        return self._cached(
            "getFeaturedProducts",
            {"limit": limit},
            lambda: [to_product(p) for p in self.products.featured(limit)],
        )

    @service_action("getRelatedProducts")
    def get_related_products(self, product_id: str, limit: int = 4) -> list[Product]:
        require(product_id, "product_id")
        if limit < 1:
            raise ValidationError("limit must be positive", "limit")

        def load():
            product = self.require_product(product_id)
            category_ids = [c.id for c in product.categories]
            if not category_ids:
                return []
            return [to_product(p) for p in self.products.related(product_id, category_ids, limit)]

        return self._cached("getRelatedProducts", {"id": product_id, "limit": limit}, load)

    # =====================================================
    # product commands
    # =====================================================
    def _resolve_categories(self, category_ids: Sequence[str]) -> list[CategoryModel]:
        unique_ids = list(dict.fromkeys(category_ids))
        found = self.categories.get_many(unique_ids)
        missing = set(unique_ids) - {c.id for c in found}
        if missing:
            raise BusinessError(
                f"Category {sorted(missing)[0]} not found", ErrorCode.CATEGORY_NOT_FOUND
            )
        return found

    @service_action("createProduct")
    def create_product(self, data: CreateProductData) -> Product:
        start = time.perf_counter()
        require(data.name, "name", "Product name is required")
        _validate_price(data.price)
        _validate_stock(data.stock)

        product = ProductModel(
            name=data.name.strip(),
            description=data.description,
            price=money(data.price),
            stock=data.stock,
            image_url=data.image_url,
        )
        product.categories = self._resolve_categories(data.category_ids)
        self.products.add(product)
        self.products.commit()
        self._invalidate("createProduct")

        logger.info(
            "Product created",
            extra={
                "action": "createProduct",
                "product_id": product.id,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return to_product(self.require_product(product.id))

    @service_action("updateProduct")
    def update_product(self, data: UpdateProductData) -> Product:
        start = time.perf_counter()
        product = self.require_product(data.id)

        if data.name is not None:
            require(data.name, "name", "Product name cannot be empty")
            product.name = data.name.strip()
        if data.description is not None:
            product.description = data.description
        if data.price is not None:
            _validate_price(data.price)
            product.price = money(data.price)
        if data.stock is not None:
            _validate_stock(data.stock)
            product.stock = data.stock
        if data.image_url is not None:
            product.image_url = data.image_url
        if data.is_active is not None:
            product.is_active = data.is_active
        if data.category_ids is not None:
            self.products.set_categories(product, self._resolve_categories(data.category_ids))
        product.updated_at = utcnow()

        self.products.commit()
        self._invalidate("updateProduct")
        logger.info(
            "Product updated",
            extra={
                "action": "updateProduct",
                "product_id": product.id,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return to_product(self.require_product(product.id))

    @service_action("deleteProduct")
    def delete_product(self, product_id: str) -> bool:
        product = self.require_product(product_id)
        # usuniecie produktu z otwartego zamowienia zablokowane
        if self.products.in_open_orders(product_id, [s.value for s in OPEN_STATUSES]):
            raise BusinessError(
                "Product is part of an order that has not been delivered or cancelled",
                ErrorCode.PRODUCT_IN_OPEN_ORDERS,
            )
        customers = self.products.delete(product)
        self.products.commit()
        self._invalidate("deleteProduct")
        invalidate_carts(customers)
        logger.info("Product deleted", extra={"action": "deleteProduct", "product_id": product_id})
        return True

    @service_action("adjustStock")
    def adjust_stock(self, product_id: str, delta: int) -> int:
        require(product_id, "product_id")
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise ValidationError("delta must be an integer", "delta")
        self.apply_stock_delta(product_id, delta)
        self.products.commit()
        stock = self.require_product(product_id).stock
        logger.info(
            "Stock adjusted",
            extra={"action": "adjustStock", "product_id": product_id, "delta": delta, "stock": stock},
        )
        return stock

    # =====================================================
    # categories
    # =====================================================
    @service_action("getCategories")
    def get_categories(self) -> list[Category]:
        return self._cached(
            "getCategories", {}, lambda: [Category.model_validate(c) for c in self.categories.find_all()]
        )

    def _require_category(self, category_id: str) -> CategoryModel:
        require(category_id, "category_id")
        category = self.categories.get(category_id)
        if category is None:
            raise BusinessError(f"Category {category_id} not found", ErrorCode.CATEGORY_NOT_FOUND)
        return category

    @service_action("getCategory")
    def get_category(self, category_id: str) -> Category:
        return self._cached(
            "getCategory",
            {"id": category_id},
            lambda: Category.model_validate(self._require_category(category_id)),
        )

    @service_action("createCategory")
    def create_category(self, data: CategoryData) -> Category:
        require(data.name, "name", "Category name is required")
        name = data.name.strip()
        if self.categories.get_by_name(name) is not None:
            raise BusinessError(f"Category {name} already exists", ErrorCode.CATEGORY_EXISTS)
        category = self.categories.add(
            CategoryModel(
                name=name,
                description=data.description,
                is_active=True if data.is_active is None else data.is_active,
            )
        )
        self.db.commit()
        self._invalidate("createCategory")
        logger.info("Category created", extra={"action": "createCategory", "category_id": category.id})
        return Category.model_validate(category)

    @service_action("updateCategory")
    def update_category(self, category_id: str, data: CategoryData) -> Category:
        category = self._require_category(category_id)
        if data.name is not None:
            require(data.name, "name", "Category name cannot be empty")
            name = data.name.strip()
            existing = self.categories.get_by_name(name)
            if existing is not None and existing.id != category.id:
                raise BusinessError(f"Category {name} already exists", ErrorCode.CATEGORY_EXISTS)
            category.name = name
        if data.description is not None:
            category.description = data.description
        if data.is_active is not None:
            category.is_active = data.is_active
        self.db.commit()
        self._invalidate("updateCategory")
        return Category.model_validate(category)

    @service_action("deleteCategory")
    def delete_category(self, category_id: str) -> bool:
        category = self._require_category(category_id)
        if self.categories.has_products(category_id):
            raise BusinessError("Category still has products assigned", ErrorCode.CATEGORY_HAS_PRODUCTS)
        self.categories.delete(category)
        self.db.commit()
        self._invalidate("deleteCategory")
        logger.info("Category deleted", extra={"action": "deleteCategory", "category_id": category_id})
        return True

    # =====================================================
    # cache maintenance
    # =====================================================
    @service_action("clearCache")
    def clear_cache(self, key: str | None = None) -> int:
        if key:
            return self.cache.invalidate_matching(key)
        removed = len(self.cache)
        self.cache.clear()
        return removed

    @service_action("refreshCache")
    def refresh_cache(self, key: str | None = None) -> int:
        """Drops expired entries plus the ones matching key; they reload on next read."""
        removed = self.cache.purge_expired()
        if key:
            removed += self.cache.invalidate_matching(key)
        return removed

    @service_action("getCacheStats")
    def get_cache_stats(self) -> dict:
        return self.cache.stats()
