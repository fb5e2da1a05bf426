# storefront/services/cart_manager.py
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Sequence

from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import BusinessError, ErrorCode, ValidationError, require, service_action
from storefront.domain.schemas import (
    Cart,
    CartIssue,
    CartIssueType,
    CartItem,
    CartSearchFilters,
    CartValidationResult,
)
from storefront.repos.cart_repo import CartRepo
from storefront.services.cache import TTLCache, make_key
from storefront.services.caches import cart_cache, customer_fragment
from storefront.services.catalog_service import CatalogService
from storefront.services.lock_service import BaseLockService, cart_lock_key, get_lock_service
from storefront.utils.clock import utcnow
from storefront.utils.logging import get_logger
from storefront.utils.money import ZERO, money
from storefront.utils.settings import (
    CART_TTL_DAYS,
    LOW_STOCK_THRESHOLD,
    MAX_CART_QUANTITY,
    PRICE_DECREASE_BLOCKS_CHECKOUT,
)

logger = get_logger(__name__)


def to_cart(cart: CartModel) -> Cart:
    """Totals always use the live product price."""
    items = []
    total_items = 0
    total_amount = ZERO
    for i in cart.items:
        unit_price = money(i.product.price)
        line_total = money(unit_price * i.quantity)
        items.append(
            CartItem(
                id=i.id,
                cart_id=cart.id,
                product_id=i.product_id,
                product_name=i.product.name,
                quantity=i.quantity,
                unit_price=unit_price,
                total_price=line_total,
                stock=i.product.stock,
            )
        )
        total_items += i.quantity
        total_amount += line_total
    return Cart(
        id=cart.id,
        customer_id=cart.customer_id,
        items=items,
        total_items=total_items,
        total_amount=money(total_amount),
        expires_at=cart.expires_at,
        updated_at=cart.updated_at,
    )


def _validate_quantity(quantity) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be greater than 0", "quantity")
    if quantity > MAX_CART_QUANTITY:
        raise ValidationError(f"Quantity cannot exceed {MAX_CART_QUANTITY}", "quantity")


class CartManager:
    """
    Koszyk klienta (jeden na klienta, unique customer_id).

    commands (add, update, remove, clear) ida pod lockiem per klient
    i czyszcza wpisy cache tego klienta; query (get, validate) tylko czytaja.
    """

    def __init__(
        self,
        db: Session,
        catalog: CatalogService | None = None,
        lock_service: BaseLockService | None = None,
        cache: TTLCache | None = None,
    ):
        self.db = db
        self.repo = CartRepo(db)
        self.catalog = catalog or CatalogService(db)
        self.locks = lock_service or get_lock_service()
        self.cache = cache if cache is not None else cart_cache

    # =====================================================
    # helpers
    # =====================================================
    def _expiry(self):
        return utcnow() + timedelta(days=CART_TTL_DAYS)

    def load_cart(self, customer_id: str) -> CartModel:
        """Get-or-create bez cache, zwraca model. Tworzenie commituje, wolac przed innymi zmianami w sesji."""
        require(customer_id, "customer_id", "Customer ID is required")
        cart = self.repo.get_by_customer(customer_id)
        if cart is None:
            cart = self.repo.create_cart(customer_id, self._expiry())
            logger.info("Cart created", extra={"action": "getOrCreateCart", "customer_id": customer_id})
        return cart

    def _invalidate(self, customer_id: str) -> None:
        self.cache.invalidate_matching(customer_fragment(customer_id))

    @contextmanager
    def _mutation(self, customer_id: str) -> Iterator[None]:
        # rollback jeszcze pod lockiem, zanim nastepny request go dostanie
        with self.locks.hold(cart_lock_key(customer_id)):
            try:
                yield
            except Exception:
                self.db.rollback()
                raise
        self._invalidate(customer_id)

    def _require_owned_item(self, customer_id: str, item_id: str) -> CartItemModel:
        require(item_id, "item_id", "Item ID is required")
        item = self.repo.get_item(item_id)
        if item is None:
            raise BusinessError("Cart item not found", ErrorCode.CART_ITEM_NOT_FOUND)
        if item.cart.customer_id != customer_id:
            logger.warning(
                "Cart item belongs to another customer",
                extra={"customer_id": customer_id, "item_id": item_id},
            )
            raise BusinessError("Unauthorized access to cart item", ErrorCode.UNAUTHORIZED_CART_ACCESS)
        return item

    def _touch(self, cart: CartModel) -> None:
        self.repo.touch(cart, utcnow(), self._expiry())

    # =====================================================
    # queries
    # =====================================================
    @service_action("getOrCreateCart")
    def get_or_create_cart(self, customer_id: str) -> Cart:
        require(customer_id, "customer_id", "Customer ID is required")
        return self.cache.get_or_load(
            make_key("getCart", {"customer_id": customer_id}),
            lambda: to_cart(self.load_cart(customer_id)),
        )

    def get_cart(self, customer_id: str):
        return self.get_or_create_cart(customer_id)

    @service_action("validateCart")
    def validate_cart(self, customer_id: str) -> CartValidationResult:
        """Re-checks every line against live stock and price. Read only."""
        cart = self.load_cart(customer_id)
        errors: list[CartIssue] = []
        warnings: list[CartIssue] = []

        live = self.catalog.live_products([i.product_id for i in cart.items])
        for item in cart.items:
            product = live.get(item.product_id)
            if product is None or not product.is_active:
                errors.append(
                    CartIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        type=CartIssueType.PRODUCT_UNAVAILABLE,
                        message="Product is no longer available",
                    )
                )
                continue

            if product.stock == 0:
                errors.append(
                    CartIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        type=CartIssueType.OUT_OF_STOCK,
                        message="Product is out of stock",
                        current_stock=0,
                        requested_quantity=item.quantity,
                    )
                )
            elif product.stock < item.quantity:
                errors.append(
                    CartIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        type=CartIssueType.INSUFFICIENT_STOCK,
                        message=f"Insufficient stock. Available: {product.stock}, Requested: {item.quantity}",
                        current_stock=product.stock,
                        requested_quantity=item.quantity,
                    )
                )
            elif product.stock <= LOW_STOCK_THRESHOLD:
                warnings.append(
                    CartIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        type=CartIssueType.LOW_STOCK,
                        message=f"Low stock warning. Only {product.stock} items remaining",
                        current_stock=product.stock,
                        requested_quantity=item.quantity,
                    )
                )

            if item.viewed_price is None:
                continue
            old_price, new_price = money(item.viewed_price), money(product.price)
            if new_price > old_price:
                warnings.append(
                    CartIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        type=CartIssueType.PRICE_INCREASE,
                        message=f"Price has increased from {old_price} to {new_price}",
                        old_price=old_price,
                        new_price=new_price,
                    )
                )
            elif new_price < old_price:
                issue = CartIssue(
                    item_id=item.id,
                    product_id=item.product_id,
                    type=CartIssueType.PRICE_CHANGED,
                    message=f"Price has changed from {old_price} to {new_price}",
                    old_price=old_price,
                    new_price=new_price,
                )
                (errors if PRICE_DECREASE_BLOCKS_CHECKOUT else warnings).append(issue)

        result = CartValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        logger.info(
            "Cart validation completed",
            extra={
                "action": "validateCart",
                "customer_id": customer_id,
                "is_valid": result.is_valid,
                "error_count": len(errors),
                "warning_count": len(warnings),
            },
        )
        return result

    @service_action("searchCarts")
    def search_carts(self, filters: CartSearchFilters | None = None) -> list[Cart]:
        filters = filters or CartSearchFilters()
        if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
            raise ValidationError("date_from cannot be after date_to", "date_from")
        return [to_cart(c) for c in self.repo.search(filters)]

    # =====================================================
    # commands
    # =====================================================
    @service_action("addItem")
    def add_item(self, customer_id: str, product_id: str, quantity: int) -> Cart:
        require(customer_id, "customer_id", "Customer ID is required")
        require(product_id, "product_id", "Product ID is required")
        _validate_quantity(quantity)

        with self._mutation(customer_id):
            cart = self.load_cart(customer_id)
            product = self.catalog.require_product(product_id)
            if not product.is_active:
                raise BusinessError("Product is not available", ErrorCode.PRODUCT_NOT_FOUND)

            existing = self.repo.get_item_by_product(cart.id, product_id)
            # walidacja sumy po merge, nie tylko delty
            new_quantity = quantity + (existing.quantity if existing else 0)
            if new_quantity > MAX_CART_QUANTITY:
                raise ValidationError(f"Quantity cannot exceed {MAX_CART_QUANTITY}", "quantity")
            if product.stock < new_quantity:
                raise BusinessError(
                    f"Insufficient stock. Available: {product.stock}, Requested: {new_quantity}",
                    ErrorCode.INSUFFICIENT_STOCK,
                )

            if existing:
                existing.quantity = new_quantity
                existing.viewed_price = product.price
            else:
                self.repo.add_item(
                    CartItemModel(
                        cart_id=cart.id,
                        product_id=product_id,
                        quantity=quantity,
                        viewed_price=product.price,
                    )
                )
            self._touch(cart)
            self.repo.commit()

        logger.info(
            "Item added to cart",
            extra={"action": "addItem", "customer_id": customer_id, "product_id": product_id, "quantity": quantity},
        )
        return to_cart(self.load_cart(customer_id))

    @service_action("updateItem")
    def update_item(self, customer_id: str, item_id: str, quantity: int) -> Cart:
        require(customer_id, "customer_id", "Customer ID is required")
        _validate_quantity(quantity)

        with self._mutation(customer_id):
            item = self._require_owned_item(customer_id, item_id)
            product = self.catalog.require_product(item.product_id)
            if product.stock < quantity:
                raise BusinessError(
                    f"Insufficient stock. Available: {product.stock}, Requested: {quantity}",
                    ErrorCode.INSUFFICIENT_STOCK,
                )
            item.quantity = quantity
            item.viewed_price = product.price
            self._touch(item.cart)
            self.repo.commit()

        logger.info(
            "Cart item updated",
            extra={"action": "updateItem", "customer_id": customer_id, "item_id": item_id, "quantity": quantity},
        )
        return to_cart(self.load_cart(customer_id))

    @service_action("removeItem")
    def remove_item(self, customer_id: str, item_id: str) -> Cart:
        require(customer_id, "customer_id", "Customer ID is required")

        with self._mutation(customer_id):
            item = self._require_owned_item(customer_id, item_id)
            cart = item.cart
            self.repo.delete_item(item)
            self._touch(cart)
            self.repo.commit()

        logger.info("Cart item removed", extra={"action": "removeItem", "customer_id": customer_id, "item_id": item_id})
        return to_cart(self.load_cart(customer_id))

    @service_action("clearCart")
    def clear_cart(self, customer_id: str) -> int:
        """Deletes every line, keeps the cart row. Returns the number of removed lines."""
        require(customer_id, "customer_id", "Customer ID is required")

        with self._mutation(customer_id):
            removed = self._delete_lines(customer_id)

        logger.info("Cart cleared", extra={"action": "clearCart", "customer_id": customer_id, "removed": removed})
        return removed

    def _delete_lines(self, customer_id: str, item_ids: Sequence[str] | None = None) -> int:
        cart = self.repo.get_by_customer(customer_id)
        if cart is None:
            return 0
        removed = self.repo.delete_items(cart.id, item_ids)
        self._touch(cart)
        self.repo.commit()
        return removed

    # =====================================================
    # checkout
    # =====================================================
    @contextmanager
    def hold(self, customer_id: str) -> Iterator[None]:
        """Cart lock for a whole checkout; nothing can add or remove lines meanwhile."""
        require(customer_id, "customer_id", "Customer ID is required")
        with self._mutation(customer_id):
            yield

    @service_action("clearOrderedLines")
    def clear_ordered_lines(self, customer_id: str, item_ids: Sequence[str]) -> int:
        # wolane tylko wewnatrz hold(), lock nie jest reentrant
        removed = self._delete_lines(customer_id, item_ids)
        self._invalidate(customer_id)
        logger.info(
            "Ordered lines removed from cart",
            extra={"action": "clearOrderedLines", "customer_id": customer_id, "removed": removed},
        )
        return removed

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
        removed = self.cache.purge_expired()
        if key:
            removed += self.cache.invalidate_matching(key)
        return removed
