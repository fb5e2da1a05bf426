# storefront/services/checkout_service.py
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.order import OrderModel
from storefront.data.models.order_item import OrderItemModel
from storefront.data.models.payment import PaymentModel
from storefront.domain.errors import AppError, BusinessError, ErrorCode, ValidationError, require, service_action
from storefront.domain.order_status import ensure_transition
from storefront.domain.schemas import (
    CheckoutData,
    CheckoutResult,
    CreateOrderData,
    DiscountValidation,
    Order,
    OrderItemInput,
    OrderStatus,
    OrderTotal,
    PaymentMethod,
    UpdateOrderStatusData,
)
from storefront.repos.address_repo import AddressRepo
from storefront.repos.cart_repo import CartRepo
from storefront.repos.order_repo import OrderRepo
from storefront.services.cart_manager import CartManager
from storefront.services.catalog_service import CatalogService
from storefront.services.discount_ledger import DiscountLedger
from storefront.services.order_service import OrderService, to_order
from storefront.services.saga import Saga, SagaFailed
from storefront.utils.clock import utcnow
from storefront.utils.logging import get_logger
from storefront.utils.money import ZERO, money
from storefront.utils.settings import FLAT_SHIPPING_FEE, FREE_SHIPPING_THRESHOLD, MAX_CART_QUANTITY, TAX_RATE

logger = get_logger(__name__)

STEP_DISCOUNT = "reserve discount"
STEP_HEADER = "insert order header"
STEP_LINES = "insert order lines"
STEP_PAYMENT = "insert payment stub"
STEP_STOCK = "decrement stock"

# kod bledu dla nieoczekiwanego wyjatku w danym kroku sagi
_STEP_ERROR_CODES = {
    STEP_HEADER: ErrorCode.ORDER_CREATE_ERROR,
    STEP_LINES: ErrorCode.ORDER_ITEMS_CREATE_ERROR,
    STEP_PAYMENT: ErrorCode.PAYMENT_CREATE_ERROR,
}


def quote_totals(subtotal: Decimal, discount_amount: Decimal = ZERO) -> OrderTotal:
    """subtotal - discount + tax + shipping; shipping free strictly above the threshold."""
    subtotal = money(subtotal)
    discount_amount = money(min(discount_amount, subtotal))
    shipping = ZERO if subtotal > FREE_SHIPPING_THRESHOLD else money(FLAT_SHIPPING_FEE)
    tax = money((subtotal - discount_amount) * TAX_RATE)
    return OrderTotal(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax,
        shipping_amount=shipping,
        total=money(subtotal - discount_amount + tax + shipping),
    )


class CheckoutOrchestrator:
    """
    Checkout: walidacja koszyka na zywym katalogu, wycena, zapis zamowienia.

    Zapis zamowienia to saga: kazdy krok commituje osobno i ma kompensacje.
    Blad kroku -> kompensacje w odwrotnej kolejnosci; blad kompensacji ->
    CHECKOUT_ROLLBACK_INCOMPLETE.
    """

    def __init__(
        self,
        db: Session,
        catalog: CatalogService | None = None,
        carts: CartManager | None = None,
        discounts: DiscountLedger | None = None,
        orders: OrderService | None = None,
    ):
        self.db = db
        self.catalog = catalog or CatalogService(db)
        self.carts = carts or CartManager(db, catalog=self.catalog)
        self.discounts = discounts or DiscountLedger(db)
        self.orders = orders or OrderService(db)
        self.cart_repo = CartRepo(db)
        self.order_repo = OrderRepo(db)
        self.addresses = AddressRepo(db)

    # =====================================================
    # helpers
    # =====================================================
    def _require_cart(self, cart_id: str) -> CartModel:
        require(cart_id, "cart_id", "Cart ID is required")
        cart = self.cart_repo.get_cart(cart_id)
        if cart is None:
            raise BusinessError(f"Cart {cart_id} not found", ErrorCode.CART_NOT_FOUND)
        return cart

    def _live_subtotal(self, cart: CartModel) -> Decimal:
        live = self.catalog.live_products([i.product_id for i in cart.items])
        subtotal = ZERO
        for item in cart.items:
            product = live.get(item.product_id)
            if product is None:
                raise BusinessError(f"Product {item.product_id} not found", ErrorCode.PRODUCT_NOT_FOUND)
            subtotal += money(product.price) * item.quantity
        return money(subtotal)

    def _check_addresses(self, customer_id: str, shipping_id: str, billing_id: str | None) -> None:
        require(shipping_id, "shipping_address_id", "Shipping address is required")
        if self.addresses.get_for_customer(shipping_id, customer_id) is None:
            raise BusinessError("Invalid shipping address", ErrorCode.INVALID_SHIPPING_ADDRESS)
        if billing_id and billing_id != shipping_id:
            if self.addresses.get_for_customer(billing_id, customer_id) is None:
                raise BusinessError("Invalid billing address", ErrorCode.INVALID_BILLING_ADDRESS)

    def _in_tx(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Krok albo kompensacja sagi w osobnej transakcji."""

        def run(*args):
            try:
                value = fn(*args)
                self.db.commit()
                return value
            except Exception:
                self.db.rollback()
                raise

        return run

    # =====================================================
    # quotes & validation
    # =====================================================
    @service_action("calculateOrderTotal")
    def calculate_order_total(self, cart_id: str, discount_code: str | None = None) -> OrderTotal:
        cart = self._require_cart(cart_id)
        subtotal = self._live_subtotal(cart)

        discount_amount = ZERO
        if discount_code:
            result = self.discounts.evaluate(discount_code, subtotal)
            if result.is_valid:
                discount_amount = result.discount_amount
            else:
                logger.info(
                    "Discount code ignored in quote",
                    extra={"action": "calculateOrderTotal", "cart_id": cart_id, "reason": result.error_code},
                )
        return quote_totals(subtotal, discount_amount)

    def _validate(self, data: CheckoutData) -> tuple[CartModel, OrderTotal, DiscountValidation | None]:
        require(data.customer_id, "customer_id", "Customer ID is required")
        cart = self._require_cart(data.cart_id)
        if cart.customer_id != data.customer_id:
            raise BusinessError("Unauthorized access to cart", ErrorCode.UNAUTHORIZED_CART_ACCESS)
        if not cart.items:
            raise BusinessError("Cart is empty", ErrorCode.CART_EMPTY)
        self._check_addresses(data.customer_id, data.shipping_address_id, data.billing_address_id)

        validation = self.carts.validate_cart(data.customer_id)
        if not validation.success:
            raise BusinessError(validation.error.message, validation.error.code)
        if not validation.data.is_valid:
            reasons = "; ".join(issue.message for issue in validation.data.errors)
            raise BusinessError(f"Cart validation failed: {reasons}", ErrorCode.CHECKOUT_VALIDATION_FAILED)

        subtotal = self._live_subtotal(cart)
        discount = None
        if data.discount_code:
            discount = self.discounts.evaluate(data.discount_code, subtotal)
            if not discount.is_valid:
                raise BusinessError(discount.error, discount.error_code)
        totals = quote_totals(subtotal, discount.discount_amount if discount else ZERO)
        return cart, totals, discount

    @service_action("validateCheckout")
    def validate_checkout(self, data: CheckoutData) -> OrderTotal:
        _, totals, _ = self._validate(data)
        return totals

    # =====================================================
    # order creation (saga)
    # =====================================================
    def _check_order_data(self, data: CreateOrderData) -> dict:
        require(data.customer_id, "customer_id", "Customer ID is required")
        if not data.items:
            raise ValidationError("Order must contain at least one item", "items", ErrorCode.REQUIRED)
        if data.delivery_fee < 0:
            raise ValidationError("Delivery fee cannot be negative", "delivery_fee")
        for item in data.items:
            require(item.product_id, "product_id", "Product ID is required")
            if item.quantity <= 0 or item.quantity > MAX_CART_QUANTITY:
                raise ValidationError(f"Quantity must be between 1 and {MAX_CART_QUANTITY}", "quantity")
            if item.unit_price <= 0:
                raise ValidationError("Unit price must be greater than 0", "unit_price", ErrorCode.INVALID_PRODUCT_PRICE)
        self._check_addresses(data.customer_id, data.shipping_address_id, data.billing_address_id)

        # wczesne odrzucenie; ostateczna ochrona to warunkowy UPDATE w kroku stock
        live = self.catalog.live_products([i.product_id for i in data.items])
        for item in data.items:
            product = live.get(item.product_id)
            if product is None:
                raise BusinessError(f"Product {item.product_id} not found", ErrorCode.PRODUCT_NOT_FOUND)
            if product.stock < item.quantity:
                raise BusinessError(
                    f"Insufficient stock for {product.name}. Available: {product.stock}, Requested: {item.quantity}",
                    ErrorCode.INSUFFICIENT_STOCK,
                )
        return live

    def _create_order(self, data: CreateOrderData) -> Order:
        live = self._check_order_data(data)
        subtotal = money(sum((money(i.unit_price) * i.quantity for i in data.items), ZERO))
        state: dict[str, Any] = {"discount": ZERO}
        context: dict[str, Any] = {"customer_id": data.customer_id}
        saga = Saga("checkout", context)

        if data.discount_code:
            def reserve_discount():
                result = self.discounts.consume(data.discount_code, subtotal)
                state["discount"] = result.discount_amount
                return result.discount.code

            saga.step(STEP_DISCOUNT, self._in_tx(reserve_discount), self._in_tx(self.discounts.release))

        def insert_header():
            total = money(subtotal - state["discount"] + data.delivery_fee)
            now = utcnow()
            order = self.order_repo.add(
                OrderModel(
                    customer_id=data.customer_id,
                    status=OrderStatus.PENDING.value,
                    total_amount=total,
                    shipping_amount=money(data.delivery_fee),
                    discount_amount=state["discount"],
                    discount_code=data.discount_code.strip().upper() if data.discount_code else None,
                    shipping_address_id=data.shipping_address_id,
                    billing_address_id=data.billing_address_id or data.shipping_address_id,
                    payment_method=data.payment_method.value,
                    notes=data.notes,
                    order_date=now,
                    updated_at=now,
                )
            )
            self.order_repo.add_tracking_event(order.id, OrderStatus.PENDING.value, "Order placed", now)
            state["order_id"] = order.id
            state["total"] = total
            context["order_id"] = order.id
            return order.id

        saga.step(STEP_HEADER, self._in_tx(insert_header), self._in_tx(self.order_repo.delete_order))

        def insert_lines():
            order_id = state["order_id"]
            self.order_repo.add_items(
                [
                    OrderItemModel(
                        order_id=order_id,
                        product_id=i.product_id,
                        product_name=live[i.product_id].name,
                        quantity=i.quantity,
                        unit_price=money(i.unit_price),
                    )
                    for i in data.items
                ]
            )
            return order_id

        saga.step(STEP_LINES, self._in_tx(insert_lines), self._in_tx(self.order_repo.delete_items))

        if data.payment_method != PaymentMethod.CASH_ON_DELIVERY:
            def insert_payment():
                order_id = state["order_id"]
                self.order_repo.add_payment(
                    PaymentModel(
                        order_id=order_id,
                        amount=state["total"],
                        payment_method=data.payment_method.value,
                        status="PENDING",
                    )
                )
                return order_id

            saga.step(STEP_PAYMENT, self._in_tx(insert_payment), self._in_tx(self.order_repo.delete_payments))

        for item in data.items:
            def decrement(product_id=item.product_id, quantity=item.quantity):
                self.catalog.apply_stock_delta(product_id, -quantity)
                return product_id, quantity

            def restore(line):
                product_id, quantity = line
                self.catalog.apply_stock_delta(product_id, quantity)

            saga.step(f"{STEP_STOCK} {item.product_id}", self._in_tx(decrement), self._in_tx(restore))

        try:
            saga.run()
        except SagaFailed as failed:
            self._raise_for(failed, context)
        finally:
            self.orders.invalidate()

        order = self.orders.require_order(state["order_id"])
        logger.info(
            "Order created",
            extra={
                "action": "createOrder",
                "order_id": order.id,
                "customer_id": data.customer_id,
                "total_amount": str(order.total_amount),
                "items": len(data.items),
            },
        )
        return to_order(order)

    def _raise_for(self, failed: SagaFailed, context: dict) -> None:
        if not failed.rollback_complete:
            logger.error(
                "Checkout rollback incomplete",
                extra={
                    "action": "createOrder",
                    "order_id": context.get("order_id"),
                    "step": failed.step_failed,
                    "failed_compensations": failed.compensators_failed,
                },
            )
            raise BusinessError(
                f"Checkout failed at '{failed.step_failed}' and could not be fully rolled back",
                ErrorCode.CHECKOUT_ROLLBACK_INCOMPLETE,
            ) from failed.error
        if isinstance(failed.error, AppError):
            raise failed.error
        code = _STEP_ERROR_CODES.get(failed.step_failed)
        if code is None:
            raise failed.error
        logger.error(
            "Checkout step failed",
            exc_info=failed.error,
            extra={"action": "createOrder", "step": failed.step_failed},
        )
        raise BusinessError(f"Checkout failed at '{failed.step_failed}'", code) from failed.error

    @service_action("createOrder")
    def create_order(self, data: CreateOrderData) -> Order:
        return self._create_order(data)

    @service_action("processCheckout")
    def process_checkout(self, data: CheckoutData) -> CheckoutResult:
        require(data.customer_id, "customer_id", "Customer ID is required")
        # walidacja, saga i czyszczenie pod jednym lockiem koszyka
        with self.carts.hold(data.customer_id):
            cart, totals, discount = self._validate(data)
            ordered = [i.id for i in cart.items]
            live = self.catalog.live_products([i.product_id for i in cart.items])
            order = self._create_order(
                CreateOrderData(
                    customer_id=data.customer_id,
                    items=[
                        OrderItemInput(product_id=i.product_id, quantity=i.quantity, unit_price=live[i.product_id].price)
                        for i in cart.items
                    ],
                    shipping_address_id=data.shipping_address_id,
                    billing_address_id=data.billing_address_id,
                    payment_method=data.payment_method,
                    discount_code=discount.discount.code if discount else None,
                    notes=data.notes,
                )
            )

            # zamowienie juz jest; nieudane czyszczenie koszyka tylko logujemy
            cleared = self.carts.clear_ordered_lines(data.customer_id, ordered)
            if not cleared.success:
                logger.warning(
                    "Failed to clear cart after checkout",
                    extra={"action": "processCheckout", "order_id": order.id, "cart_id": cart.id, "code": cleared.error.code},
                )

        payment_url = None if data.payment_method == PaymentMethod.CASH_ON_DELIVERY else f"/payment/{order.id}"
        logger.info(
            "Checkout completed",
            extra={"action": "processCheckout", "order_id": order.id, "customer_id": data.customer_id},
        )
        return CheckoutResult(order_id=order.id, order=order, totals=totals, payment_url=payment_url)

    # =====================================================
    # status machine
    # =====================================================
    def _transition(self, order_id: str, target: OrderStatus, note: str | None) -> OrderModel:
        order = self.orders.require_order(order_id)
        current = OrderStatus(order.status)
        ensure_transition(current, target)

        now = utcnow()
        if self.order_repo.update_status(order.id, current.value, target.value, now) == 0:
            raise BusinessError(
                "Order status was changed by another request, reload and retry",
                ErrorCode.INVALID_STATUS_TRANSITION,
            )
        if target == OrderStatus.CANCELLED:
            # produkt usuniety po zamknieciu zamowienia ma product_id NULL
            for item in order.items:
                if item.product_id is not None:
                    self.catalog.apply_stock_delta(item.product_id, item.quantity)
        self.order_repo.add_tracking_event(order.id, target.value, note, now)
        self.order_repo.commit()
        self.orders.invalidate()
        logger.info(
            "Order status changed",
            extra={"action": "updateOrderStatus", "order_id": order.id, "from": current.value, "to": target.value},
        )
        return self.orders.require_order(order.id)

    @service_action("updateOrderStatus")
    def update_order_status(self, data: UpdateOrderStatusData) -> Order:
        return to_order(self._transition(data.order_id, data.status, data.notes))

    @service_action("cancelOrder")
    def cancel_order(self, order_id: str, reason: str | None = None) -> Order:
        return to_order(self._transition(order_id, OrderStatus.CANCELLED, reason or "Order cancelled"))
