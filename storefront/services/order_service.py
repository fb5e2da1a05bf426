# storefront/services/order_service.py
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import BusinessError, ErrorCode, ValidationError, require, service_action
from storefront.domain.schemas import (
    Order,
    OrderFilters,
    OrderItem,
    OrderStats,
    OrderStatus,
    PaginatedResult,
    Payment,
    TrackingEvent,
)
from storefront.repos.order_repo import OrderRepo
from storefront.services.cache import TTLCache, make_key
from storefront.services.caches import order_cache
from storefront.services.catalog_service import paginate
from storefront.utils.logging import get_logger
from storefront.utils.money import ZERO, money

logger = get_logger(__name__)


def to_order(order: OrderModel) -> Order:
    return Order(
        id=order.id,
        customer_id=order.customer_id,
        items=[
            OrderItem(
                id=i.id,
                order_id=order.id,
                product_id=i.product_id,
                product_name=i.product_name,
                quantity=i.quantity,
                unit_price=money(i.unit_price),
                total_price=money(i.unit_price * i.quantity),
            )
            for i in order.items
        ],
        status=OrderStatus(order.status),
        total_amount=money(order.total_amount),
        shipping_amount=money(order.shipping_amount),
        discount_amount=money(order.discount_amount),
        discount_code=order.discount_code,
        shipping_address_id=order.shipping_address_id,
        billing_address_id=order.billing_address_id,
        payment_method=order.payment_method,
        payment=Payment.model_validate(order.payments[0]) if order.payments else None,
        tracking=[TrackingEvent.model_validate(t) for t in order.tracking],
        notes=order.notes,
        order_date=order.order_date,
    )


def _check_dates(filters: OrderFilters) -> None:
    if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
        raise ValidationError("date_from cannot be after date_to", "date_from")


class OrderService:
    """
    Odczyty zamowien (query). Zapisy (checkout, status, anulowanie)
    robi CheckoutOrchestrator i czysci stad cache statystyk.
    """

    def __init__(self, db: Session, cache: TTLCache | None = None):
        self.db = db
        self.repo = OrderRepo(db)
        self.cache = cache if cache is not None else order_cache

    def require_order(self, order_id: str) -> OrderModel:
        require(order_id, "order_id", "Order ID is required")
        order = self.repo.get(order_id)
        if order is None:
            raise BusinessError(f"Order {order_id} not found", ErrorCode.ORDER_NOT_FOUND)
        return order

    def invalidate(self) -> None:
        self.cache.clear()

    @service_action("getOrder")
    def get_order(self, order_id: str) -> Order:
        return to_order(self.require_order(order_id))

    @service_action("getOrders")
    def get_orders(self, filters: OrderFilters | None = None) -> PaginatedResult[Order]:
        filters = filters or OrderFilters()
        _check_dates(filters)
        rows, total = self.repo.find_page(filters)
        return paginate([to_order(o) for o in rows], filters.page, filters.limit, total)

    @service_action("getUserOrders")
    def get_user_orders(self, customer_id: str, filters: OrderFilters | None = None) -> PaginatedResult[Order]:
        require(customer_id, "customer_id", "Customer ID is required")
        filters = (filters or OrderFilters()).model_copy(update={"customer_id": customer_id})
        _check_dates(filters)
        rows, total = self.repo.find_page(filters)
        return paginate([to_order(o) for o in rows], filters.page, filters.limit, total)

    @service_action("getOrderStats")
    def get_order_stats(self, customer_id: str | None = None) -> OrderStats:
        def load() -> OrderStats:
            count, revenue, by_status = self.repo.stats(customer_id)
            paid_orders = count - by_status.get(OrderStatus.CANCELLED.value, 0)
            return OrderStats(
                total_orders=count,
                total_revenue=money(revenue),
                average_order_value=money(revenue / paid_orders) if paid_orders else ZERO,
                orders_by_status=by_status,
            )

        return self.cache.get_or_load(make_key("getOrderStats", {"customer_id": customer_id}), load)

    @service_action("clearCache")
    def clear_cache(self) -> int:
        removed = len(self.cache)
        self.cache.clear()
        return removed
