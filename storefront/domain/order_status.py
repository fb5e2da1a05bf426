# storefront/domain/order_status.py
from storefront.domain.errors import BusinessError, ErrorCode
from storefront.domain.schemas import OrderStatus

#happy path liniowo + CANCELLED z kazdego nieterminalnego stanu
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)
OPEN_STATUSES = frozenset(OrderStatus) - TERMINAL_STATUSES


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raises BusinessError when the order cannot move from current to target."""
    if current == OrderStatus.DELIVERED:
        raise BusinessError("Order has already been delivered", ErrorCode.ORDER_ALREADY_DELIVERED)
    if current == OrderStatus.CANCELLED:
        raise BusinessError("Order is already cancelled", ErrorCode.ORDER_ALREADY_CANCELLED)
    if not can_transition(current, target):
        raise BusinessError(
            f"Cannot change order status from {current.value} to {target.value}",
            ErrorCode.INVALID_STATUS_TRANSITION,
        )
