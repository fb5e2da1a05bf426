# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.responses import unwrap
from storefront.data.database import get_db
from storefront.domain.schemas import (
    CancelOrderIn,
    Order,
    OrderFilters,
    OrderStats,
    OrderStatusIn,
    PaginatedResult,
    UpdateOrderStatusData,
)
from storefront.services.checkout_service import CheckoutOrchestrator
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/", response_model=PaginatedResult[Order])
def list_orders(filters: OrderFilters = Depends(), db: Session = Depends(get_db)):
    return unwrap(OrderService(db).get_orders(filters))


@router.get("/stats", response_model=OrderStats)
def order_stats(customer_id: str | None = None, db: Session = Depends(get_db)):
    return unwrap(OrderService(db).get_order_stats(customer_id))


@router.get("/customer/{customer_id}", response_model=PaginatedResult[Order])
def customer_orders(customer_id: str, filters: OrderFilters = Depends(), db: Session = Depends(get_db)):
    return unwrap(OrderService(db).get_user_orders(customer_id, filters))


@router.get("/{order_id}", response_model=Order)
def get_order(order_id: str, db: Session = Depends(get_db)):
    return unwrap(OrderService(db).get_order(order_id))


@router.patch("/{order_id}/status", response_model=Order)
def update_status(order_id: str, payload: OrderStatusIn, db: Session = Depends(get_db)):
    data = UpdateOrderStatusData(order_id=order_id, status=payload.status, notes=payload.notes)
    return unwrap(CheckoutOrchestrator(db).update_order_status(data))


@router.post("/{order_id}/cancel", response_model=Order)
def cancel_order(order_id: str, payload: CancelOrderIn | None = None, db: Session = Depends(get_db)):
    reason = payload.reason if payload else None
    return unwrap(CheckoutOrchestrator(db).cancel_order(order_id, reason))
