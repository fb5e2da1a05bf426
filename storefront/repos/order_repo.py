# storefront/repos/order_repo.py
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.order import OrderModel
from storefront.data.models.order_item import OrderItemModel
from storefront.data.models.payment import PaymentModel
from storefront.data.models.tracking_event import TrackingEventModel
from storefront.domain.schemas import OrderFilters


def _with_relations(stmt):
    return stmt.options(
        selectinload(OrderModel.items),
        selectinload(OrderModel.payments),
        selectinload(OrderModel.tracking),
    )


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    # =====================================================
    # reads
    # =====================================================
    def get(self, order_id: str) -> OrderModel | None:
        stmt = _with_relations(select(OrderModel).where(OrderModel.id == order_id))
        stmt = stmt.execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def _filtered(self, filters: OrderFilters):
        stmt = select(OrderModel)
        if filters.customer_id:
            stmt = stmt.where(OrderModel.customer_id == filters.customer_id)
        if filters.status:
            stmt = stmt.where(OrderModel.status == filters.status.value)
        if filters.date_from:
            stmt = stmt.where(OrderModel.order_date >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(OrderModel.order_date <= filters.date_to)
        return stmt

    def find_page(self, filters: OrderFilters) -> tuple[list[OrderModel], int]:
        base = self._filtered(filters)
        total = self.db.execute(select(func.count()).select_from(base.subquery())).scalar_one()
        offset = (filters.page - 1) * filters.limit
        stmt = _with_relations(
            base.order_by(OrderModel.order_date.desc(), OrderModel.id).offset(offset).limit(filters.limit)
        )
        return list(self.db.execute(stmt).scalars().all()), total

    def stats(self, customer_id: str | None = None) -> tuple[int, Decimal, dict[str, int]]:
        """(order count, revenue without cancelled orders, count per status)"""
        by_status = select(OrderModel.status, func.count(), func.coalesce(func.sum(OrderModel.total_amount), 0))
        if customer_id:
            by_status = by_status.where(OrderModel.customer_id == customer_id)
        by_status = by_status.group_by(OrderModel.status)

        counts: dict[str, int] = {}
        revenue = Decimal("0.00")
        for status, count, amount in self.db.execute(by_status).all():
            counts[status] = count
            if status != "CANCELLED":
                revenue += Decimal(str(amount))
        return sum(counts.values()), revenue, counts

    # =====================================================
    # writes (flush only, commit robi serwis)
    # =====================================================
    def add(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def add_items(self, items: Sequence[OrderItemModel]) -> list[OrderItemModel]:
        self.db.add_all(list(items))
        self.db.flush()
        return list(items)

    def add_payment(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def add_tracking_event(self, order_id: str, status: str, note: str | None, at: datetime) -> TrackingEventModel:
        event = TrackingEventModel(order_id=order_id, status=status, note=note, created_at=at)
        self.db.add(event)
        self.db.flush()
        return event

    def update_status(self, order_id: str, expected: str, new: str, at: datetime) -> int:
        """
        Compare-and-set na statusie:

        UPDATE orders SET status = :new WHERE id = :id AND status = :expected

        0 oznacza, ze ktos inny zmienil status w miedzyczasie.
        """
        stmt = (
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected)
            .values(status=new, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    # kompensacje sagi checkoutu
    def delete_order(self, order_id: str) -> int:
        self.db.execute(delete(TrackingEventModel).where(TrackingEventModel.order_id == order_id))
        self.db.execute(delete(PaymentModel).where(PaymentModel.order_id == order_id))
        self.db.execute(delete(OrderItemModel).where(OrderItemModel.order_id == order_id))
        res = self.db.execute(
            delete(OrderModel).where(OrderModel.id == order_id).execution_options(synchronize_session="fetch")
        )
        return res.rowcount

    def delete_items(self, order_id: str) -> int:
        res = self.db.execute(
            delete(OrderItemModel)
            .where(OrderItemModel.order_id == order_id)
            .execution_options(synchronize_session="fetch")
        )
        return res.rowcount

    def delete_payments(self, order_id: str) -> int:
        res = self.db.execute(
            delete(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .execution_options(synchronize_session="fetch")
        )
        return res.rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
