# storefront/data/models/order.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(String(64), nullable=False, index=True)

    # PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_code = Column(String(64), nullable=True)
    shipping_address_id = Column(String(36), ForeignKey("addresses.id"), nullable=False)
    billing_address_id = Column(String(36), ForeignKey("addresses.id"), nullable=True)
    payment_method = Column(String(32), nullable=False)
    notes = Column(Text, nullable=True)
    order_date = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    items = relationship("OrderItemModel", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("PaymentModel", back_populates="order", cascade="all, delete-orphan")
    tracking = relationship(
        "TrackingEventModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="TrackingEventModel.created_at",
    )
