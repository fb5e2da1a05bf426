from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String

from storefront.data.database import Base


class DiscountCodeModel(Base):
    __tablename__ = "discount_codes"

    # kod trzymany w UPPER, lookup case-insensitive
    code = Column(String(64), primary_key=True)
    type = Column(String(16), nullable=False)  # percentage | fixed
    value = Column(Numeric(10, 2), nullable=False)
    min_order_amount = Column(Numeric(10, 2), nullable=True)
    max_discount = Column(Numeric(10, 2), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("value > 0", name="ck_discount_codes_value_positive"),
        CheckConstraint("used_count >= 0", name="ck_discount_codes_used_non_negative"),
    )
