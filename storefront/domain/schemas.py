# storefront/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


# =====================================================
# Result envelope
# =====================================================
class ErrorInfo(BaseModel):
    message: str
    code: str
    field: Optional[str] = None


class ServiceResult(BaseModel, Generic[T]):
    """Envelope returned by every public service method instead of raising."""

    success: bool
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data=None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str, code: str, field: str | None = None) -> "ServiceResult":
        return cls(success=False, error=ErrorInfo(message=message, code=code, field=field))


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PaginatedResult(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination


# =====================================================
# Catalog
# =====================================================
class Category(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class ProductImage(BaseModel):
    id: str
    product_id: str
    image_url: str
    alt_text: Optional[str] = None
    is_primary: bool = False
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class Product(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    image_url: Optional[str] = None
    categories: List[Category] = []
    images: List[ProductImage] = []
    average_rating: Optional[float] = None
    review_count: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None


class ProductSortField(str, Enum):
    CREATED_AT = "created_at"
    PRICE = "price"
    NAME = "name"
    STOCK = "stock"


class ProductFilters(BaseModel):
    category_id: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    in_stock: Optional[bool] = None
    search: Optional[str] = None
    sort_by: ProductSortField = ProductSortField.CREATED_AT
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


class CreateProductData(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int = 0
    image_url: Optional[str] = None
    category_ids: List[str] = []


class UpdateProductData(BaseModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[int] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    category_ids: Optional[List[str]] = None


class CategoryData(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


# =====================================================
# Cart
# =====================================================
class CartItem(BaseModel):
    id: str
    cart_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    stock: int


class Cart(BaseModel):
    id: str
    customer_id: str
    items: List[CartItem] = []
    total_items: int = 0
    total_amount: Decimal = Decimal("0.00")
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CartIssueType(str, Enum):
    PRODUCT_UNAVAILABLE = "product_unavailable"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"
    PRICE_CHANGED = "price_changed"
    LOW_STOCK = "low_stock"
    PRICE_INCREASE = "price_increase"


class CartIssue(BaseModel):
    item_id: str
    product_id: str
    type: CartIssueType
    message: str
    current_stock: Optional[int] = None
    requested_quantity: Optional[int] = None
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None


class CartValidationResult(BaseModel):
    is_valid: bool
    errors: List[CartIssue] = []
    warnings: List[CartIssue] = []


class CartSearchFilters(BaseModel):
    customer_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


# =====================================================
# Discounts
# =====================================================
class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountCode(BaseModel):
    code: str
    type: DiscountType
    value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class DiscountValidation(BaseModel):
    is_valid: bool
    discount: Optional[DiscountCode] = None
    discount_amount: Decimal = Decimal("0.00")
    error: Optional[str] = None
    error_code: Optional[str] = None


# =====================================================
# Orders & checkout
# =====================================================
class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    CASH_ON_DELIVERY = "cash_on_delivery"


class OrderItem(BaseModel):
    id: str
    order_id: str
    product_id: Optional[str] = None
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class Payment(BaseModel):
    id: str
    order_id: str
    amount: Decimal
    payment_method: str
    status: str
    transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TrackingEvent(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Order(BaseModel):
    id: str
    customer_id: str
    items: List[OrderItem] = []
    status: OrderStatus
    total_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal = Decimal("0.00")
    discount_code: Optional[str] = None
    shipping_address_id: str
    billing_address_id: Optional[str] = None
    payment_method: str
    payment: Optional[Payment] = None
    tracking: List[TrackingEvent] = []
    notes: Optional[str] = None
    order_date: datetime


class OrderItemInput(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal


class CreateOrderData(BaseModel):
    customer_id: str
    items: List[OrderItemInput]
    shipping_address_id: str
    billing_address_id: Optional[str] = None
    payment_method: PaymentMethod
    delivery_fee: Decimal = Decimal("0.00")
    discount_code: Optional[str] = None
    notes: Optional[str] = None


class UpdateOrderStatusData(BaseModel):
    order_id: str
    status: OrderStatus
    notes: Optional[str] = None


class OrderFilters(BaseModel):
    customer_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


class OrderStats(BaseModel):
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    orders_by_status: dict[str, int]


class CheckoutData(BaseModel):
    cart_id: str
    customer_id: str
    shipping_address_id: str
    billing_address_id: Optional[str] = None
    payment_method: PaymentMethod
    discount_code: Optional[str] = None
    notes: Optional[str] = None


class OrderTotal(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total: Decimal


class CheckoutResult(BaseModel):
    order_id: str
    order: Order
    totals: OrderTotal
    payment_url: Optional[str] = None


# =====================================================
# API payloads
# =====================================================
class ProductPatchIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[int] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    category_ids: Optional[List[str]] = None


class StockAdjustIn(BaseModel):
    delta: int


class AddItemIn(BaseModel):
    product_id: str
    quantity: int = 1


class UpdateItemIn(BaseModel):
    quantity: int


class OrderStatusIn(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class CancelOrderIn(BaseModel):
    reason: Optional[str] = None
