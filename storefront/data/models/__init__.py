#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w Base.metadata

from storefront.data.models.category import CategoryModel, product_categories
from storefront.data.models.product import ProductModel
from storefront.data.models.product_image import ProductImageModel
from storefront.data.models.review import ReviewModel
from storefront.data.models.address import AddressModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.order import OrderModel
from storefront.data.models.order_item import OrderItemModel
from storefront.data.models.payment import PaymentModel
from storefront.data.models.tracking_event import TrackingEventModel
from storefront.data.models.discount_code import DiscountCodeModel

__all__ = [
    "CategoryModel",
    "product_categories",
    "ProductModel",
    "ProductImageModel",
    "ReviewModel",
    "AddressModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderItemModel",
    "PaymentModel",
    "TrackingEventModel",
    "DiscountCodeModel",
]
