# storefront/domain/errors.py
import functools
import time

from storefront.domain.schemas import ServiceResult
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCode:
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    REQUIRED = "REQUIRED"
    INVALID = "INVALID"

    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    PRODUCT_IN_OPEN_ORDERS = "PRODUCT_IN_OPEN_ORDERS"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
    CATEGORY_HAS_PRODUCTS = "CATEGORY_HAS_PRODUCTS"
    CATEGORY_EXISTS = "CATEGORY_EXISTS"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"

    CART_NOT_FOUND = "CART_NOT_FOUND"
    CART_EMPTY = "CART_EMPTY"
    CART_LOCKED = "CART_LOCKED"
    CART_ITEM_NOT_FOUND = "CART_ITEM_NOT_FOUND"
    UNAUTHORIZED_CART_ACCESS = "UNAUTHORIZED_CART_ACCESS"

    DISCOUNT_NOT_FOUND = "DISCOUNT_NOT_FOUND"
    DISCOUNT_INACTIVE = "DISCOUNT_INACTIVE"
    DISCOUNT_EXPIRED = "DISCOUNT_EXPIRED"
    DISCOUNT_USAGE_LIMIT_REACHED = "DISCOUNT_USAGE_LIMIT_REACHED"
    DISCOUNT_MIN_ORDER_NOT_MET = "DISCOUNT_MIN_ORDER_NOT_MET"
    DISCOUNT_EXISTS = "DISCOUNT_EXISTS"
    INVALID_DISCOUNT_CODE = "INVALID_DISCOUNT_CODE"

    INVALID_SHIPPING_ADDRESS = "INVALID_SHIPPING_ADDRESS"
    INVALID_BILLING_ADDRESS = "INVALID_BILLING_ADDRESS"
    INVALID_PRODUCT_PRICE = "INVALID_PRODUCT_PRICE"
    CHECKOUT_VALIDATION_FAILED = "CHECKOUT_VALIDATION_FAILED"
    CHECKOUT_ROLLBACK_INCOMPLETE = "CHECKOUT_ROLLBACK_INCOMPLETE"
    ORDER_CREATE_ERROR = "ORDER_CREATE_ERROR"
    ORDER_ITEMS_CREATE_ERROR = "ORDER_ITEMS_CREATE_ERROR"
    PAYMENT_CREATE_ERROR = "PAYMENT_CREATE_ERROR"

    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_ALREADY_DELIVERED = "ORDER_ALREADY_DELIVERED"
    ORDER_ALREADY_CANCELLED = "ORDER_ALREADY_CANCELLED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"


class AppError(Exception):
    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    """Malformed or out-of-range input; the caller fixes the field and retries."""

    def __init__(self, message: str, field: str, code: str = ErrorCode.INVALID):
        super().__init__(message, code)
        self.field = field


class BusinessError(AppError):
    """Well-formed input that breaks a domain rule."""


def require(value, field: str, message: str | None = None) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message or f"{field} is required", field, ErrorCode.REQUIRED)


def service_action(action: str):
    """Service boundary: wraps the return value in ServiceResult, never raises.

    Domain errors become failed results, anything else becomes UNKNOWN_ERROR.
    The owning service's session (``self.db``) is rolled back on failure.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            start = time.perf_counter()
            try:
                data = fn(self, *args, **kwargs)
            except AppError as e:
                _rollback(self)
                logger.warning(
                    e.message,
                    extra={"action": action, "code": e.code, "field": getattr(e, "field", None)},
                )
                return ServiceResult.fail(e.message, e.code, getattr(e, "field", None))
            except Exception as e:
                _rollback(self)
                logger.error(
                    f"Error in {action}",
                    exc_info=e,
                    extra={"action": action},
                )
                return ServiceResult.fail(
                    f"An unexpected error occurred in {action}", ErrorCode.UNKNOWN_ERROR
                )
            logger.debug(
                f"{action} completed",
                extra={"action": action, "duration_ms": round((time.perf_counter() - start) * 1000, 2)},
            )
            return ServiceResult.ok(data)

        return wrapper

    return decorator


def _rollback(service) -> None:
    db = getattr(service, "db", None)
    if db is None:
        return
    try:
        db.rollback()
    except Exception as e:
        logger.error("Session rollback failed", exc_info=e)
