# storefront/services/discount_ledger.py
from decimal import Decimal

from sqlalchemy.orm import Session

from storefront.data.models.discount_code import DiscountCodeModel
from storefront.domain.errors import BusinessError, ErrorCode, ValidationError, require, service_action
from storefront.domain.schemas import DiscountCode, DiscountType, DiscountValidation
from storefront.repos.discount_repo import DiscountRepo
from storefront.utils.clock import as_utc, utcnow
from storefront.utils.logging import get_logger
from storefront.utils.money import money

logger = get_logger(__name__)


def compute_discount(discount: DiscountCode, order_amount: Decimal) -> Decimal:
    """percentage: min(amount * value / 100, max_discount); fixed: value. Never above the order amount."""
    if discount.type == DiscountType.PERCENTAGE:
        amount = order_amount * discount.value / Decimal(100)
        if discount.max_discount is not None:
            amount = min(amount, discount.max_discount)
    else:
        amount = discount.value
    return money(min(amount, order_amount))


def _rejection(model: DiscountCodeModel | None, order_amount: Decimal) -> tuple[str, str] | None:
    """(message, code) powodu odrzucenia albo None gdy kod mozna uzyc."""
    if model is None:
        return "Invalid discount code", ErrorCode.INVALID_DISCOUNT_CODE
    if not model.is_active:
        return "Discount code is no longer active", ErrorCode.DISCOUNT_INACTIVE
    if model.expires_at is not None and as_utc(model.expires_at) <= utcnow():
        return "Discount code has expired", ErrorCode.DISCOUNT_EXPIRED
    if model.usage_limit is not None and model.used_count >= model.usage_limit:
        return "Discount code usage limit reached", ErrorCode.DISCOUNT_USAGE_LIMIT_REACHED
    if model.min_order_amount is not None and order_amount < model.min_order_amount:
        return (
            f"Minimum order amount of {money(model.min_order_amount)} required",
            ErrorCode.DISCOUNT_MIN_ORDER_NOT_MET,
        )
    return None


def _check_input(code: str, order_amount) -> Decimal:
    require(code, "code", "Discount code is required")
    if order_amount is None or Decimal(str(order_amount)) < 0:
        raise ValidationError("Order amount cannot be negative", "order_amount")
    return money(order_amount)


class DiscountLedger:
    """
    Kody rabatowe i licznik uzyc.

    Walidacja jest tylko odczytem; jedynym zapisem used_count jest
    warunkowy UPDATE w DiscountRepo (check-and-increment w jednym kroku).
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = DiscountRepo(db)

    # =====================================================
    # helpers for checkout (raise, no commit)
    # =====================================================
    def evaluate(self, code: str, order_amount) -> DiscountValidation:
        amount = _check_input(code, order_amount)
        model = self.repo.get(code)
        rejection = _rejection(model, amount)
        if rejection is not None:
            message, error_code = rejection
            logger.warning(
                "Discount code rejected",
                extra={"action": "validateDiscountCode", "code": code, "reason": error_code},
            )
            return DiscountValidation(is_valid=False, error=message, error_code=error_code)

        discount = DiscountCode.model_validate(model)
        return DiscountValidation(
            is_valid=True,
            discount=discount,
            discount_amount=compute_discount(discount, amount),
        )

    def consume(self, code: str, order_amount) -> DiscountValidation:
        amount = _check_input(code, order_amount)
        if self.repo.try_consume(code, amount, utcnow()) == 0:
            # 0 wierszy: ustal dokladny powod
            rejection = _rejection(self.repo.get(code), amount) or (
                "Discount code usage limit reached",
                ErrorCode.DISCOUNT_USAGE_LIMIT_REACHED,
            )
            raise BusinessError(*rejection)

        model = self.repo.get(code)
        discount = DiscountCode.model_validate(model)
        return DiscountValidation(
            is_valid=True,
            discount=discount,
            discount_amount=compute_discount(discount, amount),
        )

    def release(self, code: str) -> bool:
        require(code, "code", "Discount code is required")
        return self.repo.release(code) == 1

    # =====================================================
    # public operations
    # =====================================================
    @service_action("validateDiscountCode")
    def validate_discount_code(self, code: str, order_amount) -> DiscountValidation:
        result = self.evaluate(code, order_amount)
        if result.is_valid:
            logger.info(
                "Discount code validated",
                extra={"action": "validateDiscountCode", "code": code, "discount_amount": str(result.discount_amount)},
            )
        return result

    @service_action("applyDiscountCode")
    def apply_discount_code(self, code: str, order_amount) -> DiscountValidation:
        result = self.consume(code, order_amount)
        self.repo.commit()
        logger.info(
            "Discount code applied",
            extra={"action": "applyDiscountCode", "code": result.discount.code, "used_count": result.discount.used_count},
        )
        return result

    @service_action("releaseDiscountCode")
    def release_discount_code(self, code: str) -> bool:
        released = self.release(code)
        self.repo.commit()
        if not released:
            logger.warning("Discount code had no usage to release", extra={"action": "releaseDiscountCode", "code": code})
        return released

    @service_action("getDiscountCode")
    def get_discount_code(self, code: str) -> DiscountCode:
        require(code, "code", "Discount code is required")
        model = self.repo.get(code)
        if model is None:
            raise BusinessError(f"Discount code {code} not found", ErrorCode.DISCOUNT_NOT_FOUND)
        return DiscountCode.model_validate(model)

    @service_action("getDiscountCodes")
    def get_discount_codes(self, active_only: bool = False) -> list[DiscountCode]:
        return [DiscountCode.model_validate(m) for m in self.repo.find_all(active_only)]

    @service_action("createDiscountCode")
    def create_discount_code(self, data: DiscountCode) -> DiscountCode:
        require(data.code, "code", "Discount code is required")
        if data.value <= 0:
            raise ValidationError("Discount value must be greater than 0", "value")
        if data.type == DiscountType.PERCENTAGE and data.value > 100:
            raise ValidationError("Percentage discount cannot exceed 100", "value")
        if data.usage_limit is not None and data.usage_limit < 1:
            raise ValidationError("Usage limit must be positive", "usage_limit")
        code = data.code.strip().upper()
        if self.repo.get(code) is not None:
            raise BusinessError(f"Discount code {code} already exists", ErrorCode.DISCOUNT_EXISTS)

        model = self.repo.add(
            DiscountCodeModel(
                code=code,
                type=data.type.value,
                value=money(data.value),
                min_order_amount=data.min_order_amount,
                max_discount=data.max_discount,
                expires_at=data.expires_at,
                usage_limit=data.usage_limit,
                used_count=0,
                is_active=data.is_active,
            )
        )
        self.repo.commit()
        logger.info("Discount code created", extra={"action": "createDiscountCode", "code": code})
        return DiscountCode.model_validate(model)

    @service_action("deactivateDiscountCode")
    def deactivate_discount_code(self, code: str) -> DiscountCode:
        require(code, "code", "Discount code is required")
        model = self.repo.get(code)
        if model is None:
            raise BusinessError(f"Discount code {code} not found", ErrorCode.DISCOUNT_NOT_FOUND)
        model.is_active = False
        self.repo.commit()
        logger.info("Discount code deactivated", extra={"action": "deactivateDiscountCode", "code": model.code})
        return DiscountCode.model_validate(model)


