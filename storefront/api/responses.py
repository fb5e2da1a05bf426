# storefront/api/responses.py
from fastapi import HTTPException

from storefront.domain.errors import ErrorCode
from storefront.domain.schemas import ServiceResult

#bledy wejscia -> 400, reszta regul biznesowych -> 409
_BAD_REQUEST = {
    ErrorCode.REQUIRED,
    ErrorCode.INVALID,
    ErrorCode.INVALID_PRODUCT_PRICE,
    ErrorCode.INVALID_SHIPPING_ADDRESS,
    ErrorCode.INVALID_BILLING_ADDRESS,
    ErrorCode.INVALID_DISCOUNT_CODE,
    ErrorCode.CART_EMPTY,
    ErrorCode.CHECKOUT_VALIDATION_FAILED,
}


def status_for(code: str) -> int:
    if code == ErrorCode.UNKNOWN_ERROR:
        return 500
    if code == ErrorCode.UNAUTHORIZED_CART_ACCESS:
        return 403
    if code.endswith("_NOT_FOUND"):
        return 404
    if code in _BAD_REQUEST:
        return 400
    return 409


def unwrap(result: ServiceResult):
    """Zwraca data albo rzuca HTTPException z kodem bledu serwisu."""
    if result.success:
        return result.data
    raise HTTPException(status_code=status_for(result.error.code), detail=result.error.model_dump())
