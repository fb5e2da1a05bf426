# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.responses import unwrap
from storefront.data.database import get_db
from storefront.domain.schemas import CheckoutData, CheckoutResult, OrderTotal
from storefront.services.checkout_service import CheckoutOrchestrator

router = APIRouter(prefix="/checkout", tags=["checkout"])


def get_service(db: Session):
    return CheckoutOrchestrator(db)


@router.get("/total", response_model=OrderTotal)
def order_total(cart_id: str = Query(...), discount_code: str | None = None, db: Session = Depends(get_db)):
    return unwrap(get_service(db).calculate_order_total(cart_id, discount_code))


@router.post("/validate", response_model=OrderTotal)
def validate_checkout(payload: CheckoutData, db: Session = Depends(get_db)):
    return unwrap(get_service(db).validate_checkout(payload))


@router.post("/", response_model=CheckoutResult, status_code=201)
def process_checkout(payload: CheckoutData, db: Session = Depends(get_db)):
    return unwrap(get_service(db).process_checkout(payload))
