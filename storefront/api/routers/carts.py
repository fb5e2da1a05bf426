# storefront/api/routers/carts.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.responses import unwrap
from storefront.data.database import get_db
from storefront.domain.schemas import AddItemIn, Cart, CartValidationResult, UpdateItemIn
from storefront.services.cart_manager import CartManager

router = APIRouter(prefix="/carts", tags=["carts"])


def get_service(db: Session):
    return CartManager(db)


@router.get("/{customer_id}", response_model=Cart)
def get_cart(customer_id: str, db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_cart(customer_id))


@router.post("/{customer_id}/items", response_model=Cart)
def add_item(customer_id: str, payload: AddItemIn, db: Session = Depends(get_db)):
    return unwrap(get_service(db).add_item(customer_id, payload.product_id, payload.quantity))


@router.patch("/{customer_id}/items/{item_id}", response_model=Cart)
def update_item(customer_id: str, item_id: str, payload: UpdateItemIn, db: Session = Depends(get_db)):
    return unwrap(get_service(db).update_item(customer_id, item_id, payload.quantity))


@router.delete("/{customer_id}/items/{item_id}", response_model=Cart)
def remove_item(customer_id: str, item_id: str, db: Session = Depends(get_db)):
    return unwrap(get_service(db).remove_item(customer_id, item_id))


@router.delete("/{customer_id}/items")
def clear_cart(customer_id: str, db: Session = Depends(get_db)):
    removed = unwrap(get_service(db).clear_cart(customer_id))
    return {"customer_id": customer_id, "removed": removed}


@router.get("/{customer_id}/validate", response_model=CartValidationResult)
def validate_cart(customer_id: str, db: Session = Depends(get_db)):
    return unwrap(get_service(db).validate_cart(customer_id))
