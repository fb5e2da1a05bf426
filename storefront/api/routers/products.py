# storefront/api/routers/products.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.responses import unwrap
from storefront.data.database import get_db
from storefront.domain.schemas import (
    CreateProductData,
    PaginatedResult,
    Product,
    ProductFilters,
    ProductPatchIn,
    StockAdjustIn,
    UpdateProductData,
)
from storefront.services.catalog_service import CatalogService

router = APIRouter(prefix="/products", tags=["products"])


def get_service(db: Session):
    return CatalogService(db)


@router.get("/", response_model=PaginatedResult[Product])
def list_products(filters: ProductFilters = Depends(), db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_products(filters))


@router.get("/search", response_model=list[Product])
def search_products(q: str = Query(...), db: Session = Depends(get_db)):
    return unwrap(get_service(db).search_products(q))


@router.get("/featured", response_model=list[Product])
def featured_products(limit: int = Query(8, ge=1, le=50), db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_featured_products(limit))


@router.get("/{product_id}", response_model=Product)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_product(product_id))


@router.get("/{product_id}/related", response_model=list[Product])
def related_products(product_id: str, limit: int = Query(4, ge=1, le=20), db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_related_products(product_id, limit))


@router.post("/", response_model=Product, status_code=201)
def create_product(payload: CreateProductData, db: Session = Depends(get_db)):
    return unwrap(get_service(db).create_product(payload))


@router.patch("/{product_id}", response_model=Product)
def update_product(product_id: str, payload: ProductPatchIn, db: Session = Depends(get_db)):
    data = UpdateProductData(id=product_id, **payload.model_dump(exclude_unset=True))
    return unwrap(get_service(db).update_product(data))


@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: str, db: Session = Depends(get_db)):
    unwrap(get_service(db).delete_product(product_id))


@router.post("/{product_id}/stock")
def adjust_stock(product_id: str, payload: StockAdjustIn, db: Session = Depends(get_db)):
    stock = unwrap(get_service(db).adjust_stock(product_id, payload.delta))
    return {"product_id": product_id, "stock": stock}
