# storefront/api/routers/categories.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.responses import unwrap
from storefront.data.database import get_db
from storefront.domain.schemas import Category, CategoryData, PaginatedResult, Product, ProductFilters
from storefront.services.catalog_service import CatalogService

router = APIRouter(prefix="/categories", tags=["categories"])


def get_service(db: Session):
    return CatalogService(db)


@router.get("/", response_model=list[Category])
def list_categories(db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_categories())


@router.get("/{category_id}", response_model=Category)
def get_category(category_id: str, db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_category(category_id))


@router.get("/{category_id}/products", response_model=PaginatedResult[Product])
def category_products(category_id: str, filters: ProductFilters = Depends(), db: Session = Depends(get_db)):
    return unwrap(get_service(db).get_products_by_category(category_id, filters))


@router.post("/", response_model=Category, status_code=201)
def create_category(payload: CategoryData, db: Session = Depends(get_db)):
    return unwrap(get_service(db).create_category(payload))


@router.patch("/{category_id}", response_model=Category)
def update_category(category_id: str, payload: CategoryData, db: Session = Depends(get_db)):
    return unwrap(get_service(db).update_category(category_id, payload))


@router.delete("/{category_id}", status_code=204)
def delete_category(category_id: str, db: Session = Depends(get_db)):
    unwrap(get_service(db).delete_category(category_id))
