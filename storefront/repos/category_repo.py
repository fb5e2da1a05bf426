# storefront/repos/category_repo.py
from typing import Sequence

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from storefront.data.models.category import CategoryModel, product_categories


class CategoryRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, category_id: str) -> CategoryModel | None:
        return self.db.get(CategoryModel, category_id)

    def get_by_name(self, name: str) -> CategoryModel | None:
        return self.db.execute(select(CategoryModel).where(CategoryModel.name == name)).scalar_one_or_none()

    def get_many(self, category_ids: Sequence[str]) -> list[CategoryModel]:
        if not category_ids:
            return []
        stmt = select(CategoryModel).where(CategoryModel.id.in_(list(category_ids)))
        return list(self.db.execute(stmt).scalars().all())

    def find_all(self) -> list[CategoryModel]:
        stmt = select(CategoryModel).where(CategoryModel.is_active.is_(True)).order_by(CategoryModel.name)
        return list(self.db.execute(stmt).scalars().all())

    def has_products(self, category_id: str) -> bool:
        stmt = select(exists().where(product_categories.c.category_id == category_id))
        return bool(self.db.execute(stmt).scalar())

    def add(self, category: CategoryModel) -> CategoryModel:
        self.db.add(category)
        self.db.flush()
        return category

    def delete(self, category: CategoryModel) -> None:
        self.db.delete(category)
        self.db.flush()
