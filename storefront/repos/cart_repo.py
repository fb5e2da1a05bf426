# storefront/repos/cart_repo.py
from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.schemas import CartSearchFilters


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart(self, cart_id: str) -> CartModel | None:
        stmt = (
            select(CartModel)
            .where(CartModel.id == cart_id)
            .options(selectinload(CartModel.items).joinedload(CartItemModel.product))
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_customer(self, customer_id: str) -> CartModel | None:
        stmt = (
            select(CartModel)
            .where(CartModel.customer_id == customer_id)
            .options(selectinload(CartModel.items).joinedload(CartItemModel.product))
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create_cart(self, customer_id: str, expires_at: datetime) -> CartModel:
        """
        Insert-or-read: unikalny customer_id, wiec przy wyscigu drugi INSERT
        wpada na IntegrityError i czytamy koszyk zwyciezcy.
        """
        try:
            self.db.add(CartModel(customer_id=customer_id, expires_at=expires_at))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
        return self.get_by_customer(customer_id)

    def get_item(self, item_id: str) -> CartItemModel | None:
        #item + koszyk rodzic do sprawdzenia wlasciciela
        stmt = (
            select(CartItemModel)
            .where(CartItemModel.id == item_id)
            .options(joinedload(CartItemModel.cart))
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_item_by_product(self, cart_id: str, product_id: str) -> CartItemModel | None:
        stmt = (
            select(CartItemModel)
            .where(CartItemModel.cart_id == cart_id, CartItemModel.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def delete_item(self, item: CartItemModel) -> None:
        self.db.delete(item)
        self.db.flush()

    def delete_items(self, cart_id: str, item_ids: Sequence[str] | None = None) -> int:
        stmt = delete(CartItemModel).where(CartItemModel.cart_id == cart_id)
        if item_ids is not None:
            stmt = stmt.where(CartItemModel.id.in_(list(item_ids)))
        res = self.db.execute(stmt.execution_options(synchronize_session="fetch"))
        return res.rowcount

    def touch(self, cart: CartModel, now: datetime, expires_at: datetime) -> None:
        cart.updated_at = now
        cart.expires_at = expires_at
        self.db.flush()

    def search(self, filters: CartSearchFilters) -> list[CartModel]:
        stmt = select(CartModel).options(selectinload(CartModel.items).joinedload(CartItemModel.product))
        if filters.customer_id:
            stmt = stmt.where(CartModel.customer_id == filters.customer_id)
        if filters.date_from:
            stmt = stmt.where(CartModel.created_at >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(CartModel.created_at <= filters.date_to)
        stmt = stmt.order_by(CartModel.updated_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
