# storefront/repos/address_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.data.models.address import AddressModel


class AddressRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_for_customer(self, address_id: str, customer_id: str) -> AddressModel | None:
        # adres innego klienta traktujemy jak nieistniejacy
        stmt = select(AddressModel).where(AddressModel.id == address_id, AddressModel.customer_id == customer_id)
        return self.db.execute(stmt).scalar_one_or_none()
