import uuid

from sqlalchemy import Column, String

from storefront.data.database import Base


class AddressModel(Base):
    __tablename__ = "addresses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(String(64), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    line1 = Column(String(255), nullable=False)
    line2 = Column(String(255), nullable=True)
    city = Column(String(120), nullable=False)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(2), nullable=False, default="PL")
