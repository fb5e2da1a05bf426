import os
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from sqlalchemy.orm import sessionmaker

from storefront.data.database import build_engine, init_db
from storefront.data.models import AddressModel, CategoryModel, ProductModel
from storefront.data.seed import seed_discount_codes
from storefront.domain.schemas import CheckoutData, PaymentMethod
from storefront.services.caches import cart_cache, catalog_cache, order_cache
from storefront.services.cart_manager import CartManager
from storefront.services.catalog_service import CatalogService
from storefront.services.checkout_service import CheckoutOrchestrator
from storefront.services.discount_ledger import DiscountLedger
from storefront.services.lock_service import LocalLockService
from storefront.services.order_service import OrderService

CUSTOMER = "cust-001"
OTHER_CUSTOMER = "cust-002"


@pytest.fixture
def engine(tmp_path):
    # plik, nie :memory:, zeby watki w testach wspolbieznosci mialy wlasne polaczenia
    engine = build_engine(f"sqlite:///{tmp_path / 'storefront-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def fresh_caches():
    for cache in (catalog_cache, cart_cache, order_cache):
        cache.on_invalidate = None
        cache.clear(broadcast=False)
    yield
    for cache in (catalog_cache, cart_cache, order_cache):
        cache.clear(broadcast=False)


@pytest.fixture
def locks():
    return LocalLockService(timeout=5)


@pytest.fixture
def catalog(db):
    return CatalogService(db)


@pytest.fixture
def carts(db, catalog, locks):
    return CartManager(db, catalog=catalog, lock_service=locks)


@pytest.fixture
def ledger(db):
    return DiscountLedger(db)


@pytest.fixture
def orders(db):
    return OrderService(db)


@pytest.fixture
def checkout(db, catalog, carts, ledger, orders):
    return CheckoutOrchestrator(db, catalog=catalog, carts=carts, discounts=ledger, orders=orders)


@pytest.fixture
def discount_codes(db):
    seed_discount_codes(db)
    db.commit()


@pytest.fixture
def make_product(db):
    def _make(name="P1", price="50.00", stock=10, categories=None, is_active=True):
        product = ProductModel(
            name=name,
            price=Decimal(price),
            stock=stock,
            is_active=is_active,
            categories=list(categories or []),
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_category(db):
    def _make(name="Honey"):
        category = CategoryModel(name=name)
        db.add(category)
        db.commit()
        return category

    return _make


@pytest.fixture
def address(db):
    address = AddressModel(customer_id=CUSTOMER, full_name="Jan Kowalski", line1="Miodowa 1", city="Krakow")
    db.add(address)
    db.commit()
    return address


@pytest.fixture
def other_address(db):
    address = AddressModel(customer_id=OTHER_CUSTOMER, line1="Pszczela 2", city="Gdansk")
    db.add(address)
    db.commit()
    return address


@pytest.fixture
def checkout_data(carts, address):
    def _make(payment_method=PaymentMethod.CREDIT_CARD, discount_code=None, customer_id=CUSTOMER):
        cart = carts.get_or_create_cart(customer_id).data
        return CheckoutData(
            cart_id=cart.id,
            customer_id=customer_id,
            shipping_address_id=address.id,
            payment_method=payment_method,
            discount_code=discount_code,
        )

    return _make


@pytest.fixture
def place_order(carts, checkout, checkout_data):
    def _place(product, quantity=1, payment_method=PaymentMethod.CREDIT_CARD):
        assert carts.add_item(CUSTOMER, product.id, quantity).success
        result = checkout.process_checkout(checkout_data(payment_method=payment_method))
        assert result.success, result.error
        return result.data.order

    return _place
