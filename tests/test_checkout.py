"""Checkout: quotes, validation, the order-creation saga and its compensations."""

import threading
from decimal import Decimal
from unittest.mock import patch

import pytest

from storefront.data.models import AddressModel, OrderModel, PaymentModel
from storefront.domain.errors import BusinessError, ErrorCode
from storefront.domain.schemas import (
    CheckoutData,
    CreateOrderData,
    OrderItemInput,
    OrderStatus,
    PaymentMethod,
    UpdateProductData,
)
from storefront.repos.order_repo import OrderRepo
from storefront.services.cart_manager import CartManager
from storefront.services.catalog_service import CatalogService
from storefront.services.checkout_service import CheckoutOrchestrator, quote_totals

from tests.conftest import CUSTOMER, OTHER_CUSTOMER


def _order_count(db):
    return db.query(OrderModel).count()


class TestQuoteTotals:
    @pytest.mark.parametrize(
        "subtotal, shipping, total",
        [
            ("80.00", "10.00", "90.00"),
            ("100.00", "10.00", "110.00"),
            ("150.00", "0.00", "150.00"),
        ],
    )
    def test_shipping_is_free_strictly_above_threshold(self, subtotal, shipping, total):
        quote = quote_totals(Decimal(subtotal))
        assert quote.shipping_amount == Decimal(shipping)
        assert quote.tax_amount == Decimal("0.00")
        assert quote.total == Decimal(total)

    def test_discount_is_subtracted(self):
        quote = quote_totals(Decimal("150.00"), Decimal("15.00"))
        assert quote.total == Decimal("135.00")

    def test_discount_never_exceeds_subtotal(self):
        assert quote_totals(Decimal("5.00"), Decimal("20.00")).discount_amount == Decimal("5.00")


class TestCalculateOrderTotal:
    @pytest.mark.usefixtures("discount_codes")
    def test_uses_live_prices_and_discount(self, carts, catalog, checkout, make_product):
        product = make_product(price="50.00", stock=10)
        cart = carts.add_item(CUSTOMER, product.id, 3).data
        catalog.update_product(UpdateProductData(id=product.id, price=Decimal("60.00")))

        total = checkout.calculate_order_total(cart.id, "WELCOME10").data

        assert total.subtotal == Decimal("180.00")
        assert total.discount_amount == Decimal("18.00")
        assert total.shipping_amount == Decimal("0.00")
        assert total.total == Decimal("162.00")

    def test_invalid_code_is_ignored(self, carts, checkout, make_product):
        cart = carts.add_item(CUSTOMER, make_product(price="20.00").id, 1).data
        total = checkout.calculate_order_total(cart.id, "NOPE").data
        assert total.discount_amount == Decimal("0.00")
        assert total.total == Decimal("30.00")

    def test_unknown_cart(self, checkout):
        assert checkout.calculate_order_total("missing").error.code == ErrorCode.CART_NOT_FOUND


class TestProcessCheckout:
    def test_end_to_end(self, db, carts, catalog, checkout, checkout_data, make_product):
        product = make_product(price="50.00", stock=10)
        carts.add_item(CUSTOMER, product.id, 2)

        result = checkout.process_checkout(checkout_data())

        assert result.success, result.error
        order = result.data.order
        assert order.status == OrderStatus.PENDING
        assert order.total_amount == Decimal("100.00")
        assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [
            (product.id, 2, Decimal("50.00"))
        ]
        assert order.payment.amount == Decimal("100.00")
        assert order.payment.status == "PENDING"
        assert [t.status for t in order.tracking] == [OrderStatus.PENDING]
        assert result.data.payment_url == f"/payment/{order.id}"
        assert result.data.totals.subtotal == Decimal("100.00")

        assert catalog.require_product(product.id).stock == 8
        assert carts.get_cart(CUSTOMER).data.items == []

    def test_cash_on_delivery_has_no_payment(self, carts, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product().id, 1)

        result = checkout.process_checkout(checkout_data(payment_method=PaymentMethod.CASH_ON_DELIVERY)).data

        assert result.payment_url is None
        assert result.order.payment is None
        assert result.order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value

    @pytest.mark.usefixtures("discount_codes")
    def test_discount_is_consumed(self, carts, ledger, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product(price="50.00").id, 3)

        result = checkout.process_checkout(checkout_data(discount_code="welcome10")).data

        assert result.order.discount_code == "WELCOME10"
        assert result.order.discount_amount == Decimal("15.00")
        assert result.order.total_amount == Decimal("135.00")
        assert result.totals.total == Decimal("135.00")
        assert ledger.get_discount_code("WELCOME10").data.used_count == 1

    def test_billing_defaults_to_shipping(self, carts, checkout, checkout_data, make_product, address):
        carts.add_item(CUSTOMER, make_product().id, 1)
        order = checkout.process_checkout(checkout_data()).data.order
        assert order.billing_address_id == address.id


class TestValidateCheckout:
    def test_valid_cart_returns_quote(self, carts, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product(price="40.00").id, 2)
        totals = checkout.validate_checkout(checkout_data()).data
        assert totals.total == Decimal("90.00")

    def test_empty_cart(self, db, checkout, checkout_data):
        result = checkout.process_checkout(checkout_data())
        assert result.error.code == ErrorCode.CART_EMPTY
        assert _order_count(db) == 0

    def test_foreign_shipping_address(self, carts, checkout, checkout_data, make_product, other_address):
        carts.add_item(CUSTOMER, make_product().id, 1)
        data = checkout_data().model_copy(update={"shipping_address_id": other_address.id})
        assert checkout.validate_checkout(data).error.code == ErrorCode.INVALID_SHIPPING_ADDRESS

    def test_foreign_billing_address(self, carts, checkout, checkout_data, make_product, other_address):
        carts.add_item(CUSTOMER, make_product().id, 1)
        data = checkout_data().model_copy(update={"billing_address_id": other_address.id})
        assert checkout.validate_checkout(data).error.code == ErrorCode.INVALID_BILLING_ADDRESS

    def test_cart_of_another_customer(self, carts, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product().id, 1)
        data = checkout_data().model_copy(update={"customer_id": OTHER_CUSTOMER})
        assert checkout.process_checkout(data).error.code == ErrorCode.UNAUTHORIZED_CART_ACCESS

    def test_stock_changed_since_add(self, db, carts, catalog, checkout, checkout_data, make_product):
        product = make_product(stock=10)
        carts.add_item(CUSTOMER, product.id, 4)
        catalog.update_product(UpdateProductData(id=product.id, stock=3))

        result = checkout.process_checkout(checkout_data())

        assert result.error.code == ErrorCode.CHECKOUT_VALIDATION_FAILED
        assert _order_count(db) == 0
        assert catalog.require_product(product.id).stock == 3

    def test_unknown_discount_code(self, carts, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product().id, 2)
        result = checkout.process_checkout(checkout_data(discount_code="NOPE"))
        assert result.error.code == ErrorCode.INVALID_DISCOUNT_CODE

    @pytest.mark.usefixtures("discount_codes")
    def test_discount_minimum_not_met(self, carts, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product(price="50.00").id, 1)
        result = checkout.process_checkout(checkout_data(discount_code="HONEY20"))
        assert result.error.code == ErrorCode.DISCOUNT_MIN_ORDER_NOT_MET


class TestCreateOrder:
    def _data(self, address, *lines, **extra):
        return CreateOrderData(
            customer_id=CUSTOMER,
            items=[OrderItemInput(product_id=p.id, quantity=q, unit_price=p.price) for p, q in lines],
            shipping_address_id=address.id,
            payment_method=PaymentMethod.BANK_TRANSFER,
            **extra,
        )

    def test_total_includes_delivery_fee(self, checkout, address, make_product):
        product = make_product(price="50.00")
        order = checkout.create_order(self._data(address, (product, 2), delivery_fee=Decimal("7.50"))).data
        assert order.total_amount == Decimal("107.50")
        assert order.shipping_amount == Decimal("7.50")

    def test_rejects_non_positive_price(self, checkout, address, make_product):
        product = make_product()
        data = self._data(address, (product, 1))
        data.items[0].unit_price = Decimal("0")
        assert checkout.create_order(data).error.code == ErrorCode.INVALID_PRODUCT_PRICE

    def test_rejects_empty_items(self, checkout, address):
        assert checkout.create_order(self._data(address)).error.field == "items"

    def test_early_stock_check(self, db, checkout, address, make_product):
        product = make_product(stock=1)
        assert checkout.create_order(self._data(address, (product, 2))).error.code == ErrorCode.INSUFFICIENT_STOCK
        assert _order_count(db) == 0


class TestCompensation:
    @pytest.mark.usefixtures("discount_codes")
    def test_payment_failure_rolls_everything_back(self, db, carts, catalog, ledger, checkout, checkout_data, make_product):
        product = make_product(price="50.00", stock=10)
        carts.add_item(CUSTOMER, product.id, 2)

        with patch.object(OrderRepo, "add_payment", side_effect=RuntimeError("payment table locked")):
            result = checkout.process_checkout(checkout_data(discount_code="WELCOME10"))

        assert result.error.code == ErrorCode.PAYMENT_CREATE_ERROR
        assert _order_count(db) == 0
        assert db.query(PaymentModel).count() == 0
        assert catalog.require_product(product.id).stock == 10
        assert ledger.get_discount_code("WELCOME10").data.used_count == 0
        carts.clear_cache()
        assert carts.get_cart(CUSTOMER).data.items[0].quantity == 2

    def test_stock_failure_restores_earlier_decrements(self, db, carts, catalog, checkout, checkout_data, make_product):
        first = make_product(name="First", stock=10)
        second = make_product(name="Second", stock=10)
        carts.add_item(CUSTOMER, first.id, 2)
        carts.add_item(CUSTOMER, second.id, 3)
        original = CatalogService.apply_stock_delta

        def sold_out_meanwhile(self, product_id, delta):
            if product_id == second.id and delta < 0:
                raise BusinessError("Insufficient stock", ErrorCode.INSUFFICIENT_STOCK)
            return original(self, product_id, delta)

        with patch.object(CatalogService, "apply_stock_delta", autospec=True, side_effect=sold_out_meanwhile):
            result = checkout.process_checkout(checkout_data())

        assert result.error.code == ErrorCode.INSUFFICIENT_STOCK
        assert _order_count(db) == 0
        assert catalog.require_product(first.id).stock == 10
        assert catalog.require_product(second.id).stock == 10

    def test_failed_compensation_is_reported(self, db, carts, checkout, checkout_data, make_product):
        carts.add_item(CUSTOMER, make_product().id, 1)

        with patch.object(OrderRepo, "add_payment", side_effect=RuntimeError("boom")), patch.object(
            OrderRepo, "delete_order", side_effect=RuntimeError("still boom")
        ):
            result = checkout.process_checkout(checkout_data())

        assert result.error.code == ErrorCode.CHECKOUT_ROLLBACK_INCOMPLETE
        # naglowek zostal, czeka na recznego sprzatacza
        assert _order_count(db) == 1


class TestCartLockDuringCheckout:
    """Cart changes wait for a running checkout of the same customer."""

    def test_line_added_mid_checkout_is_refused_not_lost(
        self, session_factory, carts, locks, checkout, checkout_data, make_product
    ):
        ordered = make_product(name="Ordered")
        extra = make_product(name="Extra")
        carts.add_item(CUSTOMER, ordered.id, 1)
        locks.timeout = 0.2
        attempts = []
        original = OrderRepo.add_payment

        def add_line_meanwhile(self, payment):
            session = session_factory()
            try:
                attempts.append(CartManager(session, lock_service=locks).add_item(CUSTOMER, extra.id, 1))
            finally:
                session.close()
            return original(self, payment)

        with patch.object(OrderRepo, "add_payment", autospec=True, side_effect=add_line_meanwhile):
            result = checkout.process_checkout(checkout_data())

        assert result.success, result.error
        assert [i.product_id for i in result.data.order.items] == [ordered.id]
        assert attempts[0].error.code == ErrorCode.CART_LOCKED

        # po checkoutcie koszyk znow przyjmuje zmiany
        assert carts.add_item(CUSTOMER, extra.id, 1).success
        assert [i.product_id for i in carts.get_cart(CUSTOMER).data.items] == [extra.id]

    def test_second_checkout_of_same_cart_is_refused(
        self, db, session_factory, carts, catalog, locks, checkout, checkout_data, make_product
    ):
        product = make_product(stock=10)
        carts.add_item(CUSTOMER, product.id, 2)
        locks.timeout = 0.2
        data = checkout_data()
        nested = []
        original = OrderRepo.add_payment

        def checkout_again(self, payment):
            session = session_factory()
            try:
                other = CheckoutOrchestrator(session, carts=CartManager(session, lock_service=locks))
                nested.append(other.process_checkout(data))
            finally:
                session.close()
            return original(self, payment)

        with patch.object(OrderRepo, "add_payment", autospec=True, side_effect=checkout_again):
            result = checkout.process_checkout(data)

        assert result.success, result.error
        assert nested[0].error.code == ErrorCode.CART_LOCKED
        assert _order_count(db) == 1
        assert catalog.require_product(product.id).stock == 8
        assert carts.get_cart(CUSTOMER).data.items == []

    def test_ordered_lines_only_are_removed(self, carts, make_product):
        product = make_product()
        carts.add_item(CUSTOMER, product.id, 1)
        cart = carts.get_cart(CUSTOMER).data

        removed = carts.clear_ordered_lines(CUSTOMER, ["not-in-cart"])

        assert removed.data == 0
        assert carts.get_cart(CUSTOMER).data.items[0].id == cart.items[0].id


class TestConcurrentCheckout:
    def test_last_unit_is_sold_once(self, db, session_factory, carts, catalog, locks, make_product):
        product = make_product(stock=1)
        requests = []
        for n in range(6):
            customer_id = f"buyer-{n}"
            address = AddressModel(customer_id=customer_id, line1="Miodowa 1", city="Krakow")
            db.add(address)
            db.commit()
            assert carts.add_item(customer_id, product.id, 1).success
            requests.append(
                CheckoutData(
                    cart_id=carts.get_cart(customer_id).data.id,
                    customer_id=customer_id,
                    shipping_address_id=address.id,
                    payment_method=PaymentMethod.CREDIT_CARD,
                )
            )
        outcomes = []
        guard = threading.Lock()
        start = threading.Barrier(len(requests), timeout=10)

        def worker(data):
            session = session_factory()
            try:
                orchestrator = CheckoutOrchestrator(session, carts=CartManager(session, lock_service=locks))
                start.wait()
                result = orchestrator.process_checkout(data)
                with guard:
                    outcomes.append(result.error.code if result.error else "ok")
            finally:
                session.close()

        threads = [threading.Thread(target=worker, args=(data,)) for data in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(outcomes) == len(requests)
        assert outcomes.count("ok") == 1
        assert set(outcomes) - {"ok"} <= {ErrorCode.INSUFFICIENT_STOCK, ErrorCode.CHECKOUT_VALIDATION_FAILED}
        assert catalog.require_product(product.id).stock == 0
        assert _order_count(db) == 1
