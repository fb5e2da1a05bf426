"""DiscountLedger: validation reasons, percentage caps, atomic usage counting."""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.domain.errors import ErrorCode
from storefront.domain.schemas import DiscountCode, DiscountType
from storefront.services.discount_ledger import DiscountLedger, compute_discount
from storefront.utils.clock import utcnow


@pytest.fixture
def limited_code(ledger):
    def _make(code="LIMITED", usage_limit=3, **extra):
        data = DiscountCode(code=code, type=DiscountType.FIXED, value=Decimal("5"), usage_limit=usage_limit, **extra)
        result = ledger.create_discount_code(data)
        assert result.success, result.error
        return result.data

    return _make


class TestComputeDiscount:
    def test_percentage_is_capped_by_max_discount(self):
        code = DiscountCode(code="X", type=DiscountType.PERCENTAGE, value=Decimal("10"), max_discount=Decimal("20"))
        assert compute_discount(code, Decimal("300")) == Decimal("20.00")
        assert compute_discount(code, Decimal("100")) == Decimal("10.00")

    def test_fixed_never_exceeds_order_amount(self):
        code = DiscountCode(code="X", type=DiscountType.FIXED, value=Decimal("50"))
        assert compute_discount(code, Decimal("30")) == Decimal("30.00")

    def test_rounding_half_up(self):
        code = DiscountCode(code="X", type=DiscountType.PERCENTAGE, value=Decimal("15"))
        assert compute_discount(code, Decimal("0.10")) == Decimal("0.02")


@pytest.mark.usefixtures("discount_codes")
class TestValidateDiscountCode:
    def test_percentage_code(self, ledger):
        result = ledger.validate_discount_code("WELCOME10", Decimal("300")).data
        assert result.is_valid
        assert result.discount_amount == Decimal("20.00")
        assert result.discount.code == "WELCOME10"

    def test_lookup_is_case_insensitive(self, ledger):
        assert ledger.validate_discount_code("welcome10", Decimal("100")).data.discount_amount == Decimal("10.00")

    def test_fixed_code(self, ledger):
        assert ledger.validate_discount_code("SAVE5", Decimal("40")).data.discount_amount == Decimal("5.00")

    def test_minimum_order_not_met(self, ledger):
        result = ledger.validate_discount_code("WELCOME10", Decimal("49.99")).data
        assert not result.is_valid
        assert result.error_code == ErrorCode.DISCOUNT_MIN_ORDER_NOT_MET
        assert result.discount_amount == Decimal("0.00")

    def test_unknown_code(self, ledger):
        result = ledger.validate_discount_code("NOPE", Decimal("100")).data
        assert result.error_code == ErrorCode.INVALID_DISCOUNT_CODE

    def test_deactivated_code(self, ledger):
        assert ledger.deactivate_discount_code("SAVE5").success
        result = ledger.validate_discount_code("SAVE5", Decimal("100")).data
        assert result.error_code == ErrorCode.DISCOUNT_INACTIVE

    def test_negative_amount_is_rejected(self, ledger):
        result = ledger.validate_discount_code("SAVE5", Decimal("-1"))
        assert result.error.code == ErrorCode.INVALID
        assert result.error.field == "order_amount"

    def test_validation_does_not_consume(self, ledger):
        ledger.validate_discount_code("SAVE5", Decimal("100"))
        assert ledger.get_discount_code("SAVE5").data.used_count == 0


class TestExpiry:
    def test_expired_code(self, ledger, limited_code):
        limited_code("OLD", usage_limit=None, expires_at=utcnow() - timedelta(days=1))
        result = ledger.validate_discount_code("OLD", Decimal("100")).data
        assert result.error_code == ErrorCode.DISCOUNT_EXPIRED
        assert ledger.apply_discount_code("OLD", Decimal("100")).error.code == ErrorCode.DISCOUNT_EXPIRED

    def test_future_expiry_is_fine(self, ledger, limited_code):
        limited_code("NEW", usage_limit=None, expires_at=utcnow() + timedelta(days=1))
        assert ledger.validate_discount_code("NEW", Decimal("100")).data.is_valid


class TestApplyAndRelease:
    def test_apply_increments_usage(self, ledger, limited_code):
        limited_code()
        result = ledger.apply_discount_code("limited", Decimal("20"))
        assert result.data.discount_amount == Decimal("5.00")
        assert ledger.get_discount_code("LIMITED").data.used_count == 1

    def test_usage_limit_is_enforced(self, ledger, limited_code):
        limited_code(usage_limit=2)
        assert ledger.apply_discount_code("LIMITED", Decimal("20")).success
        assert ledger.apply_discount_code("LIMITED", Decimal("20")).success

        result = ledger.apply_discount_code("LIMITED", Decimal("20"))

        assert result.error.code == ErrorCode.DISCOUNT_USAGE_LIMIT_REACHED
        assert ledger.get_discount_code("LIMITED").data.used_count == 2
        assert ledger.validate_discount_code("LIMITED", Decimal("20")).data.error_code == (
            ErrorCode.DISCOUNT_USAGE_LIMIT_REACHED
        )

    def test_release_never_goes_below_zero(self, ledger, limited_code):
        limited_code()
        ledger.apply_discount_code("LIMITED", Decimal("20"))

        assert ledger.release_discount_code("LIMITED").data is True
        assert ledger.release_discount_code("LIMITED").data is False
        assert ledger.get_discount_code("LIMITED").data.used_count == 0

    def test_concurrent_applies_respect_limit(self, session_factory, limited_code):
        limited_code(usage_limit=3)
        outcomes = []
        guard = threading.Lock()

        def worker():
            session = session_factory()
            try:
                result = DiscountLedger(session).apply_discount_code("LIMITED", Decimal("20"))
                with guard:
                    outcomes.append(result.success)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(True) == 3
        session = session_factory()
        try:
            assert DiscountLedger(session).get_discount_code("LIMITED").data.used_count == 3
        finally:
            session.close()


class TestAdministration:
    def test_create_normalises_code(self, ledger):
        created = ledger.create_discount_code(
            DiscountCode(code=" spring ", type=DiscountType.PERCENTAGE, value=Decimal("15"))
        ).data
        assert created.code == "SPRING"
        assert created.used_count == 0

    def test_duplicate_code(self, ledger, limited_code):
        limited_code()
        result = ledger.create_discount_code(DiscountCode(code="limited", type=DiscountType.FIXED, value=Decimal("1")))
        assert result.error.code == ErrorCode.DISCOUNT_EXISTS

    def test_percentage_above_hundred(self, ledger):
        result = ledger.create_discount_code(DiscountCode(code="X", type=DiscountType.PERCENTAGE, value=Decimal("150")))
        assert result.error.field == "value"

    def test_missing_code(self, ledger):
        assert ledger.get_discount_code("NOPE").error.code == ErrorCode.DISCOUNT_NOT_FOUND

    @pytest.mark.usefixtures("discount_codes")
    def test_list_active_only(self, ledger):
        ledger.deactivate_discount_code("HONEY20")
        codes = [c.code for c in ledger.get_discount_codes(active_only=True).data]
        assert codes == ["SAVE5", "WELCOME10"]
