import pytest

from app.services.product_policy import (
    CASH_ON_ARRIVAL,
    DEPOSIT,
    FULL,
    PRODUCT_POLICIES,
    ProductPolicy,
    ProductPolicyRegistry,
)


@pytest.fixture
def registry():
    return ProductPolicyRegistry()


class TestRegistry:
    def test_day_tour_confirms_instantly(self, registry):
        policy = registry.get("day-tour")
        assert policy.requires_approval is False
        assert policy.instant_confirmation is True
        assert policy.default_payment_method == FULL

    @pytest.mark.parametrize("product_type", ["vacation-package", "car-rental", "hotel"])
    def test_gated_products_take_deposit_only(self, registry, product_type):
        policy = registry.get(product_type)
        assert policy.requires_approval is True
        assert registry.is_payment_method_allowed(product_type, DEPOSIT)
        assert not registry.is_payment_method_allowed(product_type, FULL)
        assert not registry.is_payment_method_allowed(product_type, CASH_ON_ARRIVAL)

    def test_unknown_product_type(self, registry):
        with pytest.raises(ValueError):
            registry.get("cruise")

    def test_deposit_and_balance_add_up(self, registry):
        for total in (1, 999, 10000, 123457):
            deposit = registry.compute_deposit("vacation-package", total)
            assert deposit + registry.compute_balance("vacation-package", total) == total

    def test_deposit_rounds_half_up(self, registry):
        assert registry.compute_deposit("hotel", 100000) == 30000
        assert registry.compute_deposit("hotel", 5) == 2  # 1.5

    def test_registry_does_not_share_state(self):
        custom = ProductPolicyRegistry({"day-tour": PRODUCT_POLICIES["day-tour"]})
        with pytest.raises(ValueError):
            custom.get("hotel")


class TestPolicyValidation:
    def test_gated_product_cannot_take_cash(self):
        with pytest.raises(ValueError):
            ProductPolicy(
                product_type="hotel",
                label="Hotel",
                requires_approval=True,
                allowed_payment_methods=frozenset({DEPOSIT, CASH_ON_ARRIVAL}),
                default_payment_method=DEPOSIT,
                deposit_percentage=30,
                instant_confirmation=False,
            )

    def test_default_method_must_be_allowed(self):
        with pytest.raises(ValueError):
            ProductPolicy(
                product_type="day-tour",
                label="Day Tour",
                requires_approval=False,
                allowed_payment_methods=frozenset({FULL}),
                default_payment_method=DEPOSIT,
                deposit_percentage=30,
                instant_confirmation=True,
            )

    def test_deposit_percentage_bounds(self):
        with pytest.raises(ValueError):
            ProductPolicy(
                product_type="day-tour",
                label="Day Tour",
                requires_approval=False,
                allowed_payment_methods=frozenset({FULL}),
                default_payment_method=FULL,
                deposit_percentage=120,
                instant_confirmation=True,
            )
