"""Business rules per product type.

Policies live in code, not settings; changing them means a deploy.
"""
from dataclasses import dataclass

from app.services.pricing import percent_of

DAY_TOUR = "day-tour"
VACATION_PACKAGE = "vacation-package"
CAR_RENTAL = "car-rental"
HOTEL = "hotel"
PRODUCT_TYPES = (DAY_TOUR, VACATION_PACKAGE, CAR_RENTAL, HOTEL)

FULL = "full"
DEPOSIT = "deposit"
CASH_ON_ARRIVAL = "cash-on-arrival"
PAYMENT_METHODS = (FULL, DEPOSIT, CASH_ON_ARRIVAL)


@dataclass(frozen=True)
class ProductPolicy:
    product_type: str
    label: str
    requires_approval: bool
    allowed_payment_methods: frozenset
    default_payment_method: str
    deposit_percentage: int
    instant_confirmation: bool
    approval_timeout_hours: int = 0

    def __post_init__(self):
        if self.product_type not in PRODUCT_TYPES:
            raise ValueError(f"unknown product type {self.product_type!r}")
        if not 0 <= self.deposit_percentage <= 100:
            raise ValueError(f"{self.product_type}: deposit_percentage must be within 0-100")
        unknown = set(self.allowed_payment_methods) - set(PAYMENT_METHODS)
        if unknown:
            raise ValueError(f"{self.product_type}: unknown payment methods {sorted(unknown)}")
        if self.default_payment_method not in self.allowed_payment_methods:
            raise ValueError(f"{self.product_type}: default payment method must be allowed")
        if self.requires_approval:
            if self.instant_confirmation:
                raise ValueError(f"{self.product_type}: approval-gated products cannot confirm instantly")
            # Cash cannot fund a deposit hold while an admin reviews.
            if CASH_ON_ARRIVAL in self.allowed_payment_methods:
                raise ValueError(f"{self.product_type}: approval-gated products cannot accept cash on arrival")


PRODUCT_POLICIES: dict[str, ProductPolicy] = {
    DAY_TOUR: ProductPolicy(
        product_type=DAY_TOUR,
        label="Day Tour",
        requires_approval=False,
        allowed_payment_methods=frozenset({FULL, DEPOSIT, CASH_ON_ARRIVAL}),
        default_payment_method=FULL,
        deposit_percentage=30,
        instant_confirmation=True,
    ),
    VACATION_PACKAGE: ProductPolicy(
        product_type=VACATION_PACKAGE,
        label="Vacation Package",
        requires_approval=True,
        allowed_payment_methods=frozenset({DEPOSIT}),
        default_payment_method=DEPOSIT,
        deposit_percentage=30,
        instant_confirmation=False,
        approval_timeout_hours=24,
    ),
    CAR_RENTAL: ProductPolicy(
        product_type=CAR_RENTAL,
        label="Car Rental",
        requires_approval=True,
        allowed_payment_methods=frozenset({DEPOSIT}),
        default_payment_method=DEPOSIT,
        deposit_percentage=30,
        instant_confirmation=False,
        approval_timeout_hours=24,
    ),
    HOTEL: ProductPolicy(
        product_type=HOTEL,
        label="Hotel",
        requires_approval=True,
        allowed_payment_methods=frozenset({DEPOSIT}),
        default_payment_method=DEPOSIT,
        deposit_percentage=30,
        instant_confirmation=False,
        approval_timeout_hours=24,
    ),
}


class ProductPolicyRegistry:
    """Read-only lookup over the product policy table."""

    def __init__(self, policies: dict[str, ProductPolicy] | None = None):
        self._policies = dict(policies if policies is not None else PRODUCT_POLICIES)

    def get(self, product_type: str) -> ProductPolicy:
        try:
            return self._policies[product_type]
        except KeyError:
            raise ValueError(f"unknown product type {product_type!r}") from None

    def is_payment_method_allowed(self, product_type: str, method: str) -> bool:
        return method in self.get(product_type).allowed_payment_methods

    def compute_deposit(self, product_type: str, total_cents: int) -> int:
        return percent_of(total_cents, self.get(product_type).deposit_percentage)

    def compute_balance(self, product_type: str, total_cents: int) -> int:
        return total_cents - self.compute_deposit(product_type, total_cents)
