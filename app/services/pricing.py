"""Price breakdown for a booking.

All amounts are integer cents. Every percentage step is taken from the
subtotal and rounded half-up on its own, so rounding never compounds.
"""
from dataclasses import dataclass, asdict

from app.core.config import settings


def percent_of(amount_cents: int, percent: int) -> int:
    """round-half-up(amount_cents * percent / 100) for non-negative integers."""
    return (amount_cents * percent * 2 + 100) // 200


@dataclass(frozen=True)
class Travelers:
    adults: int = 1
    children: int = 0

    @property
    def count(self) -> int:
        return self.adults + self.children


@dataclass(frozen=True)
class PricingFlags:
    single_supplement: bool = False
    child_discount_percent: int = 50
    single_supplement_percent: int = 20
    group_discount_percent: int = 10
    group_discount_threshold: int = 6

    @classmethod
    def from_settings(cls, single_supplement: bool = False) -> "PricingFlags":
        return cls(
            single_supplement=single_supplement,
            child_discount_percent=settings.CHILD_DISCOUNT_PERCENT,
            single_supplement_percent=settings.SINGLE_SUPPLEMENT_PERCENT,
            group_discount_percent=settings.GROUP_DISCOUNT_PERCENT,
            group_discount_threshold=settings.GROUP_DISCOUNT_THRESHOLD,
        )


@dataclass(frozen=True)
class PriceBreakdown:
    adult_unit_price: int
    adult_count: int
    adult_total: int
    child_unit_price: int
    child_count: int
    child_total: int
    subtotal: int
    single_supplement_amount: int
    group_discount_amount: int
    total: int

    def as_dict(self) -> dict:
        return asdict(self)


def compute_breakdown(adult_unit_price: int, travelers: Travelers, flags: PricingFlags | None = None) -> PriceBreakdown:
    flags = flags or PricingFlags()
    adults, children = travelers.adults, travelers.children

    adult_total = adult_unit_price * adults
    child_unit_price = percent_of(adult_unit_price, 100 - flags.child_discount_percent)
    child_total = child_unit_price * children
    subtotal = adult_total + child_total

    single_supplement_amount = 0
    if flags.single_supplement and adults == 1 and children == 0:
        single_supplement_amount = percent_of(subtotal, flags.single_supplement_percent)

    group_discount_amount = 0
    if adults + children >= flags.group_discount_threshold:
        group_discount_amount = percent_of(subtotal, flags.group_discount_percent)

    return PriceBreakdown(
        adult_unit_price=adult_unit_price,
        adult_count=adults,
        adult_total=adult_total,
        child_unit_price=child_unit_price,
        child_count=children,
        child_total=child_total,
        subtotal=subtotal,
        single_supplement_amount=single_supplement_amount,
        group_discount_amount=group_discount_amount,
        total=subtotal + single_supplement_amount - group_discount_amount,
    )
