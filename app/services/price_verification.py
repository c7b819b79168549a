"""Server-side price verification.

The amount a client submits is advisory only. The canonical unit price comes
from the catalog, the total from ``compute_breakdown``, and the two must match
exactly, to the cent.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Protocol

from sqlalchemy.orm import Session

from app.models.catalog_item import CatalogItem
from app.services.pricing import PriceBreakdown, PricingFlags, Travelers, compute_breakdown
from app.services.product_policy import PRODUCT_TYPES

logger = logging.getLogger(__name__)

# Checked in this order; the first catalog that knows the id wins.
LOOKUP_ORDER = ("day-tour", "vacation-package", "destination")

_PRICE_NOISE = re.compile(r"[€$£₤¥₹\s,]")


def parse_price_to_cents(label: str | None) -> int | None:
    """"€99" -> 9900, "$149.99" -> 14999; None when the label is not a price."""
    if not label:
        return None
    cleaned = _PRICE_NOISE.sub("", label).strip()
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite() or value < 0:
        return None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CanonicalPrice:
    found: bool
    item_id: str
    unit_price_cents: int | None = None
    item_type: str | None = None
    name: str = ""
    currency: str = "eur"
    product_type: str | None = None  # None when the catalog entry does not say what gets booked


class PriceSource(Protocol):
    def get_canonical_unit_price(self, item_id: str) -> CanonicalPrice: ...


class CatalogPriceSource:
    """PriceSource backed by the catalog_items table."""

    def __init__(self, db: Session):
        self.db = db

    def get_canonical_unit_price(self, item_id: str) -> CanonicalPrice:
        rows = (
            self.db.query(CatalogItem)
            .filter(CatalogItem.id == item_id, CatalogItem.active == True)  # noqa: E712
            .all()
        )
        by_type = {r.item_type: r for r in rows}
        for item_type in LOOKUP_ORDER:
            item = by_type.get(item_type)
            if not item:
                continue
            cents = item.price_cents if item.price_cents is not None else parse_price_to_cents(item.price_label)
            if cents is None or cents <= 0:
                return CanonicalPrice(found=False, item_id=item_id, item_type=item_type, name=item.name)
            product_type = item.product_type or (item_type if item_type in PRODUCT_TYPES else None)
            return CanonicalPrice(found=True, item_id=item_id, unit_price_cents=cents, item_type=item_type,
                                  name=item.name, currency=(item.currency or "eur").lower(), product_type=product_type)
        return CanonicalPrice(found=False, item_id=item_id)


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    expected_amount_cents: int | None = None
    reason: str | None = None
    breakdown: PriceBreakdown | None = None
    item: CanonicalPrice | None = None


class PriceVerifier:
    def __init__(self, source: PriceSource):
        self.source = source

    def verify(self, tour_id: str, submitted_amount_cents: int, travelers: Travelers,
               flags: PricingFlags | None = None, currency: str | None = None) -> VerificationResult:
        item = self.source.get_canonical_unit_price(tour_id)
        if not item.found:
            return VerificationResult(valid=False, reason="item not found", item=item)

        breakdown = compute_breakdown(item.unit_price_cents, travelers, flags or PricingFlags.from_settings())
        expected = breakdown.total
        if currency is not None and currency.strip().lower() != item.currency:
            # 20000 cents of the wrong currency is a different price.
            logger.warning("Currency mismatch (potential tampering) tour=%s expected=%s submitted=%s",
                           tour_id, item.currency, currency)
            return VerificationResult(valid=False, expected_amount_cents=expected, reason="currency mismatch",
                                      breakdown=breakdown, item=item)
        if submitted_amount_cents != expected:
            logger.warning(
                "Price mismatch (potential tampering) tour=%s expected=%s submitted=%s travelers=%s",
                tour_id, expected, submitted_amount_cents, travelers,
            )
            return VerificationResult(
                valid=False,
                expected_amount_cents=expected,
                reason="price mismatch",
                breakdown=breakdown,
                item=item,
            )
        return VerificationResult(valid=True, expected_amount_cents=expected, breakdown=breakdown, item=item)
