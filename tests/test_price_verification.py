from unittest.mock import MagicMock

import pytest

from app.models.catalog_item import CatalogItem
from app.services.price_verification import (
    CanonicalPrice,
    CatalogPriceSource,
    PriceVerifier,
    parse_price_to_cents,
)
from app.services.pricing import PricingFlags, Travelers


@pytest.mark.parametrize(
    "label,expected",
    [
        ("€99", 9900),
        ("$149.99", 14999),
        ("€1,490", 149000),
        (" £ 12.345 ", 1235),
        ("99", 9900),
        ("Call us", None),
        ("", None),
        (None, None),
        ("-5", None),
    ],
)
def test_parse_price_to_cents(label, expected):
    assert parse_price_to_cents(label) == expected


class TestCatalogPriceSource:
    def test_found(self, db, catalog):
        price = CatalogPriceSource(db).get_canonical_unit_price("jerusalem-old-city")
        assert price.found
        assert price.unit_price_cents == 10000
        assert price.item_type == "day-tour"
        assert price.product_type == "day-tour"
        assert price.currency == "eur"

    def test_destination_product_type_comes_from_the_row(self, db, catalog):
        source = CatalogPriceSource(db)
        assert source.get_canonical_unit_price("eilat").product_type == "car-rental"
        haifa = source.get_canonical_unit_price("haifa")
        assert haifa.found
        assert haifa.product_type is None

    def test_unparseable_label_is_not_found(self, db, catalog):
        assert not CatalogPriceSource(db).get_canonical_unit_price("unpriced-tour").found

    def test_missing(self, db, catalog):
        assert not CatalogPriceSource(db).get_canonical_unit_price("nowhere").found

    def test_day_tour_wins_over_destination(self, db, catalog):
        db.add(CatalogItem(id="eilat", item_type="day-tour", name="Eilat Reef Tour", price_label="€80"))
        db.commit()
        price = CatalogPriceSource(db).get_canonical_unit_price("eilat")
        assert price.item_type == "day-tour"
        assert price.unit_price_cents == 8000

    def test_price_cents_overrides_label(self, db, catalog):
        db.add(CatalogItem(id="tel-aviv", item_type="destination", name="TLV", price_label="€10", price_cents=1250))
        db.commit()
        assert CatalogPriceSource(db).get_canonical_unit_price("tel-aviv").unit_price_cents == 1250

    def test_inactive_items_are_ignored(self, db, catalog):
        catalog["jerusalem-old-city"].active = False
        db.commit()
        assert not CatalogPriceSource(db).get_canonical_unit_price("jerusalem-old-city").found


class TestPriceVerifier:
    @pytest.fixture
    def verifier(self):
        source = MagicMock()
        source.get_canonical_unit_price.return_value = CanonicalPrice(
            found=True, item_id="tour", unit_price_cents=10000, item_type="day-tour"
        )
        return PriceVerifier(source)

    def test_exact_amount_is_valid(self, verifier):
        result = verifier.verify("tour", 49500, Travelers(adults=4, children=3), PricingFlags())
        assert result.valid
        assert result.expected_amount_cents == 49500

    def test_underpayment_is_rejected(self, verifier):
        result = verifier.verify("tour", 49400, Travelers(adults=4, children=3), PricingFlags())
        assert not result.valid
        assert result.reason == "price mismatch"
        assert result.expected_amount_cents == 49500

    @pytest.mark.parametrize("delta", [-1, 1])
    def test_one_cent_off_either_way_is_rejected(self, verifier, delta):
        result = verifier.verify("tour", 20000 + delta, Travelers(adults=2), PricingFlags())
        assert not result.valid

    def test_item_not_found(self):
        source = MagicMock()
        source.get_canonical_unit_price.return_value = CanonicalPrice(found=False, item_id="x")
        result = PriceVerifier(source).verify("x", 100, Travelers())
        assert not result.valid
        assert result.reason == "item not found"
        assert result.expected_amount_cents is None

    def test_matching_currency_is_valid(self, verifier):
        assert verifier.verify("tour", 20000, Travelers(adults=2), PricingFlags(), currency=" EUR ").valid

    def test_other_currency_is_rejected(self, verifier):
        result = verifier.verify("tour", 20000, Travelers(adults=2), PricingFlags(), currency="ils")
        assert not result.valid
        assert result.reason == "currency mismatch"
        assert result.expected_amount_cents == 20000

    def test_mismatch_is_logged_as_warning(self, verifier, caplog):
        with caplog.at_level("WARNING"):
            verifier.verify("tour", 1, Travelers(adults=2), PricingFlags())
        assert "potential tampering" in caplog.text
