import pytest

from app.services.pricing import PricingFlags, Travelers, compute_breakdown, percent_of


class TestPercentOf:
    def test_rounds_half_up(self):
        assert percent_of(1005, 50) == 503  # 502.5
        assert percent_of(1003, 50) == 502  # 501.5 -> 502
        assert percent_of(1001, 10) == 100  # 100.1

    def test_zero(self):
        assert percent_of(0, 30) == 0
        assert percent_of(12345, 0) == 0


class TestComputeBreakdown:
    def test_two_adults_no_adjustments(self):
        b = compute_breakdown(10000, Travelers(adults=2, children=0), PricingFlags())
        assert b.subtotal == 20000
        assert b.single_supplement_amount == 0
        assert b.group_discount_amount == 0
        assert b.total == 20000

    def test_single_supplement(self):
        b = compute_breakdown(10000, Travelers(adults=1), PricingFlags(single_supplement=True, single_supplement_percent=20))
        assert b.subtotal == 10000
        assert b.single_supplement_amount == 2000
        assert b.total == 12000

    def test_group_with_children(self):
        flags = PricingFlags(child_discount_percent=50, group_discount_threshold=6, group_discount_percent=10)
        b = compute_breakdown(10000, Travelers(adults=4, children=3), flags)
        assert b.child_unit_price == 5000
        assert b.adult_total == 40000
        assert b.child_total == 15000
        assert b.subtotal == 55000
        assert b.group_discount_amount == 5500
        assert b.total == 49500

    def test_supplement_only_for_a_lone_adult(self):
        flags = PricingFlags(single_supplement=True)
        assert compute_breakdown(10000, Travelers(adults=2), flags).single_supplement_amount == 0
        assert compute_breakdown(10000, Travelers(adults=1, children=1), flags).single_supplement_amount == 0

    def test_group_threshold_is_inclusive(self):
        flags = PricingFlags(group_discount_threshold=6)
        assert compute_breakdown(10000, Travelers(adults=5), flags).group_discount_amount == 0
        assert compute_breakdown(10000, Travelers(adults=6), flags).group_discount_amount == 6000

    def test_child_price_rounds_independently(self):
        b = compute_breakdown(9999, Travelers(adults=1, children=2), PricingFlags(child_discount_percent=50))
        assert b.child_unit_price == 5000  # 4999.5 rounds up
        assert b.total == 9999 + 10000

    def test_as_dict_exposes_all_amounts(self):
        d = compute_breakdown(10000, Travelers(adults=2)).as_dict()
        assert d["total"] == 20000
        assert set(d) >= {"subtotal", "child_unit_price", "group_discount_amount", "single_supplement_amount"}

    @pytest.mark.parametrize("unit", [1, 99, 10000, 123457])
    @pytest.mark.parametrize("adults,children", [(1, 0), (1, 3), (4, 3), (10, 10)])
    def test_adjustments_move_total_in_the_right_direction(self, unit, adults, children):
        travelers = Travelers(adults=adults, children=children)
        with_supplement = compute_breakdown(unit, travelers, PricingFlags(single_supplement=True))
        if with_supplement.single_supplement_amount:
            assert with_supplement.total >= with_supplement.subtotal
        b = compute_breakdown(unit, travelers, PricingFlags())
        if b.group_discount_amount:
            assert b.total <= b.subtotal
        assert b.total >= 0
