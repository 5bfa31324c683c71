"""
Pricing resolver: age brackets, price-table validation and lookup.
"""
from datetime import date
from decimal import Decimal

import pytest

from cemetery.exceptions import PricingConfigurationError
from cemetery.models.catalog import AgeBracket
from cemetery.services.pricing import (
    PriceTable, age_bracket, calculate_age, resolve_monthly_price,
)


@pytest.fixture
def table():
    return PriceTable.from_rows([
        ("STANDARD", "UNDER_60", "25.00"),
        ("STANDARD", "SIXTY_PLUS", "30.00"),
        ("family", "UNDER_60", Decimal("40.00")),
    ], plan_name="12 Month Plan")


class TestCalculateAge:

    def test_birthday_already_passed(self):
        assert calculate_age(date(1970, 5, 20), date(2026, 6, 1)) == 56

    def test_birthday_not_yet_reached(self):
        assert calculate_age(date(1970, 5, 20), date(2026, 5, 19)) == 55

    def test_on_birthday(self):
        assert calculate_age(date(1966, 10, 16), date(2026, 10, 16)) == 60


class TestAgeBracket:

    def test_sixty_is_senior(self):
        assert age_bracket(60) == AgeBracket.SIXTY_PLUS

    def test_fifty_nine_is_under_sixty(self):
        assert age_bracket(59) == AgeBracket.UNDER_60


class TestPriceTable:

    def test_sections_are_case_insensitive(self, table):
        assert table.get("Family", AgeBracket.UNDER_60) == Decimal("40.00")

    def test_missing_cell_is_none(self, table):
        assert table.get("FAMILY", AgeBracket.SIXTY_PLUS) is None

    def test_duplicate_cell_rejected(self):
        with pytest.raises(PricingConfigurationError, match="more than once"):
            PriceTable.from_rows([
                ("STANDARD", "UNDER_60", "25.00"),
                ("standard", "UNDER_60", "26.00"),
            ])

    def test_unknown_bracket_rejected(self):
        with pytest.raises(PricingConfigurationError, match="unknown age bracket"):
            PriceTable.from_rows([("STANDARD", "OVER_90", "25.00")])

    @pytest.mark.parametrize("price", ["0", "-5.00", "abc"])
    def test_bad_price_rejected(self, price):
        with pytest.raises(PricingConfigurationError):
            PriceTable.from_rows([("STANDARD", "UNDER_60", price)])

    def test_built_from_plan(self, plan):
        table = PriceTable.for_plan(plan)
        assert len(table) == 2
        assert table.get("STANDARD", AgeBracket.SIXTY_PLUS) == Decimal("30.00")


class TestResolveMonthlyPrice:

    def test_under_sixty(self, table):
        assert resolve_monthly_price("STANDARD", table, 45) == Decimal("25.00")

    def test_boundary_age_uses_senior_price(self, table):
        assert resolve_monthly_price("STANDARD", table, 60) == Decimal("30.00")

    def test_product_without_section(self, table):
        with pytest.raises(PricingConfigurationError):
            resolve_monthly_price(None, table, 45)

    def test_unconfigured_cell(self, table):
        with pytest.raises(PricingConfigurationError, match="FAMILY/SIXTY_PLUS"):
            resolve_monthly_price("FAMILY", table, 70)
