"""
Pricing Resolver — Monthly installment price from a plan's price table.
"""
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple

from cemetery.exceptions import PricingConfigurationError
from cemetery.models.catalog import AgeBracket, YearPlan

SENIOR_AGE = 60

PriceKey = Tuple[str, AgeBracket]


def calculate_age(date_of_birth: date, today: date) -> int:
    """Whole years elapsed, counting a birthday only once its month/day is reached."""
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def age_bracket(age: int) -> AgeBracket:
    """60 and over falls into the senior bracket."""
    return AgeBracket.SIXTY_PLUS if age >= SENIOR_AGE else AgeBracket.UNDER_60


class PriceTable:
    """Validated (pricing section, age bracket) → monthly price lookup for one plan."""

    def __init__(self, prices: Dict[PriceKey, Decimal], plan_name: str = ""):
        self._prices = dict(prices)
        self.plan_name = plan_name

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[str, str, object]], plan_name: str = "") -> "PriceTable":
        """Build a table from (section, bracket, price) triples, rejecting bad cells.

        Raises:
            PricingConfigurationError: unknown bracket, duplicate cell, or a
                price that is not a positive decimal.
        """
        prices: Dict[PriceKey, Decimal] = {}
        for section, bracket, price in rows:
            if not section:
                raise PricingConfigurationError(f"Plan '{plan_name}' has a price with no pricing section")
            try:
                bracket_key = AgeBracket(bracket)
            except ValueError:
                raise PricingConfigurationError(f"Plan '{plan_name}' has unknown age bracket '{bracket}'")
            key = (section.upper(), bracket_key)
            if key in prices:
                raise PricingConfigurationError(
                    f"Plan '{plan_name}' defines {key[0]}/{key[1].value} more than once"
                )
            try:
                amount = Decimal(str(price))
            except (InvalidOperation, ValueError):
                raise PricingConfigurationError(f"Plan '{plan_name}' has a non-numeric price for {key[0]}")
            if not amount.is_finite() or amount <= 0:
                raise PricingConfigurationError(
                    f"Plan '{plan_name}' has a non-positive price for {key[0]}/{key[1].value}"
                )
            prices[key] = amount
        return cls(prices, plan_name)

    @classmethod
    def for_plan(cls, plan: YearPlan) -> "PriceTable":
        rows = [(p.pricing_section, p.age_bracket, p.monthly_price) for p in plan.prices]
        return cls.from_rows(rows, plan.name)

    def get(self, section: str, bracket: AgeBracket) -> Optional[Decimal]:
        return self._prices.get((section.upper(), bracket))

    def __len__(self) -> int:
        return len(self._prices)


def resolve_monthly_price(pricing_section: Optional[str], table: PriceTable, age: int) -> Decimal:
    """Resolve the monthly price for a product section and payer age.

    Raises:
        PricingConfigurationError: the product has no pricing section or the
            plan has no price for the resolved cell.
    """
    if not pricing_section:
        raise PricingConfigurationError("Product does not use installment pricing")

    bracket = age_bracket(age)
    price = table.get(pricing_section, bracket)
    if price is None:
        raise PricingConfigurationError(
            f"Price not configured for {pricing_section.upper()}/{bracket.value}"
            + (f" on plan '{table.plan_name}'" if table.plan_name else "")
        )
    return price
