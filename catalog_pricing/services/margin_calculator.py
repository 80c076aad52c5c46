"""
Margin Calculator.

Derives the sellable price of a variant:

    calculated_price = round2(cost * (1 + margin_percent / 100))
    final_price      = round2(calculated_price * (1 - discount_percent / 100))   if offer active
                     = calculated_price                                        otherwise

Rounding is ROUND_HALF_UP to two places and happens once per derivation
step: the final price is derived from the already-rounded calculated price.
Margin and discount percentages are rounded to two places on entry, the
precision they are stored with, so stored inputs always reproduce the
stored prices.

The module exposes the same formulas twice: as pure Python functions over
Decimal (single-variant writes, previews, tests) and as SQLAlchemy column
expressions (set-based UPDATE statements), so both paths agree.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

from sqlalchemy import Numeric, and_, case, func, literal
from sqlalchemy.sql.elements import ColumnElement

from catalog_pricing.core.exceptions import PricingValidationError


TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")
ONE = Decimal("1")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number, field: str = "value") -> Decimal:
    """Convert input to Decimal without going through binary float repr."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise PricingValidationError(f"{field} is not a number: {value!r}")


def round2(value: Number) -> Decimal:
    """Round half-up to two decimal places."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_percent(value: Number, field: str = "margin_percent") -> Decimal:
    """Percentages are stored with two places; derive prices from the stored value."""
    return round2(to_decimal(value, field))


def validate_cost(cost: Optional[Number]) -> Decimal:
    if cost is None:
        raise PricingValidationError("cost is required to derive a price")
    cost = to_decimal(cost, "cost")
    if cost < 0:
        raise PricingValidationError(f"cost must not be negative: {cost}")
    return cost


def validate_discount(discount_percent: Optional[Number]) -> Optional[Decimal]:
    if discount_percent is None:
        return None
    discount = to_percent(discount_percent, "discount_percent")
    if discount < 0 or discount > HUNDRED:
        raise PricingValidationError(f"discount_percent must be between 0 and 100: {discount}")
    return discount


def margin_factor(margin_percent: Number) -> Decimal:
    return ONE + to_percent(margin_percent, "margin_percent") / HUNDRED


def discount_factor(discount_percent: Number) -> Decimal:
    return ONE - to_percent(discount_percent, "discount_percent") / HUNDRED


def calculate_price(cost: Optional[Number], margin_percent: Number) -> Decimal:
    """cost x (1 + margin/100), rounded."""
    cost = validate_cost(cost)
    return round2(cost * margin_factor(margin_percent))


def apply_discount(calculated_price: Number, discount_percent: Number) -> Decimal:
    """calculated x (1 - discount/100), rounded."""
    discount = validate_discount(discount_percent)
    return round2(to_decimal(calculated_price) * discount_factor(discount))


def final_price(
    calculated_price: Number,
    is_offer_active: bool,
    discount_percent: Optional[Number],
) -> Decimal:
    """Final selling price; an active offer without a discount leaves the price unchanged."""
    if is_offer_active and discount_percent is not None:
        return apply_discount(calculated_price, discount_percent)
    return round2(calculated_price)


@dataclass(frozen=True)
class PriceBreakdown:
    """Derived prices for one variant."""
    cost: Decimal
    margin_percent: Decimal
    calculated_price: Decimal
    is_offer_active: bool
    offer_discount_percent: Optional[Decimal]
    final_price: Decimal

    def to_dict(self) -> dict:
        return {
            "cost": self.cost,
            "margin_percent": self.margin_percent,
            "calculated_price": self.calculated_price,
            "is_offer_active": self.is_offer_active,
            "offer_discount_percent": self.offer_discount_percent,
            "final_price": self.final_price,
        }


def price_variant(
    cost: Optional[Number],
    margin_percent: Number,
    is_offer_active: bool = False,
    offer_discount_percent: Optional[Number] = None,
) -> PriceBreakdown:
    """Full derivation for one variant from its stored inputs."""
    cost = validate_cost(cost)
    margin = to_percent(margin_percent, "margin_percent")
    discount = validate_discount(offer_discount_percent)
    calculated = calculate_price(cost, margin)
    return PriceBreakdown(
        cost=cost,
        margin_percent=margin,
        calculated_price=calculated,
        is_offer_active=bool(is_offer_active),
        offer_discount_percent=discount,
        final_price=final_price(calculated, is_offer_active, discount),
    )


# ==================== SQL EXPRESSIONS ====================
#
# Factors are computed in Python and bound as Numeric parameters. Dividing a
# column by a literal in SQL would be integer division on SQLite when the
# column holds a whole number.

PRICE_TYPE = Numeric(12, 2)
FACTOR_TYPE = Numeric(18, 8)


def _factor(value: Decimal) -> ColumnElement:
    return literal(value, FACTOR_TYPE)


def sql_round2(expr: ColumnElement) -> ColumnElement:
    return func.round(expr, 2, type_=PRICE_TYPE)


def calculated_price_expr(cost_col: ColumnElement, margin_percent: Number) -> ColumnElement:
    """SQL: ROUND(cost * :factor, 2)."""
    return sql_round2(cost_col * _factor(margin_factor(margin_percent)))


def discounted_price_expr(calculated_expr: ColumnElement, discount_percent: Number) -> ColumnElement:
    """SQL: ROUND(calculated * :factor, 2) for a known discount."""
    discount = validate_discount(discount_percent)
    return sql_round2(calculated_expr * _factor(discount_factor(discount)))


def final_price_expr(
    calculated_expr: ColumnElement,
    is_offer_col: ColumnElement,
    discount_col: ColumnElement,
) -> ColumnElement:
    """SQL CASE applying the row's own offer discount, if active."""
    return case(
        (
            and_(is_offer_col.is_(True), discount_col.isnot(None)),
            sql_round2(calculated_expr * (_factor(ONE) - discount_col * _factor(TWO_PLACES))),
        ),
        else_=calculated_expr,
    )
