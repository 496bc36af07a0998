"""
Pricing Calculator - booking price breakdown
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from travelagent.config import settings
from travelagent.exceptions import InvalidInputError

CENTS = Decimal("0.01")
TAX_RATE = Decimal(str(settings.TAX_RATE))

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class PriceBreakdown:
    base_price: Decimal
    travelers: int
    subtotal: Decimal
    taxes: Decimal
    total: Decimal


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.15 do not carry binary noise
    return Decimal(str(value))


def calculate_price(base_price: Number, travelers: int, tax_rate: Number = TAX_RATE) -> PriceBreakdown:
    """
    subtotal = base_price x travelers, taxes = subtotal x tax_rate (rounded
    half-up to cents), total = subtotal + taxes.

    Raises InvalidInputError for a negative price or fewer than one traveler.
    """
    if isinstance(travelers, bool) or not isinstance(travelers, int) or travelers < 1:
        raise InvalidInputError(f"travelers must be an integer >= 1, got {travelers!r}")

    price = to_decimal(base_price)
    if not price.is_finite() or price < 0:
        raise InvalidInputError(f"base price must be >= 0, got {base_price!r}")

    subtotal = (price * travelers).quantize(CENTS, rounding=ROUND_HALF_UP)
    taxes = (subtotal * to_decimal(tax_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return PriceBreakdown(
        base_price=price,
        travelers=travelers,
        subtotal=subtotal,
        taxes=taxes,
        total=subtotal + taxes,
    )


def resolve_base_price(destination, package: Optional[object] = None) -> Decimal:
    """Package price when a package is selected, else the destination's from-price"""
    if package is not None:
        return to_decimal(package.price)
    return to_decimal(destination.price_from)


def format_currency(amount: Number, currency: str = "usd") -> str:
    symbols = {"usd": "$", "eur": "€", "gbp": "£"}
    value = to_decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
    symbol = symbols.get(currency.lower())
    if symbol:
        return f"{symbol}{value:,.2f}"
    return f"{value:,.2f} {currency.upper()}"
