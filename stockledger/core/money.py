from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
MONEY_PLACES = 2

# Weighted-average cost keeps four guard digits beyond the price scale.
COST_QUANT = Decimal("0.000001")
ZERO_COST = Decimal("0.000000")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def parse_money(value: Decimal | int | float | str) -> Decimal:
    """
    Parse a caller-supplied price without rounding it.

    Raises ValueError for non-numeric or non-finite input and for values with
    more than two decimal places. The result is padded to money scale.
    """
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"{value!r} is not a number") from None
    if not parsed.is_finite():
        raise ValueError(f"{value!r} is not a finite number")
    if parsed.as_tuple().exponent < -MONEY_PLACES:
        raise ValueError(f"{value!r} has more than {MONEY_PLACES} decimal places")
    return parsed.quantize(MONEY_QUANT)


def to_cost(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(COST_QUANT, rounding=ROUND_HALF_UP)
