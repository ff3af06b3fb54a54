from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_money(value) -> float:
    """Round to 2 decimals, half up, and return the float stored in Mongo."""
    return float(quantize(value))


def percent_of(amount, percent) -> Decimal:
    return quantize(to_decimal(amount) * to_decimal(percent) / Decimal("100"))


def sum_money(values) -> float:
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return round_money(total)
