from decimal import Decimal, InvalidOperation

from vsend.exceptions import InvalidAmountError

TWO_PLACES = Decimal("0.01")
# Numeric(20, 2) leaves 18 integer digits
MAX_AMOUNT = Decimal(10) ** 18


def parse_amount(value) -> Decimal:
    """
    Converts a caller supplied amount into a 2dp Decimal.

    Rejects non-numeric input, non-positive values and anything with more
    than two fractional digits (10.005 is refused, 10.010 is accepted).
    Floats are converted through their shortest repr so 0.1 stays 0.1.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError()
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError()

    if not amount.is_finite() or amount <= 0 or amount >= MAX_AMOUNT:
        raise InvalidAmountError()
    if amount.normalize().as_tuple().exponent < -2:
        raise InvalidAmountError()
    return amount.quantize(TWO_PLACES)


def to_minor_units(amount: Decimal) -> int:
    # pesewas / kobo
    return int((amount * 100).to_integral_value())


def from_minor_units(value) -> Decimal:
    return (Decimal(value) / 100).quantize(TWO_PLACES)
