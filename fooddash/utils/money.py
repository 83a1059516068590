from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce a price-like value to a 2dp Decimal (half-up)."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError("money value must be numeric")
    try:
        return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"invalid money value: {value!r}") from exc


def to_rate(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"invalid rate: {value!r}") from exc


def format_amount(value) -> str:
    """Two-decimal string, as the payment processor expects it."""
    return f"{to_money(value):.2f}"
