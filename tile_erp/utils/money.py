from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")


def to_decimal(v) -> Decimal:
    if v is None or v == "":
        return ZERO
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def money(v) -> Decimal:
    return to_decimal(v).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def quantity(v) -> Decimal:
    return to_decimal(v).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)


def as_number(v):
    """JSON-friendly number for a Numeric column value (None -> 0)."""
    if v is None:
        return 0
    d = to_decimal(v)
    return int(d) if d == d.to_integral_value() else float(d)
