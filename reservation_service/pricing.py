"""
Price quotes for a stay.

The quote is persisted as the reservation's price snapshot, so it must be
deterministic: all arithmetic happens in Decimal and every currency amount is
rounded half-up to cents.
"""
import datetime
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from . import errors

# Flat lodging tax on (subtotal + cleaning fee)
TAX_RATE = Decimal("0.135")

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    """
    Converts an int/float/str/Decimal to a Decimal rounded half-up to cents.
    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        amount = Decimal(value)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Quote:
    nights: int
    nightly_rate: Decimal
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    tax: Decimal
    total: Decimal


def count_nights(check_in: datetime.date, check_out: datetime.date) -> int:
    """Number of nights in [check_in, check_out), rounded up to whole nights."""
    span = check_out - check_in
    return math.ceil(span.total_seconds() / 86400)


def quote(
    nightly_rate,
    check_in: datetime.date,
    check_out: datetime.date,
    cleaning_fee=Decimal("199"),
    service_fee=Decimal("0"),
) -> Quote:
    nights = count_nights(check_in, check_out)
    if nights <= 0:
        raise errors.ValidationError("Check-out date must be after check-in date.")

    rate = to_money(nightly_rate)
    if rate <= 0:
        raise errors.ValidationError("Nightly rate must be greater than zero.")
    cleaning = to_money(cleaning_fee)
    service = to_money(service_fee)

    subtotal = to_money(rate * nights)
    tax = to_money((subtotal + cleaning) * TAX_RATE)
    total = subtotal + cleaning + service + tax

    return Quote(
        nights=nights,
        nightly_rate=rate,
        subtotal=subtotal,
        cleaning_fee=cleaning,
        service_fee=service,
        tax=tax,
        total=total,
    )
