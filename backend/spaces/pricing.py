from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceQuote:
    total_days: int
    base_price: Decimal
    fees: Decimal
    total_price: Decimal
    currency: str
    rate_model: str


def quantize_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount (e.g. ``12.50``) to processor minor units (``1250``)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return quantize_amount(Decimal(amount_minor) / 100)


def count_days(start_date: date, end_date: date) -> int:
    """Inclusive calendar-day span: a same-day booking counts as one day."""
    return (end_date - start_date).days + 1


def hours_per_day(start_time: time, end_time: time) -> int:
    """Started hours between the daily start and end time; the end must come after the start."""
    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, end_time) - datetime.combine(anchor, start_time)
    if delta.total_seconds() <= 0:
        raise ValueError(f"end_time {end_time} is not after start_time {start_time}")
    return math.ceil(delta.total_seconds() / 3600)


def quote_price(
    space,
    start_date: date,
    end_date: date,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    *,
    fee_percent: Decimal | float | int = 0,
) -> PriceQuote:
    """
    Price a booking window for ``space``.

    The daily model charges ``price_per_day`` for every calendar day touched.
    Spaces with an hourly rate charge it per started hour of each booked day,
    but only when the booking carries times; untimed bookings block whole days
    and fall back to the daily rate.
    """
    total_days = count_days(start_date, end_date)
    if space.uses_hourly_rate and start_time is not None and end_time is not None:
        base = Decimal(space.price_per_hour) * hours_per_day(start_time, end_time) * total_days
        rate_model = "hourly"
    else:
        base = Decimal(space.price_per_day) * total_days
        rate_model = "daily"

    base = quantize_amount(base)
    fees = quantize_amount(base * Decimal(str(fee_percent)) / 100)
    return PriceQuote(
        total_days=total_days,
        base_price=base,
        fees=fees,
        total_price=quantize_amount(base + fees),
        currency=space.currency,
        rate_model=rate_model,
    )
