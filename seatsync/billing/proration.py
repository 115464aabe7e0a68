"""Proration math for quantity-based (yearly) subscriptions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

# Fixed annual period; leap years and mid-term plan switches are not modelled
DAYS_PER_YEAR = 365
_CENTS = Decimal("0.01")
_SECONDS_PER_DAY = 86400


@dataclass(frozen=True, slots=True)
class Proration:
    """Result of a proration preview."""

    current_seats: int
    new_quantity: int
    seats_added: int
    days_remaining: int
    total_days: int
    amount: Decimal
    message: str


def days_remaining(renews_at: datetime, now: datetime) -> int:
    """Whole days until renewal, rounded up and never negative."""
    seconds = (renews_at - now).total_seconds()
    return max(0, math.ceil(seconds / _SECONDS_PER_DAY))


def prorate(
    current_seats: int,
    new_quantity: int,
    days_left: int,
    yearly_price_per_seat: Decimal,
    total_days: int = DAYS_PER_YEAR,
) -> Proration:
    """Charge for seats added now, for the remainder of the year.

    Decreases and no-ops are never charged or refunded immediately.
    """
    if new_quantity <= current_seats:
        return Proration(
            current_seats=current_seats,
            new_quantity=new_quantity,
            seats_added=0,
            days_remaining=days_left,
            total_days=total_days,
            amount=Decimal("0.00"),
            message="No immediate charge. Credit will be applied at next renewal.",
        )

    seats_added = new_quantity - current_seats
    raw = Decimal(seats_added) * Decimal(yearly_price_per_seat) * days_left / total_days
    amount = raw.quantize(_CENTS, rounding=ROUND_HALF_UP)
    return Proration(
        current_seats=current_seats,
        new_quantity=new_quantity,
        seats_added=seats_added,
        days_remaining=days_left,
        total_days=total_days,
        amount=amount,
        message=f"Prorated charge for {seats_added} seat(s) over {days_left} day(s).",
    )
