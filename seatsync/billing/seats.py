"""Seat entitlement math."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from seatsync.config.settings import FREE_SEATS

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class SeatEntitlement:
    """Seats an organization may occupy."""

    free_seats: int
    paid_seats: int
    total_seats: int
    override_active: bool


@dataclass(frozen=True, slots=True)
class SeatAvailability:
    """Occupancy snapshot for one organization."""

    org_id: str
    active_members: int
    pending_removal_members: int
    archived_members: int
    pending_invitations: int
    entitlement: SeatEntitlement

    @property
    def active_seats(self) -> int:
        return self.active_members + self.pending_removal_members

    @property
    def total_occupied(self) -> int:
        return self.active_seats + self.pending_invitations

    @property
    def total_seats(self) -> int:
        return self.entitlement.total_seats

    @property
    def available_seats(self) -> int:
        return max(0, self.total_seats - self.total_occupied)

    def fits(self, seats_required: int) -> bool:
        return seats_required <= self.available_seats


def compute_entitlement(
    current_seats: int,
    override_seats: int | None,
    override_expires_at: datetime | None,
    now: datetime,
    free_seats: int = FREE_SEATS,
) -> SeatEntitlement:
    """Free tier plus paid seats, raised to an unexpired billing override."""
    base = free_seats + max(0, current_seats)
    override_active = (
        override_seats is not None
        and override_expires_at is not None
        and override_expires_at > now
    )
    total = max(base, override_seats) if override_active and override_seats else base
    return SeatEntitlement(
        free_seats=free_seats,
        paid_seats=max(0, current_seats),
        total_seats=total,
        override_active=override_active,
    )


def billable_usage_quantity(user_count: int, free_seats: int = FREE_SEATS) -> int:
    """Quantity reported on an initial usage record; free-tier counts bill nothing."""
    return user_count if user_count > free_seats else 0
