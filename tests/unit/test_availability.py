"""Unit tests for SeatAvailabilityCalculator (DB-backed with SQLite)."""

from __future__ import annotations

import asyncio
import gc
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from seatsync.billing.availability import SeatAvailabilityCalculator
from seatsync.exceptions import (
    InvalidStateForReactivation,
    MembershipNotFound,
    NoAvailableSeats,
    OrganizationNotFound,
)
from seatsync.models.database import Invitation
from seatsync.types import (
    BillingType,
    InvitationStatus,
    MembershipStatus,
    ReservationKind,
    SubscriptionStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


def _invites(now, *emails: str) -> list[Invitation]:
    return [
        Invitation(
            org_id="org-1",
            email=email,
            status=InvitationStatus.PENDING,
            token=f"tok-{email}",
            expires_at=now + timedelta(days=7),
        )
        for email in emails
    ]


@pytest.mark.unit
class TestCompute:
    async def test_free_tier_empty_org(self, async_engine: AsyncEngine, seed, clock) -> None:
        await seed.org()
        seats = await SeatAvailabilityCalculator(async_engine, clock=clock).compute("org-1")
        assert seats.total_seats == 3
        assert seats.total_occupied == 0
        assert seats.available_seats == 3

    async def test_counts_every_occupied_state(
        self, async_engine: AsyncEngine, seed, clock, now
    ) -> None:
        await seed.org()
        await seed.subscription(current_seats=5)
        await seed.members(4)
        await seed.members(1, status=MembershipStatus.PENDING_REMOVAL)
        await seed.members(2, status=MembershipStatus.ARCHIVED)
        await seed.invitation("new@example.com")

        seats = await SeatAvailabilityCalculator(async_engine, clock=clock).compute("org-1")

        assert seats.active_members == 4
        assert seats.pending_removal_members == 1
        assert seats.archived_members == 2
        assert seats.pending_invitations == 1
        assert seats.total_occupied == 6
        assert seats.total_seats == 8
        assert seats.available_seats == 2

    async def test_expired_and_closed_invitations_do_not_occupy(
        self, async_engine: AsyncEngine, seed, clock, now
    ) -> None:
        await seed.org()
        await seed.invitation("late@example.com", expires_at=now - timedelta(minutes=1))
        await seed.invitation("done@example.com", status=InvitationStatus.ACCEPTED)
        await seed.invitation("gone@example.com", status=InvitationStatus.CANCELLED)

        seats = await SeatAvailabilityCalculator(async_engine, clock=clock).compute("org-1")
        assert seats.pending_invitations == 0

    async def test_non_live_subscription_grants_no_paid_seats(
        self, async_engine: AsyncEngine, seed, clock
    ) -> None:
        await seed.org()
        await seed.subscription(current_seats=10, status=SubscriptionStatus.CANCELLED)
        seats = await SeatAvailabilityCalculator(async_engine, clock=clock).compute("org-1")
        assert seats.total_seats == 3

    async def test_billing_override(self, async_engine: AsyncEngine, seed, clock, now) -> None:
        await seed.org(override_seats=25, override_expires_at=now + timedelta(days=30))
        seats = await SeatAvailabilityCalculator(async_engine, clock=clock).compute("org-1")
        assert seats.total_seats == 25
        assert seats.entitlement.override_active is True

    async def test_other_orgs_are_not_counted(
        self, async_engine: AsyncEngine, seed, clock
    ) -> None:
        await seed.org()
        await seed.org("org-2")
        await seed.members(3, org_id="org-2", prefix="other")
        seats = await SeatAvailabilityCalculator(async_engine, clock=clock).compute("org-1")
        assert seats.total_occupied == 0

    async def test_unknown_org(self, async_engine: AsyncEngine, clock) -> None:
        with pytest.raises(OrganizationNotFound):
            await SeatAvailabilityCalculator(async_engine, clock=clock).compute("missing")

    async def test_require_raises_when_full(
        self, async_engine: AsyncEngine, seed, clock
    ) -> None:
        await seed.org()
        await seed.members(3)
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)
        with pytest.raises(NoAvailableSeats) as exc_info:
            await calculator.require("org-1")
        assert exc_info.value.seats_available == 0
        assert exc_info.value.detail()["upgrade_required"] is True


@pytest.mark.unit
class TestReserveInvitations:
    async def test_batch_that_fits_is_written(
        self, async_engine: AsyncEngine, seed, clock, now
    ) -> None:
        await seed.org()
        await seed.subscription(billing_type=BillingType.QUANTITY_BASED, current_seats=5)
        await seed.members(5)
        await seed.invitation("first@example.com")
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)

        await calculator.reserve(
            "org-1", ReservationKind.INVITATION, invitations=_invites(now, "a@example.com")
        )

        seats = await calculator.compute("org-1")
        assert seats.pending_invitations == 2
        assert seats.available_seats == 1

    async def test_batch_larger_than_availability_writes_nothing(
        self, async_engine: AsyncEngine, seed, clock, now
    ) -> None:
        await seed.org()
        await seed.members(2)
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)

        with pytest.raises(NoAvailableSeats) as exc_info:
            await calculator.reserve(
                "org-1",
                ReservationKind.INVITATION,
                invitations=_invites(now, "a@example.com", "b@example.com"),
            )

        assert exc_info.value.seats_required == 2
        assert exc_info.value.seats_available == 1
        assert (await calculator.compute("org-1")).pending_invitations == 0

    async def test_concurrent_reservations_never_oversubscribe(
        self, async_engine: AsyncEngine, seed, clock, now
    ) -> None:
        await seed.org()
        await seed.members(1)
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)

        results = await asyncio.gather(
            *(
                calculator.reserve(
                    "org-1",
                    ReservationKind.INVITATION,
                    invitations=_invites(now, f"u{i}@example.com"),
                )
                for i in range(5)
            ),
            return_exceptions=True,
        )

        rejected = [r for r in results if isinstance(r, NoAvailableSeats)]
        assert len(rejected) == 3
        seats = await calculator.compute("org-1")
        assert seats.total_occupied == seats.total_seats == 3

    async def test_idle_org_locks_are_released(
        self, async_engine: AsyncEngine, seed, clock, now
    ) -> None:
        await seed.org("org-1")
        await seed.org("org-2")
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)

        await asyncio.gather(
            calculator.reserve(
                "org-1", ReservationKind.INVITATION, invitations=_invites(now, "a@example.com")
            ),
            calculator.reserve(
                "org-1", ReservationKind.INVITATION, invitations=_invites(now, "b@example.com")
            ),
        )
        other = _invites(now, "c@example.com")
        other[0].org_id = "org-2"
        await calculator.reserve("org-2", ReservationKind.INVITATION, invitations=other)
        gc.collect()

        assert len(calculator._locks) == 0
        assert (await calculator.compute("org-1")).pending_invitations == 2


@pytest.mark.unit
class TestReserveReactivation:
    async def test_archived_user_reactivated_when_seat_free(
        self, async_engine: AsyncEngine, seed, clock
    ) -> None:
        await seed.org()
        await seed.member("back", status=MembershipStatus.ARCHIVED)
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)

        membership = await calculator.reserve(
            "org-1", ReservationKind.REACTIVATION, user_id="back"
        )

        assert membership.status == MembershipStatus.ACTIVE
        assert (await calculator.compute("org-1")).active_members == 1

    async def test_zero_availability_leaves_user_archived(
        self, async_engine: AsyncEngine, seed, clock
    ) -> None:
        await seed.org()
        await seed.members(3)
        await seed.member("back", status=MembershipStatus.ARCHIVED)
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)

        with pytest.raises(NoAvailableSeats):
            await calculator.reserve("org-1", ReservationKind.REACTIVATION, user_id="back")

        membership = await seed.get_membership("back")
        assert membership.status == MembershipStatus.ARCHIVED

    async def test_non_archived_user_rejected(
        self, async_engine: AsyncEngine, seed, clock
    ) -> None:
        await seed.org()
        await seed.member("here")
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)
        with pytest.raises(InvalidStateForReactivation):
            await calculator.reserve("org-1", ReservationKind.REACTIVATION, user_id="here")

    async def test_unknown_user(self, async_engine: AsyncEngine, seed, clock) -> None:
        await seed.org()
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)
        with pytest.raises(MembershipNotFound):
            await calculator.reserve("org-1", ReservationKind.REACTIVATION, user_id="ghost")

    async def test_user_id_required(self, async_engine: AsyncEngine, seed, clock) -> None:
        await seed.org()
        calculator = SeatAvailabilityCalculator(async_engine, clock=clock)
        with pytest.raises(ValueError, match="user_id is required"):
            await calculator.reserve("org-1", ReservationKind.REACTIVATION)
