"""Enums and type aliases for SeatSync."""

from enum import StrEnum


class BillingType(StrEnum):
    USAGE_BASED = "usage_based"
    QUANTITY_BASED = "quantity_based"


class BillingPeriod(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    ON_TRIAL = "on_trial"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    EXPIRED = "expired"


# Statuses that make a subscription the organization's live one
LIVE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.ON_TRIAL)


class MembershipStatus(StrEnum):
    ACTIVE = "active"
    PENDING_REMOVAL = "pending_removal"
    ARCHIVED = "archived"
    INVITED = "invited"


# Membership statuses that occupy a seat
SEATED_MEMBERSHIP_STATUSES = (MembershipStatus.ACTIVE, MembershipStatus.PENDING_REMOVAL)


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


class Role(StrEnum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class ChargedAt(StrEnum):
    IMMEDIATELY = "immediately"
    END_OF_PERIOD = "end_of_period"


class ReservationKind(StrEnum):
    INVITATION = "invitation"
    REACTIVATION = "reactivation"


class BillingEventStatus(StrEnum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"
