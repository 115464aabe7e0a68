"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    # Time-bounded upward override of the seat entitlement
    billing_override_seats: int | None = None
    billing_override_expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class User(SQLModel, table=True):
    __tablename__ = "users"

    # Same id as the auth provider's user (token ``sub``)
    id: str = Field(default_factory=_new_uuid, primary_key=True)
    email: str = Field(index=True)
    name: str = ""
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class OrganizationMembership(SQLModel, table=True):
    __tablename__ = "organization_memberships"
    __table_args__ = (UniqueConstraint("org_id", "user_id", name="uq_memberships_org_user"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role: str = Field(default="employee")  # admin | manager | employee
    status: str = Field(default="active", index=True)  # active | pending_removal | archived
    removal_effective_date: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Invitation(SQLModel, table=True):
    __tablename__ = "invitations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    email: str = Field(index=True)
    role: str = Field(default="employee")
    status: str = Field(default="pending", index=True)
    token: str = Field(unique=True)
    invited_by: str | None = None
    expires_at: datetime
    accepted_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Billing models
# ---------------------------------------------------------------------------


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"
    # At most one live subscription per organization
    __table_args__ = (
        Index(
            "uq_subscriptions_live_org",
            "org_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'on_trial')"),
            sqlite_where=text("status IN ('active', 'on_trial')"),
        ),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    billing_type: str  # usage_based | quantity_based, fixed at creation
    billing_period: str | None = None  # monthly | yearly
    status: str = Field(default="active")
    current_seats: int = Field(default=0)
    quantity: int = Field(default=0)
    provider_subscription_id: str | None = Field(default=None, unique=True)
    provider_subscription_item_id: str | None = None
    provider_customer_id: str | None = None
    provider_product_id: str | None = None
    provider_variant_id: str | None = None
    renews_at: datetime | None = None
    ends_at: datetime | None = None
    trial_ends_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class BillingEvent(SQLModel, table=True):
    """One row per provider webhook delivery; also the idempotency store."""

    __tablename__ = "billing_events"

    id: int | None = Field(default=None, primary_key=True)
    provider_event_id: str = Field(unique=True)
    event_name: str = Field(index=True)
    org_id: str | None = Field(default=None, index=True)
    provider_subscription_id: str | None = None
    status: str = Field(default="processing")  # processing | processed | failed | skipped
    error_message: str | None = None
    payload_json: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    claimed_at: datetime = Field(default_factory=_utc_now)
    processed_at: datetime | None = None


class RateLimitWindow(SQLModel, table=True):
    __tablename__ = "rate_limit_windows"
    __table_args__ = (
        UniqueConstraint("key", "window_start", name="uq_rate_limit_windows_key_window"),
    )

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(index=True)
    window_start: int  # epoch seconds, aligned to the window size
    count: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
