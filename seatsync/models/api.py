"""API request/response schemas for FastAPI endpoints and service results."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from seatsync.types import BillingType, ChargedAt, Role


class SeatInfoResponse(BaseModel):
    org_id: str
    active_seats: int
    active_members: int
    pending_removal_members: int
    archived_members: int
    pending_invitations: int
    total_occupied: int
    free_seats: int
    paid_seats: int
    total_seats: int
    available_seats: int
    override_active: bool


class SeatChangeRequest(BaseModel):
    new_quantity: int = Field(ge=0)


class SeatChangeResult(BaseModel):
    subscription_id: str
    billing_type: BillingType
    charged_at: ChargedAt
    previous_seats: int
    current_seats: int
    proration_amount: Decimal | None = None
    days_remaining: int | None = None
    provider_synced: bool = True
    warnings: list[str] = Field(default_factory=list)


class ProrationPreview(BaseModel):
    subscription_id: str
    billing_type: BillingType
    current_seats: int
    new_quantity: int
    seats_added: int = 0
    days_remaining: int = 0
    total_days: int = 365
    proration_amount: Decimal = Decimal("0.00")
    message: str


class MembershipResult(BaseModel):
    org_id: str
    user_id: str
    status: str
    removal_effective_date: datetime | None = None


class InvitationItem(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: Role = Role.EMPLOYEE

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            msg = "invalid email address"
            raise ValueError(msg)
        return value


class InvitationCreateRequest(BaseModel):
    invitations: list[InvitationItem] = Field(min_length=1, max_length=50)


class InvitationResponse(BaseModel):
    id: str
    org_id: str
    email: str
    role: str
    status: str
    expires_at: datetime


class InvitationAcceptRequest(BaseModel):
    token: str = Field(min_length=1)


class EventResult(BaseModel):
    """Outcome of one webhook event."""

    success: bool
    error: str | None = None
    data: dict[str, Any] | None = None


class SubscriptionDrift(BaseModel):
    subscription_id: str
    provider_subscription_id: str
    org_id: str
    field: str
    ledger_value: Any
    provider_value: Any


class ReconciliationFailure(BaseModel):
    subscription_id: str
    provider_subscription_id: str
    org_id: str
    error: str


class ReconciliationReport(BaseModel):
    """Outcome of one provider-vs-ledger comparison run."""

    checked: int = 0
    matches: int = 0
    mismatches: list[SubscriptionDrift] = Field(default_factory=list)
    errors: list[ReconciliationFailure] = Field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.mismatches and not self.errors
