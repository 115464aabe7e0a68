"""Exception hierarchy for SeatSync."""

from __future__ import annotations

from typing import Any


class SeatSyncError(Exception):
    """Base exception for all SeatSync errors.

    Every error carries a stable ``code`` and a ``context`` dict with the ids
    and current/requested values needed to render an actionable message.
    """

    code = "seatsync_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def detail(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.context}


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


class AdmissionError(SeatSyncError):
    """Raised when a request would exceed the organization's seats."""


class NoAvailableSeats(AdmissionError):
    code = "no_available_seats"

    def __init__(self, seats_available: int, seats_required: int, total_seats: int) -> None:
        super().__init__(
            f"Not enough seats available. {seats_available} available, "
            f"{seats_required} required.",
            seats_available=seats_available,
            seats_required=seats_required,
            total_seats=total_seats,
            upgrade_required=True,
        )
        self.seats_available = seats_available
        self.seats_required = seats_required
        self.total_seats = total_seats


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(SeatSyncError):
    """Raised when the requester may not perform the action."""


class NotAdmin(AuthorizationError):
    code = "not_admin"

    def __init__(self, requester_id: str, org_id: str, action: str = "manage users") -> None:
        super().__init__(
            f"Only admins can {action}",
            requester_id=requester_id,
            org_id=org_id,
        )


class SelfRemovalForbidden(AuthorizationError):
    code = "self_removal_forbidden"

    def __init__(self, user_id: str) -> None:
        super().__init__("Cannot remove your own account", user_id=user_id)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class StateError(SeatSyncError):
    """Raised on an invalid lifecycle transition."""


class InvalidStateForRemoval(StateError):
    code = "invalid_state_for_removal"

    def __init__(self, user_id: str, current_status: str) -> None:
        super().__init__(
            f"User is already {current_status}",
            user_id=user_id,
            current_status=current_status,
        )
        self.current_status = current_status


class InvalidStateForReactivation(StateError):
    code = "invalid_state_for_reactivation"

    def __init__(self, user_id: str, current_status: str, expected_status: str) -> None:
        super().__init__(
            f"Cannot reactivate user with status: {current_status}",
            user_id=user_id,
            current_status=current_status,
            expected_status=expected_status,
        )
        self.current_status = current_status


class InvalidInvitationState(StateError):
    code = "invalid_invitation_state"

    def __init__(self, invitation_id: str, current_status: str) -> None:
        super().__init__(
            f"Invitation is {current_status}",
            invitation_id=invitation_id,
            current_status=current_status,
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(SeatSyncError):
    """Raised when a request is malformed."""


class DirectionMismatch(ValidationError):
    code = "direction_mismatch"

    def __init__(self, message: str, current_seats: int, new_quantity: int) -> None:
        super().__init__(message, current_seats=current_seats, new_quantity=new_quantity)


class InvalidSeatQuantity(ValidationError):
    code = "invalid_seat_quantity"

    def __init__(self, new_quantity: int) -> None:
        super().__init__("Seat quantity cannot be negative", new_quantity=new_quantity)


class DuplicateEmails(ValidationError):
    code = "duplicate_emails"

    def __init__(self, emails: list[str]) -> None:
        super().__init__("Duplicate emails in request", emails=emails)


class AlreadyMember(ValidationError):
    code = "already_member"

    def __init__(self, emails: list[str]) -> None:
        super().__init__("Some users are already members", emails=emails)


class AlreadyInvited(ValidationError):
    code = "already_invited"

    def __init__(self, emails: list[str]) -> None:
        super().__init__("Some users already have pending invitations", emails=emails)


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(SeatSyncError):
    """Raised when a referenced row does not exist."""


class SubscriptionNotFound(NotFoundError):
    code = "subscription_not_found"

    def __init__(self, **context: Any) -> None:
        super().__init__("No active subscription found", **context)


class MembershipNotFound(NotFoundError):
    code = "membership_not_found"

    def __init__(self, user_id: str, org_id: str) -> None:
        super().__init__(
            "User not found in organization",
            user_id=user_id,
            org_id=org_id,
        )


class OrganizationNotFound(NotFoundError):
    code = "organization_not_found"

    def __init__(self, org_id: str) -> None:
        super().__init__("Organization not found", org_id=org_id)


class InvitationNotFound(NotFoundError):
    code = "invitation_not_found"

    def __init__(self, **context: Any) -> None:
        super().__init__("Invitation not found", **context)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(SeatSyncError):
    """Raised when billing setup is incomplete. Fatal, never retried."""


class UnknownBillingType(ConfigurationError):
    code = "unknown_billing_type"

    def __init__(self, billing_type: str, subscription_id: str) -> None:
        super().__init__(
            f"Unknown billing type: {billing_type}",
            billing_type=billing_type,
            subscription_id=subscription_id,
        )


class UnknownVariant(ConfigurationError):
    code = "unknown_variant"

    def __init__(self, variant_id: str, monthly_variant_id: str, yearly_variant_id: str) -> None:
        super().__init__(
            f"Unknown variant ID: {variant_id}. Expected {monthly_variant_id} (monthly) "
            f"or {yearly_variant_id} (yearly)",
            variant_id=variant_id,
        )
        self.variant_id = variant_id


class MissingSubscriptionItem(ConfigurationError):
    code = "missing_subscription_item"

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            "Subscription has no provider subscription item",
            subscription_id=subscription_id,
        )


class MissingProviderSubscription(ConfigurationError):
    code = "missing_provider_subscription"

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            "Subscription has no provider subscription id",
            subscription_id=subscription_id,
        )


class MissingRenewalDate(ConfigurationError):
    code = "missing_renewal_date"

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            "Subscription renewal date not available",
            subscription_id=subscription_id,
        )


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class ProviderError(SeatSyncError):
    """Raised when the billing provider rejects a call."""

    code = "provider_error"
    retryable = False

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message, status_code=status_code, provider_body=body)
        self.status_code = status_code
        self.body = body


class ProviderTimeout(ProviderError):
    """Raised when the billing provider does not answer in time."""

    code = "provider_timeout"
    retryable = True

    def __init__(self, message: str = "Billing provider request timed out") -> None:
        super().__init__(message)
        self.context["retryable"] = True


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimitExceeded(SeatSyncError):
    code = "rate_limit_exceeded"

    def __init__(self, key: str, retry_after: int) -> None:
        super().__init__(
            "Rate limit exceeded. Try again later.",
            key=key,
            retry_after=retry_after,
        )
        self.retry_after = retry_after
