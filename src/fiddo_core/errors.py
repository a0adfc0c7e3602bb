"""Typed failures raised by the identity and ledger core.

Callers map the three families onto transport status codes: ``ValidationFailed``
is rejected before any write, ``NotFound`` is reported distinctly so it can
become a 404, and ``Conflict`` is raised inside the unit of work after which the
transaction is rolled back. Storage errors are never wrapped.
"""

from __future__ import annotations

from typing import Any


class LoyaltyError(RuntimeError):
    """Base exception for loyalty core failures."""

    code = "loyalty_error"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.context = context

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self), **self.context}


class ValidationFailed(LoyaltyError):
    code = "validation_failed"


class NotFound(LoyaltyError):
    code = "not_found"


class Conflict(LoyaltyError):
    code = "conflict"


# Validation


class InvalidIdentifier(ValidationFailed):
    """An email or phone number is required."""

    code = "invalid_identifier"


class InvalidAmount(ValidationFailed):
    """Amount must be strictly positive."""

    code = "invalid_amount"


class ZeroAdjustment(ValidationFailed):
    """Adjustment must change the balance."""

    code = "zero_adjustment"


class ReasonRequired(ValidationFailed):
    """A reason is required."""

    code = "reason_required"


class SpendCapExceeded(ValidationFailed):
    """Amount exceeds the limit allowed for this staff role."""

    code = "spend_cap_exceeded"


class InvalidLoyaltySettings(ValidationFailed):
    """Loyalty settings are out of range."""

    code = "invalid_loyalty_settings"


# Not found


class MerchantNotFound(NotFound):
    """Merchant not found."""

    code = "merchant_not_found"


class MerchantClientNotFound(NotFound):
    """Client not found for this merchant."""

    code = "merchant_client_not_found"


class EndUserNotFound(NotFound):
    """End user not found."""

    code = "end_user_not_found"


class VoucherNotFound(NotFound):
    """Gift voucher not found."""

    code = "voucher_not_found"


# Conflict / state


class ClientBlocked(Conflict):
    """Client is blocked."""

    code = "client_blocked"


class InsufficientBalance(Conflict):
    """Not enough points for a reward."""

    code = "insufficient_balance"


class NegativeBalance(Conflict):
    """Adjustment would leave a negative balance."""

    code = "negative_balance"


class SelfMerge(Conflict):
    """Cannot merge a client with itself."""

    code = "self_merge"


class IdempotencyKeyConflict(Conflict):
    """Idempotency key already used by a different operation."""

    code = "idempotency_key_conflict"


class PinRequired(Conflict):
    """Client has no PIN configured."""

    code = "pin_required"


class PinIncorrect(Conflict):
    """PIN does not match."""

    code = "pin_incorrect"


class NothingToGift(Conflict):
    """No points available to gift."""

    code = "nothing_to_gift"


class VoucherAlreadyClaimed(Conflict):
    """Gift voucher has already been claimed."""

    code = "voucher_already_claimed"


class VoucherExpired(Conflict):
    """Gift voucher has expired."""

    code = "voucher_expired"


class SelfClaim(Conflict):
    """Cannot claim your own gift voucher."""

    code = "self_claim"


class GiftsDisabled(Conflict):
    """This merchant does not accept point gifts."""

    code = "gifts_disabled"


class MerchantAlreadyRegistered(Conflict):
    """A merchant with this VAT number already exists."""

    code = "merchant_already_registered"


class InvalidMerchantTransition(Conflict):
    """Raised when a merchant status change violates the lifecycle."""

    code = "invalid_merchant_transition"

    def __init__(self, current_status: Any, requested_status: Any) -> None:
        super().__init__(
            f"Cannot transition merchant from {current_status.value} to {requested_status.value}",
            current_status=current_status.value,
            requested_status=requested_status.value,
        )
        self.current_status = current_status
        self.requested_status = requested_status


__all__ = [
    "ClientBlocked",
    "Conflict",
    "EndUserNotFound",
    "GiftsDisabled",
    "IdempotencyKeyConflict",
    "InsufficientBalance",
    "InvalidAmount",
    "InvalidIdentifier",
    "InvalidLoyaltySettings",
    "InvalidMerchantTransition",
    "LoyaltyError",
    "MerchantAlreadyRegistered",
    "MerchantClientNotFound",
    "MerchantNotFound",
    "NegativeBalance",
    "NotFound",
    "NothingToGift",
    "PinIncorrect",
    "PinRequired",
    "ReasonRequired",
    "SelfClaim",
    "SelfMerge",
    "SpendCapExceeded",
    "ValidationFailed",
    "VoucherAlreadyClaimed",
    "VoucherExpired",
    "VoucherNotFound",
    "ZeroAdjustment",
]
