"""Booking engine error taxonomy.

Every rejection carries a stable machine-readable code so the client UI can
show a specific remediation ("pick another time", "subscribe to continue").
"""

import enum
from typing import Optional

from fastapi import status


class ErrorCode(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SLOT_CONFLICT = "SLOT_CONFLICT"
    DUPLICATE_BOOKING = "DUPLICATE_BOOKING"
    TIER_MISMATCH = "TIER_MISMATCH"
    ENTITLEMENT_EXHAUSTED = "ENTITLEMENT_EXHAUSTED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    PAYMENT_NOT_CONFIRMED = "PAYMENT_NOT_CONFIRMED"
    STATE_CONFLICT = "STATE_CONFLICT"
    INTERNAL = "INTERNAL"


class BookingError(Exception):
    """Base class for every rejection the engine returns to a caller."""

    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Unexpected server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"ok": False, "code": self.code.value, "message": self.message}


class Unauthenticated(BookingError):
    code = ErrorCode.UNAUTHENTICATED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required. Please sign in."


class Forbidden(BookingError):
    code = ErrorCode.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You don't have permission to do that."


class NotFound(BookingError):
    code = ErrorCode.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found."


class ValidationFailed(BookingError):
    code = ErrorCode.VALIDATION_FAILED
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request."


class SlotConflict(BookingError):
    code = ErrorCode.SLOT_CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "That time was just taken. Please pick another time."


class DuplicateBooking(BookingError):
    code = ErrorCode.DUPLICATE_BOOKING
    status_code = status.HTTP_409_CONFLICT
    default_message = "You already have an appointment at this time."


class TierMismatch(BookingError):
    code = ErrorCode.TIER_MISMATCH
    status_code = status.HTTP_409_CONFLICT
    default_message = "The requested pricing tier does not apply to your account."


class EntitlementExhausted(BookingError):
    code = ErrorCode.ENTITLEMENT_EXHAUSTED
    status_code = status.HTTP_409_CONFLICT
    default_message = "You have already used this benefit."


class InsufficientBalance(BookingError):
    code = ErrorCode.INSUFFICIENT_BALANCE
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Not enough points. Please subscribe or renew to continue."

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        self.required = required
        self.available = available
        super().__init__(
            message or f"Not enough points. Required: {required}, available: {available}."
        )


class PaymentNotConfirmed(BookingError):
    code = ErrorCode.PAYMENT_NOT_CONFIRMED
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Payment has not been confirmed."


class StateConflict(BookingError):
    code = ErrorCode.STATE_CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "The appointment can no longer be changed."


class Internal(BookingError):
    pass
