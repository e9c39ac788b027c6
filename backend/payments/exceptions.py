from __future__ import annotations

from typing import Sequence

from django.db import DatabaseError, IntegrityError


class PaymentEngineError(Exception):
    """Base class for failures raised while reconciling payments and bookings."""

    code = "engine_error"
    retryable = False

    def __init__(self, message: str = "", *, reference: str | None = None):
        super().__init__(message or self.code)
        self.reference = reference

    def as_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "retryable": self.retryable}


class GatewayUnavailable(PaymentEngineError):
    code = "gateway_unavailable"
    retryable = True


class StoreUnavailable(PaymentEngineError):
    code = "store_unavailable"
    retryable = True


class StoreConflict(PaymentEngineError):
    """A write was refused by a database constraint the engine does not resolve itself."""

    code = "store_conflict"
    retryable = True


class UnknownReference(PaymentEngineError):
    code = "unknown_reference"


class MalformedIntent(PaymentEngineError):
    code = "malformed_intent"


class LinkConflict(PaymentEngineError):
    code = "link_conflict"

    def __init__(self, message: str = "", *, reference: str | None = None, existing=None, attempted=None):
        super().__init__(message, reference=reference)
        self.existing = list(existing or [])
        self.attempted = list(attempted or [])


class SlotAlreadyBooked(PaymentEngineError):
    code = "slot_already_booked"

    def __init__(self, message: str = "", *, reference: str | None = None, slot_id=None, booking_date=None):
        super().__init__(message, reference=reference)
        self.slot_id = slot_id
        self.booking_date = booking_date


class InvalidPaymentState(PaymentEngineError):
    code = "invalid_payment_state"


class MaterializationIncomplete(PaymentEngineError):
    """Some bookings were created before one failed; `booking_ids` lists them in intent order."""

    def __init__(self, cause: PaymentEngineError, booking_ids: Sequence[int], *, reference: str | None = None):
        super().__init__(str(cause), reference=reference or cause.reference)
        self.cause = cause
        self.booking_ids = list(booking_ids)

    @property
    def code(self):
        return self.cause.code

    @property
    def retryable(self):
        return self.cause.retryable

    def as_dict(self) -> dict:
        data = super().as_dict()
        data["bookingIds"] = self.booking_ids
        return data


def from_database_error(exc: DatabaseError, *, reference: str | None = None) -> PaymentEngineError:
    if isinstance(exc, IntegrityError):
        return StoreConflict(str(exc), reference=reference)
    return StoreUnavailable(str(exc), reference=reference)
