from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from payments.exceptions import PaymentEngineError
from payments.models import Payment
from payments.services import lifecycle
from payments.services.reconciler import ReconcileReport, ReconcileWindow, Reconciler
from payments.services.settlement import settle_payment

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    reference: str
    status: str
    booking_ids: List[int] = field(default_factory=list)
    error: Optional[PaymentEngineError] = None

    def as_dict(self) -> dict:
        return {
            "reference": self.reference,
            "status": self.status,
            "bookingIds": self.booking_ids,
            "error": self.error.as_dict() if self.error else None,
        }


def create_payment_intent(
    amount: Any,
    user_details: Mapping[str, Any],
    booking_intent_raw: Any,
    *,
    gateway=None,
    timeout: Optional[float] = None,
) -> Payment:
    return lifecycle.create_intent(
        amount=amount,
        user_details=user_details,
        booking_intent_raw=booking_intent_raw,
        gateway=gateway,
        timeout=timeout,
    )


def verify_and_materialize(reference: str, *, gateway=None, timeout: Optional[float] = None) -> VerificationResult:
    """
    Verify a payment and, if it succeeded, make sure its bookings exist and are linked.

    `UnknownReference` and `GatewayUnavailable` propagate: the payment's state
    could not be determined. Once the payment is known to have succeeded, any
    booking failure is returned on the result instead, alongside ``success``.
    """

    status = lifecycle.verify(reference, gateway=gateway, timeout=timeout)
    if status != Payment.SUCCESS:
        return VerificationResult(reference=reference, status=status)

    payment = lifecycle.get_payment(reference)
    if payment.is_linked:
        return VerificationResult(reference=reference, status=status, booking_ids=list(payment.linked_booking_ids))

    try:
        booking_ids, _ = settle_payment(payment)
    except PaymentEngineError as exc:
        lifecycle.record_failure(payment, exc)
        log = logger.warning if exc.retryable else logger.error
        log("Payment %s succeeded but bookings were not settled: %s (%s)", reference, exc.code, exc)
        return VerificationResult(
            reference=reference,
            status=status,
            booking_ids=list(getattr(exc, "booking_ids", [])),
            error=exc,
        )
    return VerificationResult(reference=reference, status=status, booking_ids=booking_ids)


def run_reconcile_sweep(window: Optional[ReconcileWindow] = None, *, gateway=None) -> ReconcileReport:
    return Reconciler(gateway=gateway).run(window)
