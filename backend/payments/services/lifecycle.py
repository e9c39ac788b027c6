"""
Payment state machine: ``created -> pending -> success | failed``.

This module is the only writer of ``Payment.status``. Every transition is a
conditional UPDATE keyed on the previous status, so concurrent verifications of
the same reference linearise on the payment row and the loser simply observes
the winner's result.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
from uuid import uuid4

from django.conf import settings
from django.db import OperationalError
from django.db.models import F
from django.utils import timezone

from payments.exceptions import GatewayUnavailable, PaymentEngineError, StoreUnavailable, UnknownReference
from payments.intents import decode_booking_intent
from payments.models import Payment
from payments.services.gateway import get_gateway

logger = logging.getLogger(__name__)

SUCCESS_CODES = frozenset({"COMPLETED", "PAYMENT_SUCCESS", "PAID", "NO_PAYMENT_REQUIRED", "SUCCEEDED"})
FAILURE_CODES = frozenset({"FAILED", "PAYMENT_ERROR", "PAYMENT_DECLINED", "EXPIRED", "CANCELED", "CANCELLED"})

REFERENCE_PREFIX = "pay_"


def generate_reference() -> str:
    """Fresh engine-owned reference; never derived from gateway merchant identifiers."""
    return f"{REFERENCE_PREFIX}{uuid4().hex}"


def classify_gateway_status(code: str) -> str:
    normalized = (code or "").strip().upper()
    if normalized in SUCCESS_CODES:
        return Payment.SUCCESS
    if normalized in FAILURE_CODES:
        return Payment.FAILED
    return Payment.PENDING


def normalize_amount(amount: Any) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Payment amount {amount!r} is not a number.") from None
    if not value.is_finite():
        raise ValueError(f"Payment amount {amount!r} is not a number.")
    value = value.quantize(Decimal("0.01"))
    if value <= 0:
        raise ValueError("Payment amount must be positive.")
    return value


def create_intent(
    *,
    amount: Any,
    user_details: Mapping[str, Any],
    booking_intent_raw: Any,
    gateway=None,
    timeout: Optional[float] = None,
) -> Payment:
    """
    Open a payment intent with the gateway and persist it as ``pending``.

    The metadata is validated up front and then stored verbatim. Nothing is
    written unless the gateway confirmed the intent.
    """

    amount = normalize_amount(amount)
    decode_booking_intent(booking_intent_raw)

    gateway = gateway or get_gateway()
    reference = generate_reference()
    payer = {key: user_details.get(key, "") for key in ("name", "email", "phone")}
    currency = settings.PAYMENTS_CURRENCY

    gateway_intent = gateway.create_intent(
        reference=reference,
        amount=amount,
        currency=currency,
        user_details=payer,
        timeout=timeout,
    )

    payment = Payment(
        reference=reference,
        amount=amount,
        currency=currency,
        intent_metadata=booking_intent_raw,
        payer_details=payer,
        payment_url=gateway_intent.payment_url or "",
        gateway_intent_id=gateway_intent.gateway_id or "",
    )
    payment.status = Payment.PENDING
    try:
        payment.save()
    except OperationalError as exc:
        raise StoreUnavailable(str(exc), reference=reference) from exc
    logger.info("Payment intent %s opened for %s %s", reference, amount, currency)
    return payment


def record_failure(payment: Payment, error: PaymentEngineError) -> None:
    """Remember the last failure on the payment; transient ones also get a backoff slot."""

    now = timezone.now()
    values = {
        "last_error_code": error.code,
        "last_error_message": str(error)[:500],
        "updated_at": now,
    }
    if error.retryable:
        attempts = payment.retry_attempts + 1
        delay = min(
            settings.PAYMENTS_RETRY_BASE_SECONDS * (2 ** (attempts - 1)),
            settings.PAYMENTS_RETRY_MAX_SECONDS,
        )
        values["retry_attempts"] = F("retry_attempts") + 1
        values["next_retry_at"] = now + timedelta(seconds=delay)
    try:
        Payment.objects.filter(pk=payment.pk).update(**values)
    except OperationalError as exc:
        raise StoreUnavailable(str(exc), reference=payment.reference) from exc


def get_payment(reference: str) -> Payment:
    try:
        return Payment.objects.get(reference=reference)
    except Payment.DoesNotExist:
        raise UnknownReference(f"No payment with reference {reference!r}.", reference=reference) from None
    except OperationalError as exc:
        raise StoreUnavailable(str(exc), reference=reference) from exc


def verify(reference: str, *, gateway=None, timeout: Optional[float] = None) -> str:
    """
    Ask the gateway for the payment's status and record terminal outcomes.

    Returns the payment's status after the call. Non-terminal gateway answers
    and already-terminal payments leave the row's status untouched.
    """

    try:
        return _verify(reference, gateway=gateway, timeout=timeout)
    except OperationalError as exc:
        raise StoreUnavailable(str(exc), reference=reference) from exc


def _verify(reference: str, *, gateway, timeout: Optional[float]) -> str:
    payment = get_payment(reference)
    if payment.status != Payment.PENDING:
        return payment.status

    gateway = gateway or get_gateway()
    try:
        result = gateway.verify(reference, gateway_id=payment.gateway_intent_id, timeout=timeout)
    except GatewayUnavailable as exc:
        exc.reference = reference
        record_failure(payment, exc)
        raise

    new_status = classify_gateway_status(result.code)
    now = timezone.now()
    pending = Payment.objects.filter(pk=payment.pk, status=Payment.PENDING)

    if new_status == Payment.PENDING:
        pending.update(
            last_checked_at=now,
            gateway_status_code=result.code or "",
            gateway_response=result.payload,
            updated_at=now,
        )
        logger.info("Payment %s still pending at gateway (%s)", reference, result.code)
        return Payment.PENDING

    applied = pending.update(
        status=new_status,
        verified_at=now,
        last_checked_at=now,
        gateway_status_code=result.code or "",
        gateway_response=result.payload,
        retry_attempts=0,
        next_retry_at=None,
        last_error_code="",
        last_error_message="",
        updated_at=now,
    )
    if applied:
        logger.info("Payment %s transitioned pending -> %s", reference, new_status)
        return new_status

    payment.refresh_from_db(fields=["status"])
    logger.info("Payment %s already settled as %s by a concurrent call", reference, payment.status)
    return payment.status
