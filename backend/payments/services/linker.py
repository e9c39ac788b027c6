from __future__ import annotations

import logging
from typing import Sequence

from django.db import transaction
from django.utils import timezone

from bookings.models import Booking
from bookings.pricing import apportion_amount
from payments.exceptions import InvalidPaymentState, LinkConflict, UnknownReference
from payments.models import Payment

logger = logging.getLogger(__name__)


def _backfill_bookings(payment: Payment, booking_ids: list[int]) -> None:
    bookings = {booking.pk: booking for booking in Booking.objects.filter(pk__in=booking_ids)}
    missing = [booking_id for booking_id in booking_ids if booking_id not in bookings]
    if missing:
        raise LinkConflict(
            f"Payment {payment.reference} references bookings that do not exist: {missing}.",
            reference=payment.reference,
            existing=payment.linked_booking_ids,
            attempted=booking_ids,
        )
    foreign = [pk for pk, booking in bookings.items() if booking.payment_id not in (None, payment.pk)]
    if foreign:
        raise LinkConflict(
            f"Bookings {sorted(foreign)} belong to another payment.",
            reference=payment.reference,
            existing=payment.linked_booking_ids,
            attempted=booking_ids,
        )

    amounts = apportion_amount(payment.amount, len(booking_ids))
    for booking_id, amount_paid in zip(booking_ids, amounts):
        Booking.objects.filter(pk=booking_id).update(
            payment=payment,
            payment_reference=payment.reference,
            amount_paid=amount_paid,
        )


def link_bookings(payment_id: int, booking_ids: Sequence[int]) -> bool:
    """
    Attach ``booking_ids`` to the payment, once.

    Returns True when this call set the link and False when the identical link
    was already in place. A different existing link raises `LinkConflict`; it
    is never overwritten.
    """

    booking_ids = [int(booking_id) for booking_id in booking_ids]
    if not booking_ids:
        raise ValueError("A payment cannot be linked to an empty set of bookings.")

    with transaction.atomic():
        now = timezone.now()
        applied = Payment.objects.filter(
            pk=payment_id,
            status=Payment.SUCCESS,
            linked_at__isnull=True,
        ).update(
            linked_booking_ids=booking_ids,
            linked_at=now,
            retry_attempts=0,
            next_retry_at=None,
            last_error_code="",
            last_error_message="",
            updated_at=now,
        )

        try:
            payment = Payment.objects.get(pk=payment_id)
        except Payment.DoesNotExist:
            raise UnknownReference(f"No payment with id {payment_id}.") from None

        if not applied:
            if payment.status != Payment.SUCCESS:
                raise InvalidPaymentState(
                    f"Payment {payment.reference} is {payment.status}; only successful payments are linked.",
                    reference=payment.reference,
                )
            if list(payment.linked_booking_ids) != booking_ids:
                logger.error(
                    "Link conflict on payment %s: linked %s, attempted %s",
                    payment.reference,
                    payment.linked_booking_ids,
                    booking_ids,
                )
                raise LinkConflict(
                    f"Payment {payment.reference} is already linked to {payment.linked_booking_ids}.",
                    reference=payment.reference,
                    existing=payment.linked_booking_ids,
                    attempted=booking_ids,
                )

        _backfill_bookings(payment, booking_ids)

    if applied:
        logger.info("Linked payment %s to bookings %s", payment.reference, booking_ids)
    return bool(applied)
