from __future__ import annotations

import logging
from typing import List, Tuple

from django.db import DatabaseError

from bookings.models import Booking
from bookings.services.emails import send_booking_confirmation_email
from bookings.services.materializer import materialize_bookings
from payments.exceptions import from_database_error
from payments.models import Payment
from payments.services.linker import link_bookings

logger = logging.getLogger(__name__)


def _notify_customer(payment: Payment, booking_ids: List[int]) -> None:
    bookings = list(Booking.objects.select_related("user").filter(pk__in=booking_ids))
    bookings.sort(key=lambda booking: booking_ids.index(booking.pk))
    if not bookings or not bookings[0].user.email:
        return
    try:
        send_booking_confirmation_email(
            payment=payment,
            bookings=bookings,
            recipients=[bookings[0].user.email],
        )
    except OSError:
        logger.exception("Failed to send booking confirmation for payment %s", payment.reference)


def settle_payment(payment: Payment) -> Tuple[List[int], bool]:
    """
    Drive a successful payment through materialization and linking.

    Returns the linked booking ids and whether this call was the one that
    established the link. Only that caller sends the confirmation email.
    """

    try:
        booking_ids = materialize_bookings(payment)
        newly_linked = link_bookings(payment.pk, booking_ids)
    except DatabaseError as exc:
        raise from_database_error(exc, reference=payment.reference) from exc

    if newly_linked:
        _notify_customer(payment, booking_ids)
    return booking_ids, newly_linked
