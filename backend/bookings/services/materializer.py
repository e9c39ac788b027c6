"""
Turns a successful payment's stored intent into Booking rows, exactly once.

Bookings are derived only from the payment's own intent metadata. A booking
that already occupies a (slot, date) is reused when it was created for the same
payment (a retried or concurrent run) and is a conflict otherwise.
"""
from __future__ import annotations

import logging
from typing import List

from django.db import DatabaseError, IntegrityError, transaction

from bookings.models import Booking, Slot
from bookings.services.customers import resolve_customer
from payments.exceptions import (
    InvalidPaymentState,
    MalformedIntent,
    MaterializationIncomplete,
    PaymentEngineError,
    SlotAlreadyBooked,
    from_database_error,
)
from payments.intents import BookingIntent, DateSlotPair, decode_booking_intent
from payments.models import Payment

logger = logging.getLogger(__name__)


def _active_booking(slot: Slot, pair: DateSlotPair):
    return Booking.objects.active().filter(slot=slot, booking_date=pair.date).first()


def _claim_slot(*, payment: Payment, customer, slot: Slot, pair: DateSlotPair, intent: BookingIntent) -> Booking:
    existing = _active_booking(slot, pair)
    if existing is None:
        try:
            with transaction.atomic():
                booking = Booking.objects.create(
                    user=customer,
                    slot=slot,
                    booking_date=pair.date,
                    start_time=intent.start_time,
                    end_time=intent.end_time,
                    status=Booking.BOOKED,
                    payment=payment,
                )
        except IntegrityError:
            existing = _active_booking(slot, pair)
            if existing is None:
                raise
        else:
            logger.info(
                "Booked slot %s on %s for payment %s (booking %s)",
                slot.pk,
                pair.date,
                payment.reference,
                booking.pk,
            )
            return booking

    if existing.payment_id != payment.pk:
        raise SlotAlreadyBooked(
            f"Slot {slot.pk} on {pair.date.isoformat()} is already held by booking {existing.pk}.",
            reference=payment.reference,
            slot_id=slot.pk,
            booking_date=pair.date,
        )
    logger.info("Reusing booking %s for payment %s", existing.pk, payment.reference)
    return existing


def _load_slots(intent: BookingIntent, reference: str) -> dict:
    slot_ids = {pair.slot_id for pair in intent.date_slot_pairs}
    slots = {slot.pk: slot for slot in Slot.objects.filter(pk__in=slot_ids)}
    missing = sorted(slot_ids - set(slots))
    if missing:
        raise MalformedIntent(f"Intent names unknown slot ids: {', '.join(missing)}.", reference=reference)
    return slots


def materialize_bookings(payment: Payment) -> List[int]:
    """
    Create (or reuse) one booking per (date, slot) pair in the payment's intent.

    Returns booking ids in intent order. A payment that is already linked
    returns its linked ids untouched. If a later pair fails after earlier ones
    were booked, `MaterializationIncomplete` carries the ids booked so far.
    """

    if payment.status != Payment.SUCCESS:
        raise InvalidPaymentState(
            f"Payment {payment.reference} is {payment.status}; only successful payments produce bookings.",
            reference=payment.reference,
        )
    if payment.is_linked:
        return list(payment.linked_booking_ids)

    try:
        intent = decode_booking_intent(payment.intent_metadata)
    except MalformedIntent as exc:
        exc.reference = payment.reference
        raise

    try:
        slots = _load_slots(intent, payment.reference)
        customer = resolve_customer(intent.user_details)
    except DatabaseError as exc:
        raise from_database_error(exc, reference=payment.reference) from exc

    booking_ids: List[int] = []
    for pair in intent.date_slot_pairs:
        try:
            booking = _claim_slot(
                payment=payment,
                customer=customer,
                slot=slots[pair.slot_id],
                pair=pair,
                intent=intent,
            )
        except DatabaseError as exc:
            error = from_database_error(exc, reference=payment.reference)
            if booking_ids:
                raise MaterializationIncomplete(error, booking_ids) from exc
            raise error from exc
        except PaymentEngineError as exc:
            if booking_ids:
                raise MaterializationIncomplete(exc, booking_ids) from exc
            raise
        booking_ids.append(booking.pk)

    return booking_ids
