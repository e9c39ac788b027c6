from __future__ import annotations

from typing import Iterable, Sequence

from django.conf import settings
from django.core.mail import send_mail

from bookings.models import Booking
from payments.models import Payment


def send_booking_confirmation_email(
    *,
    payment: Payment,
    bookings: Sequence[Booking],
    recipients: Iterable[str],
):
    first = bookings[0]
    customer = first.user
    subject = f"Booking confirmed ({payment.reference})"

    body_lines = [
        f"Hi {customer.display_name or customer.email},",
        "",
        f"We received your payment of {payment.amount} {payment.currency.upper()}.",
        "Your sessions:",
    ]
    for booking in bookings:
        body_lines.append(
            f" • {booking.booking_date:%B %d, %Y}, {booking.start_time:%H:%M} to {booking.end_time:%H:%M}"
        )
    body_lines += [
        "",
        f"Payment reference: {payment.reference}",
        f"View your bookings: {settings.FRONTEND_URL.rstrip('/')}/customer/bookings",
        "",
        "The Swim Slots Team",
    ]
    send_mail(
        subject,
        "\n".join(body_lines),
        settings.DEFAULT_FROM_EMAIL,
        list(recipients),
        fail_silently=False,
    )
