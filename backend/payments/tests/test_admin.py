from datetime import time
from decimal import Decimal

import pytest
from django.contrib import admin
from django.urls import reverse

from bookings.models import Booking, Slot
from payments.admin import PaymentAdmin
from payments.models import Payment


@pytest.fixture
def pending_payment(db, settings):
    settings.STRIPE_USE_STUB = True
    settings.PAYMENTS_STUB_VERIFY_STATUS = "COMPLETED"
    Slot.objects.create(id="s1", day_of_week="Wednesday", start_time=time(9), end_time=time(10))
    return Payment.objects.create(
        reference="pay_admin",
        amount=Decimal("149.99"),
        status=Payment.PENDING,
        intent_metadata={
            "userDetails": {"email": "swimmer@example.com"},
            "date": "2025-06-25",
            "slotId": "s1",
            "startTime": "09:00",
            "endTime": "10:00",
        },
    )


@pytest.mark.django_db
def test_admin_action_reverifies_and_settles(admin_client, pending_payment):
    response = admin_client.post(
        reverse("admin:payments_payment_changelist"),
        {"action": "reverify_and_settle", "_selected_action": [pending_payment.pk]},
        follow=True,
    )

    assert response.status_code == 200
    pending_payment.refresh_from_db()
    assert pending_payment.status == Payment.SUCCESS
    assert pending_payment.is_linked
    assert Booking.objects.get().payment_reference == "pay_admin"


@pytest.mark.django_db
def test_admin_changelist_filters_unlinked(admin_client, pending_payment):
    response = admin_client.get(reverse("admin:payments_payment_changelist"), {"linked_at__isempty": "1"})

    assert response.status_code == 200
    assert b"pay_admin" in response.content


def test_engine_owned_fields_are_read_only():
    readonly = set(PaymentAdmin(Payment, admin.site).get_readonly_fields(None))

    assert {"status", "linked_booking_ids", "next_retry_at", "last_error_code", "last_error_message"} <= readonly
