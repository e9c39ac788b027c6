from datetime import time
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core import mail
from django.db import IntegrityError

from bookings.models import Booking, Slot
from payments.models import Payment
from payments.services import settlement
from payments.services.engine import run_reconcile_sweep, verify_and_materialize
from payments.services.gateway import GatewayStatus

User = get_user_model()


def _metadata(email="swimmer@example.com", slot_id="s1"):
    return {
        "userDetails": {"email": email, "name": "Asha"},
        "dateSlotPairs": [
            {"date": "2025-06-25", "slotId": slot_id},
            {"date": "2025-06-26", "slotId": slot_id},
        ],
        "startTime": "09:00",
        "endTime": "10:00",
    }


class FixedGateway:
    def __init__(self, code="COMPLETED", on_verify=None):
        self.code = code
        self.on_verify = on_verify

    def verify(self, reference, *, gateway_id="", timeout=None):
        if self.on_verify:
            self.on_verify(reference)
        return GatewayStatus(code=self.code, payload={"state": self.code})


def _payment(reference, *, status=Payment.PENDING, metadata=None):
    return Payment.objects.create(
        reference=reference,
        amount=Decimal("149.99"),
        status=status,
        intent_metadata=metadata or _metadata(),
    )


@pytest.fixture(autouse=True)
def slots(db):
    for slot_id in ("s1", "s2"):
        Slot.objects.create(id=slot_id, day_of_week="Wednesday", start_time=time(9), end_time=time(10))


@pytest.mark.django_db
def test_concurrent_verifications_materialize_once():
    _payment("pay_race")
    inner_results = []

    def verify_elsewhere(reference):
        inner_results.append(verify_and_materialize(reference, gateway=FixedGateway("COMPLETED")))

    outer = verify_and_materialize("pay_race", gateway=FixedGateway("COMPLETED", on_verify=verify_elsewhere))

    [inner] = inner_results
    assert inner.status == outer.status == Payment.SUCCESS
    assert inner.error is None and outer.error is None
    assert outer.booking_ids == inner.booking_ids
    assert len(outer.booking_ids) == 2
    assert Booking.objects.count() == 2
    assert len(mail.outbox) == 1


@pytest.mark.django_db
def test_customer_email_matching_another_accounts_username_still_books():
    User.objects.create(username="swimmer@example.com", email="staff@example.com")
    _payment("pay_clash")

    result = verify_and_materialize("pay_clash", gateway=FixedGateway())

    assert result.error is None
    assert len(result.booking_ids) == 2
    customer = Booking.objects.get(pk=result.booking_ids[0]).user
    assert customer.email == "swimmer@example.com"
    assert customer.username != "swimmer@example.com"
    assert User.objects.count() == 2


@pytest.mark.django_db
def test_unexpected_constraint_error_is_reported_on_the_result(monkeypatch):
    _payment("pay_broken")

    def refuse(payment):
        raise IntegrityError("UNIQUE constraint failed: accounts_user.username")

    monkeypatch.setattr(settlement, "materialize_bookings", refuse)

    result = verify_and_materialize("pay_broken", gateway=FixedGateway())

    assert result.status == Payment.SUCCESS
    assert result.error.code == "store_conflict"
    payment = Payment.objects.get(reference="pay_broken")
    assert payment.last_error_code == "store_conflict"
    assert payment.retry_attempts == 1
    assert payment.next_retry_at is not None


@pytest.mark.django_db
def test_sweep_continues_past_a_payment_the_store_refuses(monkeypatch):
    _payment("pay_bad", status=Payment.SUCCESS)
    _payment("pay_good", status=Payment.SUCCESS, metadata=_metadata(slot_id="s2"))
    materialize = settlement.materialize_bookings

    def refuse_one(payment):
        if payment.reference == "pay_bad":
            raise IntegrityError("UNIQUE constraint failed: accounts_user.username")
        return materialize(payment)

    monkeypatch.setattr(settlement, "materialize_bookings", refuse_one)

    report = run_reconcile_sweep()

    assert report.relinked == ["pay_good"]
    [stuck] = report.stuck
    assert stuck.reference == "pay_bad"
    assert stuck.reason == "store_conflict"
    assert stuck.retryable is True
    assert Payment.objects.get(reference="pay_good").is_linked
