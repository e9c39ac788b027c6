import json
from datetime import datetime, time
from datetime import timezone as dt_timezone
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from bookings.models import Slot
from payments.management.commands import reconcile_payments
from payments.models import Payment
from payments.services.engine import run_reconcile_sweep

METADATA = {
    "userDetails": {"email": "swimmer@example.com"},
    "selectedDates": ["2025-06-25"],
    "slotId": "s1",
    "startTime": "09:00",
    "endTime": "10:00",
}


@pytest.fixture
def orphan(db):
    Slot.objects.create(id="s1", day_of_week="Wednesday", start_time=time(9), end_time=time(10))
    return Payment.objects.create(
        reference="pay_orphan",
        amount=Decimal("80.00"),
        status=Payment.SUCCESS,
        intent_metadata=METADATA,
    )


@pytest.mark.django_db
def test_reconcile_command_relinks_orphans(orphan):
    out = StringIO()

    call_command("reconcile_payments", stdout=out)

    orphan.refresh_from_db()
    assert orphan.is_linked
    assert "Relinked: 1" in out.getvalue()
    assert "No stuck payments." in out.getvalue()


@pytest.mark.django_db
def test_reconcile_command_json_output(orphan):
    out = StringIO()

    call_command("reconcile_payments", "--json", stdout=out)

    report = json.loads(out.getvalue())
    assert report["relinked"] == ["pay_orphan"]
    assert report["stuck"] == []


@pytest.mark.django_db
def test_reconcile_command_reports_stuck_payments(orphan):
    Payment.objects.filter(pk=orphan.pk).update(intent_metadata={"userDetails": {"email": "swimmer@example.com"}})
    out = StringIO()

    call_command("reconcile_payments", stdout=out)

    assert "Stuck: 1" in out.getvalue()
    assert "pay_orphan: malformed_intent" in out.getvalue()


@pytest.mark.django_db
def test_reconcile_command_rejects_bad_window(db):
    with pytest.raises(CommandError):
        call_command("reconcile_payments", "--since", "yesterday")


@pytest.mark.django_db
def test_reconcile_command_makes_naive_bounds_aware(monkeypatch):
    windows = []

    def capture(window):
        windows.append(window)
        return run_reconcile_sweep(window)

    monkeypatch.setattr(reconcile_payments, "run_reconcile_sweep", capture)

    call_command("reconcile_payments", "--since", "2025-06-01T00:00", "--until", "2025-06-02T00:00+00:00", stdout=StringIO())

    [window] = windows
    assert timezone.is_aware(window.since)
    assert window.since == timezone.make_aware(datetime(2025, 6, 1))
    assert window.until == datetime(2025, 6, 2, tzinfo=dt_timezone.utc)


@pytest.mark.django_db
def test_reconcile_command_rejects_out_of_range_datetime(db):
    with pytest.raises(CommandError):
        call_command("reconcile_payments", "--until", "2025-13-01T00:00")
