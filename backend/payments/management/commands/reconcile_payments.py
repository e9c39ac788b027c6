import json

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from payments.services.engine import run_reconcile_sweep
from payments.services.reconciler import ReconcileWindow


def _parse_bound(value, label):
    if value is None:
        return None
    try:
        parsed = parse_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise CommandError(f"--{label} must be an ISO 8601 datetime, got {value!r}.")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


class Command(BaseCommand):
    help = "Repair orphaned payments and re-verify stale pending ones."

    def add_arguments(self, parser):
        parser.add_argument("--since", help="Only payments created at or after this ISO datetime.")
        parser.add_argument("--until", help="Only payments created before this ISO datetime.")
        parser.add_argument("--json", action="store_true", help="Print the report as JSON.")

    def handle(self, *args, **options):
        window = ReconcileWindow(
            since=_parse_bound(options.get("since"), "since"),
            until=_parse_bound(options.get("until"), "until"),
        )
        report = run_reconcile_sweep(window)

        if options["json"]:
            self.stdout.write(json.dumps(report.as_dict(), indent=2))
            return

        self.stdout.write(self.style.MIGRATE_HEADING("Reconciliation sweep"))
        self.stdout.write(f"Relinked: {len(report.relinked)}")
        for reference in report.relinked:
            self.stdout.write(f"  {reference}")
        self.stdout.write(f"Verified failed: {len(report.verified_failed)}")
        self.stdout.write(f"Still pending: {len(report.still_pending)}")
        self.stdout.write(f"Deferred (backoff): {len(report.deferred)}")
        if report.has_problems:
            self.stdout.write(self.style.ERROR(f"Stuck: {len(report.stuck)}"))
            for item in report.stuck:
                self.stdout.write(self.style.ERROR(f"  {item.reference}: {item.reason} ({item.message})"))
        else:
            self.stdout.write(self.style.SUCCESS("No stuck payments."))
