"""
Reconciliation sweep for payments whose bookings never materialised.

Two kinds of payment are repaired:

1. Orphans: ``success`` payments with no linked bookings (for example after a
   crash between verification and booking creation). They are re-driven
   through materialization and linking using the intent stored on the payment.
2. Stale ``pending`` payments older than ``PAYMENTS_PENDING_MAX_AGE_MINUTES``.
   They are re-verified with the gateway and settled if they succeeded.

Bookings are never attributed to a payment by correlating timestamps; the
stored intent is the only source. Transient failures are scheduled for a
later sweep with exponential backoff; data and conflict errors are reported
for an operator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from payments.exceptions import PaymentEngineError, StoreUnavailable
from payments.models import Payment
from payments.services import lifecycle
from payments.services.settlement import settle_payment

logger = logging.getLogger(__name__)


@dataclass
class ReconcileWindow:
    """Optional bounds on ``Payment.created_at``; ``until`` is exclusive."""

    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def apply(self, queryset):
        if self.since is not None:
            queryset = queryset.filter(created_at__gte=self.since)
        if self.until is not None:
            queryset = queryset.filter(created_at__lt=self.until)
        return queryset


@dataclass
class StuckPayment:
    reference: str
    reason: str
    message: str
    retryable: bool
    booking_ids: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "reference": self.reference,
            "reason": self.reason,
            "message": self.message,
            "retryable": self.retryable,
            "bookingIds": self.booking_ids,
        }


@dataclass
class ReconcileReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    relinked: List[str] = field(default_factory=list)
    stuck: List[StuckPayment] = field(default_factory=list)
    verified_failed: List[str] = field(default_factory=list)
    still_pending: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)

    @property
    def has_problems(self) -> bool:
        return bool(self.stuck)

    def as_dict(self) -> dict:
        return {
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "relinked": self.relinked,
            "stuck": [item.as_dict() for item in self.stuck],
            "verifiedFailed": self.verified_failed,
            "stillPending": self.still_pending,
            "deferred": self.deferred,
        }


class Reconciler:
    def __init__(self, *, gateway=None, pending_max_age: Optional[timedelta] = None, batch_size: Optional[int] = None):
        self.gateway = gateway
        self.pending_max_age = pending_max_age or timedelta(minutes=settings.PAYMENTS_PENDING_MAX_AGE_MINUTES)
        self.batch_size = batch_size or settings.PAYMENTS_RECONCILE_BATCH_SIZE

    def _due(self, queryset, now: datetime, report: ReconcileReport):
        waiting = queryset.filter(next_retry_at__gt=now)
        report.deferred.extend(waiting.values_list("reference", flat=True))
        return queryset.filter(Q(next_retry_at__isnull=True) | Q(next_retry_at__lte=now))

    def _record_stuck(self, payment: Payment, error: PaymentEngineError, report: ReconcileReport) -> None:
        try:
            lifecycle.record_failure(payment, error)
        except StoreUnavailable as exc:
            logger.warning("Could not record failure on %s: %s", payment.reference, exc)
        report.stuck.append(
            StuckPayment(
                reference=payment.reference,
                reason=error.code,
                message=str(error),
                retryable=error.retryable,
                booking_ids=list(getattr(error, "booking_ids", [])),
            )
        )
        if error.retryable:
            logger.warning("Payment %s deferred: %s (%s)", payment.reference, error.code, error)
        else:
            logger.error("Payment %s needs operator attention: %s (%s)", payment.reference, error.code, error)

    def _settle(self, payment: Payment, report: ReconcileReport) -> None:
        try:
            settle_payment(payment)
        except PaymentEngineError as exc:
            self._record_stuck(payment, exc, report)
            return
        report.relinked.append(payment.reference)

    def repair_orphans(self, window: ReconcileWindow, report: ReconcileReport, now: datetime) -> None:
        candidates = self._due(window.apply(Payment.objects.orphaned()), now, report)
        for payment in candidates.order_by("created_at")[: self.batch_size]:
            self._settle(payment, report)

    def reverify_pending(self, window: ReconcileWindow, report: ReconcileReport, now: datetime) -> None:
        stale = Payment.objects.filter(status=Payment.PENDING, created_at__lte=now - self.pending_max_age)
        candidates = self._due(window.apply(stale), now, report)
        for payment in candidates.order_by("created_at")[: self.batch_size]:
            try:
                status = lifecycle.verify(payment.reference, gateway=self.gateway)
            except PaymentEngineError as exc:
                # verify() records gateway failures and their backoff itself.
                report.stuck.append(
                    StuckPayment(
                        reference=payment.reference,
                        reason=exc.code,
                        message=str(exc),
                        retryable=exc.retryable,
                    )
                )
                logger.warning("Re-verification of %s failed: %s", payment.reference, exc)
                continue

            if status == Payment.SUCCESS:
                payment.refresh_from_db()
                if payment.is_linked:
                    continue
                self._settle(payment, report)
            elif status == Payment.FAILED:
                report.verified_failed.append(payment.reference)
            else:
                report.still_pending.append(payment.reference)

    def run(self, window: Optional[ReconcileWindow] = None) -> ReconcileReport:
        window = window or ReconcileWindow()
        now = timezone.now()
        report = ReconcileReport(started_at=now)

        self.repair_orphans(window, report, now)
        self.reverify_pending(window, report, now)

        report.finished_at = timezone.now()
        logger.info(
            "Reconcile sweep: %d relinked, %d stuck, %d verified failed, %d still pending, %d deferred",
            len(report.relinked),
            len(report.stuck),
            len(report.verified_failed),
            len(report.still_pending),
            len(report.deferred),
        )
        return report
