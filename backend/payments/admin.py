from django.contrib import admin, messages

from payments.exceptions import PaymentEngineError
from payments.models import Payment
from payments.services.engine import verify_and_materialize


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        "reference",
        "amount",
        "currency",
        "status",
        "linked_at",
        "last_error_code",
        "next_retry_at",
        "created_at",
    )
    list_filter = ("status", "last_error_code", ("linked_at", admin.EmptyFieldListFilter))
    search_fields = ("reference", "gateway_intent_id", "payer_details__email")
    readonly_fields = (
        "reference",
        "amount",
        "currency",
        "status",
        "intent_metadata",
        "payer_details",
        "payment_url",
        "gateway_intent_id",
        "linked_booking_ids",
        "linked_at",
        "gateway_status_code",
        "gateway_response",
        "verified_at",
        "last_checked_at",
        "retry_attempts",
        "next_retry_at",
        "last_error_code",
        "last_error_message",
        "created_at",
        "updated_at",
    )
    actions = ["reverify_and_settle"]

    @admin.action(description="Re-verify and settle selected payments")
    def reverify_and_settle(self, request, queryset):
        for payment in queryset:
            try:
                result = verify_and_materialize(payment.reference)
            except PaymentEngineError as exc:
                self.message_user(request, f"{payment.reference}: {exc}", level=messages.WARNING)
                continue
            if result.error:
                self.message_user(request, f"{payment.reference}: {result.error}", level=messages.ERROR)
            else:
                self.message_user(request, f"{payment.reference}: {result.status} {result.booking_ids}")
