from django.contrib import admin

from .models import Booking, Slot


@admin.register(Slot)
class SlotAdmin(admin.ModelAdmin):
    list_display = ("id", "day_of_week", "start_time", "end_time", "is_holiday")
    list_filter = ("day_of_week", "is_holiday")
    ordering = ("day_of_week", "start_time")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("booking_date", "slot", "user", "status", "payment_reference", "amount_paid")
    list_filter = ("status", "booking_date")
    search_fields = ("user__email", "payment_reference")
    readonly_fields = ("payment", "payment_reference", "amount_paid", "created_at")
