from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (
        ("Customer", {"fields": ("display_name", "phone", "is_verified")}),
    )
    list_display = ("email", "display_name", "phone", "is_verified", "is_staff")
    list_filter = ("is_verified", "is_staff", "is_superuser")
    search_fields = ("email", "display_name", "phone")
