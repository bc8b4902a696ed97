from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "role", "org_id", "approval_limit", "is_active")
    list_filter = ("role", "is_active", "is_staff")
    search_fields = ("username", "email", "uid", "org_id")
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Procurement", {"fields": ("uid", "role", "org_id", "approval_limit")}),
    )
