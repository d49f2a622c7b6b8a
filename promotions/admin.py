from __future__ import annotations

from django.contrib import admin

from .models import Voucher


@admin.register(Voucher)
class VoucherAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "kind",
        "value",
        "cap",
        "min_eligible_total",
        "target_type",
        "usage_limit",
        "used_count",
        "active",
        "expires_at",
    )

    search_fields = ("code",)
    list_filter = ("active", "kind", "target_type")
    readonly_fields = ("used_count", "created_at", "updated_at")
    raw_id_fields = ("user", "seller", "shop")
    filter_horizontal = ("target_products",)
    fieldsets = (
        (None, {"fields": ("code", "active", "expires_at")}),
        ("Discount", {"fields": ("kind", "value", "cap", "min_eligible_total")}),
        ("Scope", {"fields": ("user", "seller", "shop")}),
        ("Targets", {"fields": ("target_type", "target_categories", "target_products")}),
        ("Usage limits", {"fields": ("usage_limit", "used_count")}),
        ("Meta", {"fields": ("created_at", "updated_at")}),
    )
