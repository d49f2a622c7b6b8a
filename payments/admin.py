from __future__ import annotations

from django.contrib import admin

from .models import PaymentLink


@admin.register(PaymentLink)
class PaymentLinkAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "order",
        "provider",
        "external_order_code",
        "status",
        "amount",
        "amount_paid",
        "expires_at",
        "last_synced_at",
        "last_webhook_at",
    )
    list_filter = ("provider", "status")
    search_fields = ("order__order_code", "external_order_code", "link_id")
    raw_id_fields = ("order",)
    readonly_fields = ("raw_response", "raw_webhook", "transactions", "created_at", "updated_at")
