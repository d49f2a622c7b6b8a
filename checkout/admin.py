from __future__ import annotations

from django.contrib import admin

from .models import Cart, CartItem, InventoryReservation, Order, OrderLine


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    raw_id_fields = ("product",)


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "updated_at")
    search_fields = ("user__email",)
    inlines = (CartItemInline,)


class OrderLineInline(admin.TabularInline):
    model = OrderLine
    extra = 0
    raw_id_fields = ("product",)
    fields = ("product", "title", "unit_price", "qty", "line_total")
    readonly_fields = ("line_total",)


class InventoryReservationInline(admin.TabularInline):
    model = InventoryReservation
    extra = 0
    can_delete = False
    fields = ("checkout_ref", "product", "qty", "status", "updated_at")
    readonly_fields = fields


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "order_code",
        "user",
        "seller",
        "status",
        "payment_method",
        "payment_status",
        "shipping_status",
        "total_amount",
        "created_at",
    )
    list_filter = ("status", "payment_method", "payment_status", "shipping_status", "shipping_method")
    search_fields = ("order_code", "user__email", "seller__email", "email", "full_name")
    raw_id_fields = ("user", "seller", "shop", "shipper")
    readonly_fields = ("order_code", "version", "created_at", "updated_at")
    inlines = (OrderLineInline, InventoryReservationInline)
    fieldsets = (
        (None, {"fields": ("order_code", "user", "seller", "shop", "status", "version")}),
        ("Buyer", {"fields": ("full_name", "email", "phone", "shipping_address")}),
        (
            "Amounts",
            {
                "fields": (
                    "subtotal",
                    "shipping_fee",
                    "discount_code",
                    "discount_amount",
                    "total_amount",
                    "service_fee_percent",
                    "service_fee",
                    "seller_service_fee_percent",
                    "seller_service_fee",
                    "seller_bank_account",
                )
            },
        ),
        (
            "Payment",
            {
                "fields": (
                    "payment_method",
                    "payment_status",
                    "payment_deadline",
                    "payment_expired",
                    "payment_retry_count",
                    "paid_at",
                )
            },
        ),
        (
            "Shipping",
            {
                "fields": (
                    "shipping_method",
                    "shipping_scope",
                    "shipping_meta",
                    "shipper",
                    "shipping_status",
                    "shipping_location",
                    "shipping_updated_at",
                    "shipping_synced_at",
                )
            },
        ),
        ("Meta", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(InventoryReservation)
class InventoryReservationAdmin(admin.ModelAdmin):
    list_display = ("id", "checkout_ref", "order", "product", "qty", "status", "updated_at")
    list_filter = ("status",)
    search_fields = ("checkout_ref", "order__order_code")
    raw_id_fields = ("order", "product")
