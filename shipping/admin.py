from __future__ import annotations

from django.contrib import admin

from .models import ShipmentEvent, TrackingPoint


@admin.register(ShipmentEvent)
class ShipmentEventAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "code", "occurred_at", "source", "offline", "client_request_id")
    list_filter = ("code", "source", "offline")
    search_fields = ("order__order_code", "client_request_id", "note")
    raw_id_fields = ("order", "actor")
    readonly_fields = ("created_at",)


@admin.register(TrackingPoint)
class TrackingPointAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "lat", "lng", "status", "ts")
    list_filter = ("status",)
    search_fields = ("order__order_code",)
    raw_id_fields = ("order",)
