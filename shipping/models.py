from __future__ import annotations

from django.conf import settings
from django.db import models


class ShipmentEvent(models.Model):
    """Append-only delivery timeline entry for one order."""

    class Source(models.TextChoices):
        COURIER = "courier", "Courier"
        SYSTEM = "system", "System"

    order = models.ForeignKey(
        "checkout.Order", on_delete=models.CASCADE, related_name="shipment_events"
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="shipment_events",
    )

    # A shipping status code, or "location" / "reassigned".
    code = models.CharField(max_length=32)
    label = models.CharField(max_length=120, blank=True)
    note = models.TextField(blank=True)
    occurred_at = models.DateTimeField()
    source = models.CharField(max_length=16, choices=Source.choices, default=Source.COURIER)

    client_request_id = models.CharField(max_length=80, blank=True, default="")
    offline = models.BooleanField(default=False)

    lat = models.FloatField(null=True, blank=True)
    lng = models.FloatField(null=True, blank=True)
    accuracy = models.FloatField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["occurred_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["order", "client_request_id"],
                condition=~models.Q(client_request_id=""),
                name="uniq_shipment_event_client_request",
            ),
        ]

    def __str__(self) -> str:
        return f"order:{self.order_id} {self.code} @ {self.occurred_at:%Y-%m-%d %H:%M}"

    @property
    def location(self) -> dict | None:
        if self.lat is None or self.lng is None:
            return None
        return {"lat": self.lat, "lng": self.lng, "accuracy": self.accuracy}

    def as_payload(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "label": self.label,
            "note": self.note,
            "at": self.occurred_at.isoformat(),
            "source": self.source,
            "clientRequestId": self.client_request_id or None,
            "offline": self.offline,
            "location": self.location,
        }


class TrackingPoint(models.Model):
    order = models.ForeignKey(
        "checkout.Order", on_delete=models.CASCADE, related_name="tracking_points"
    )
    lat = models.FloatField()
    lng = models.FloatField()
    status = models.CharField(max_length=32)
    ts = models.DateTimeField()

    class Meta:
        ordering = ["ts", "id"]
        indexes = [
            models.Index(fields=["order", "ts"], name="trackpoint_order_ts_idx"),
        ]

    def __str__(self) -> str:
        return f"order:{self.order_id} ({self.lat}, {self.lng}) {self.status}"
