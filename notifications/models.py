from __future__ import annotations

from django.conf import settings
from django.db import models


class Notification(models.Model):
    class Kind(models.TextChoices):
        ORDER = "order", "Order"
        PAYMENT = "payment", "Payment"
        SHIPPING = "shipping", "Shipping"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    kind = models.CharField(max_length=16, choices=Kind.choices, default=Kind.ORDER)
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True)

    # Loose reference to the subject (e.g. order id) and a client-side link.
    ref_id = models.CharField(max_length=64, blank=True)
    url = models.CharField(max_length=255, blank=True)

    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="notif_user_read_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}: {self.title}"
