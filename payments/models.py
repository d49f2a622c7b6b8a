from __future__ import annotations

from django.db import models


class PaymentLink(models.Model):
    """Latest gateway payment link for an order.

    ``status`` keeps the gateway's raw status string; the order carries the
    bucketed payment status.
    """

    class Provider(models.TextChoices):
        PAYOS = "payos", "PayOS"

    order = models.OneToOneField(
        "checkout.Order",
        on_delete=models.CASCADE,
        related_name="payment_link",
    )
    provider = models.CharField(
        max_length=20, choices=Provider.choices, default=Provider.PAYOS)

    external_order_code = models.BigIntegerField(unique=True, null=True, blank=True)
    link_id = models.CharField(max_length=64, blank=True, default="")
    checkout_url = models.URLField(max_length=500, blank=True, default="")
    qr_code = models.TextField(blank=True, default="")

    status = models.CharField(max_length=32, blank=True, default="")
    amount = models.PositiveBigIntegerField(default=0)
    amount_paid = models.PositiveBigIntegerField(default=0)
    amount_remaining = models.PositiveBigIntegerField(default=0)

    expires_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")
    transactions = models.JSONField(default=list, blank=True)

    last_synced_at = models.DateTimeField(null=True, blank=True)
    last_webhook_at = models.DateTimeField(null=True, blank=True)
    last_notified_status = models.CharField(max_length=32, blank=True, default="")

    raw_response = models.JSONField(default=dict, blank=True)
    raw_webhook = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["provider", "status"], name="paylink_provider_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.provider}:{self.external_order_code or '-'} [{self.status or 'new'}]"
