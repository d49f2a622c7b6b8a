from __future__ import annotations

from django.conf import settings
from django.db import models


class Voucher(models.Model):
    class Kind(models.TextChoices):
        FIXED = "fixed", "Fixed amount"
        PERCENT = "percent", "Percentage"

    class TargetType(models.TextChoices):
        ALL = "all", "All products"
        CATEGORY = "category", "By category"
        PRODUCT = "product", "By product"

    # Stored upper-case; lookups normalise the incoming code the same way.
    code = models.CharField(max_length=40, unique=True)
    kind = models.CharField(max_length=16, choices=Kind.choices, default=Kind.FIXED)
    value = models.PositiveBigIntegerField(default=0)
    cap = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Max discount for percentage vouchers. Empty or 0 means uncapped.",
    )
    min_eligible_total = models.PositiveBigIntegerField(default=0)

    # Scope: empty FK means "any".
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="personal_vouchers",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="seller_vouchers",
    )
    shop = models.ForeignKey(
        "catalog.Shop",
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="vouchers",
    )

    target_type = models.CharField(
        max_length=16, choices=TargetType.choices, default=TargetType.ALL
    )
    target_categories = models.JSONField(default=list, blank=True)
    target_products = models.ManyToManyField(
        "catalog.Product", blank=True, related_name="vouchers"
    )

    usage_limit = models.PositiveIntegerField(default=0, help_text="0 = unlimited")
    used_count = models.PositiveIntegerField(default=0)

    active = models.BooleanField(default=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]

    def __str__(self) -> str:
        return self.code

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    @property
    def is_exhausted(self) -> bool:
        return bool(self.usage_limit) and int(self.used_count) >= int(self.usage_limit)
