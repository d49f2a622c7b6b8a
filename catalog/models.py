from __future__ import annotations

from django.conf import settings
from django.db import models


class Shop(models.Model):
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="shops"
    )
    name = models.CharField(max_length=255)

    # Registered pickup location, used for shipping fee computation.
    province = models.CharField(max_length=120, blank=True)
    address = models.CharField(max_length=255, blank=True)
    lat = models.FloatField(null=True, blank=True)
    lng = models.FloatField(null=True, blank=True)

    # Bank-transfer metadata snapshotted onto orders.
    bank_name = models.CharField(max_length=120, blank=True)
    bank_account_number = models.CharField(max_length=64, blank=True)
    bank_account_holder = models.CharField(max_length=255, blank=True)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return self.name

    def bank_account_snapshot(self) -> dict:
        return {
            "bankName": self.bank_name or "",
            "accountNumber": self.bank_account_number or "",
            "accountHolder": self.bank_account_holder or "",
        }


class Product(models.Model):
    title = models.CharField(max_length=255)
    price = models.PositiveBigIntegerField(default=0)
    stock = models.IntegerField(default=0)
    sold_count = models.IntegerField(default=0)

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="products"
    )
    shop = models.ForeignKey(
        Shop, on_delete=models.SET_NULL, null=True, blank=True, related_name="products"
    )
    categories = models.JSONField(default=list, blank=True)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0),
                name="chk_product_stock_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return self.title
