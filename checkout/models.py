from __future__ import annotations

from django.conf import settings
from django.db import models


class Cart(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="cart",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"cart:user:{self.user_id}"


class CartItem(models.Model):
    cart = models.ForeignKey(
        Cart, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        "catalog.Product", on_delete=models.CASCADE, related_name="cart_items"
    )
    qty = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["cart", "product"], name="uniq_cart_product"),
            models.CheckConstraint(condition=models.Q(
                qty__gte=1), name="chk_cart_qty_gte_1"),
        ]
        ordering = ["-updated_at", "-id"]

    def __str__(self) -> str:
        return f"cart:{self.cart_id} product:{self.product_id} x{self.qty}"


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        SHIPPING = "shipping", "Shipping"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentMethod(models.TextChoices):
        PAYOS = "payos", "PayOS"
        COD = "cod", "Cash on delivery"
        BANKING = "banking", "Bank transfer"
        MOMO = "momo", "MoMo"
        QR = "qr", "QR transfer"
        VNPAY = "vnpay", "VNPay"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCESS = "success", "Success"
        FAILURE = "failure", "Failure"

    class ShippingStatus(models.TextChoices):
        UNASSIGNED = "unassigned", "Unassigned"
        ASSIGNED = "assigned", "Assigned"
        PICKUP_PENDING = "pickup_pending", "Pickup pending"
        PICKED_UP = "picked_up", "Picked up"
        DELIVERING = "delivering", "Delivering"
        DELIVERED = "delivered", "Delivered"
        FAILED = "failed", "Failed"
        RETURNED = "returned", "Returned"

    order_code = models.CharField(max_length=32, unique=True)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="seller_orders",
    )
    shop = models.ForeignKey(
        "catalog.Shop",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="orders",
    )
    shipper = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="shipments",
    )

    status = models.CharField(
        max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)

    # Buyer contact snapshot
    full_name = models.CharField(max_length=255, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=32, blank=True)
    shipping_address = models.JSONField(default=dict, blank=True)

    # Money (single currency, whole units)
    subtotal = models.PositiveBigIntegerField(default=0)
    shipping_fee = models.PositiveBigIntegerField(default=0)
    discount_code = models.CharField(max_length=40, blank=True, default="")
    discount_amount = models.PositiveBigIntegerField(default=0)
    total_amount = models.PositiveBigIntegerField(default=0)

    service_fee_percent = models.FloatField(default=0)
    service_fee = models.PositiveBigIntegerField(default=0)
    seller_service_fee_percent = models.FloatField(default=0)
    seller_service_fee = models.PositiveBigIntegerField(default=0)
    seller_bank_account = models.JSONField(default=dict, blank=True)

    # Payment
    payment_method = models.CharField(
        max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.PAYOS)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    payment_deadline = models.DateTimeField(null=True, blank=True)
    payment_expired = models.BooleanField(default=False)
    payment_retry_count = models.PositiveIntegerField(default=0)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Shipping
    shipping_method = models.CharField(max_length=16, default="standard")
    shipping_scope = models.CharField(max_length=32, blank=True, default="")
    shipping_meta = models.JSONField(default=dict, blank=True)
    shipping_status = models.CharField(
        max_length=20, choices=ShippingStatus.choices, default=ShippingStatus.UNASSIGNED, db_index=True
    )
    shipping_location = models.JSONField(null=True, blank=True)
    shipping_updated_at = models.DateTimeField(null=True, blank=True)
    shipping_synced_at = models.DateTimeField(null=True, blank=True)

    # Optimistic concurrency counter; bumped by every guarded write.
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="order_user_created_idx"),
            models.Index(fields=["seller", "-created_at"], name="order_seller_created_idx"),
            models.Index(fields=["shipper", "shipping_status"], name="order_shipper_status_idx"),
            models.Index(fields=["payment_status", "payment_deadline"], name="order_payment_deadline_idx"),
        ]

    def __str__(self) -> str:
        return self.order_code or f"order:{self.id}"

    @property
    def is_final(self) -> bool:
        return self.status in {self.Status.COMPLETED, self.Status.CANCELLED}


class OrderLine(models.Model):
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(
        "catalog.Product",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="order_lines",
    )

    title = models.CharField(max_length=255)
    unit_price = models.PositiveBigIntegerField()
    qty = models.PositiveIntegerField(default=1)
    line_total = models.PositiveBigIntegerField(default=0)

    class Meta:
        ordering = ["id"]

    def save(self, *args, **kwargs):
        self.line_total = int(self.unit_price) * int(self.qty)
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"order:{self.order_id} {self.title} x{self.qty}"


class InventoryReservation(models.Model):
    class Status(models.TextChoices):
        RESERVED = "reserved", "Reserved"
        COMMITTED = "committed", "Committed"
        RELEASED = "released", "Released"

    # One checkout attempt may fan out into several orders.
    checkout_ref = models.CharField(max_length=40, db_index=True)
    order = models.ForeignKey(
        Order,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="reservations",
    )
    product = models.ForeignKey(
        "catalog.Product", on_delete=models.PROTECT, related_name="reservations"
    )
    qty = models.PositiveIntegerField()
    status = models.CharField(
        max_length=16, choices=Status.choices, default=Status.RESERVED)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["checkout_ref", "product"], name="uniq_reservation_checkout_product"),
        ]

    def __str__(self) -> str:
        return f"{self.checkout_ref}:{self.product_id} x{self.qty} [{self.status}]"
