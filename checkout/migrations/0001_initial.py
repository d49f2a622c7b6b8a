from __future__ import annotations

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Cart",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="cart", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="CartItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("qty", models.PositiveIntegerField(default=1)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("cart", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="items", to="checkout.cart")),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="cart_items", to="catalog.product")),
            ],
            options={
                "ordering": ["-updated_at", "-id"],
                "constraints": [
                    models.UniqueConstraint(fields=("cart", "product"), name="uniq_cart_product"),
                    models.CheckConstraint(condition=models.Q(("qty__gte", 1)), name="chk_cart_qty_gte_1"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order_code", models.CharField(max_length=32, unique=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("shipping", "Shipping"), ("completed", "Completed"), ("cancelled", "Cancelled")], db_index=True, default="pending", max_length=16)),
                ("full_name", models.CharField(blank=True, max_length=255)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("phone", models.CharField(blank=True, max_length=32)),
                ("shipping_address", models.JSONField(blank=True, default=dict)),
                ("subtotal", models.PositiveBigIntegerField(default=0)),
                ("shipping_fee", models.PositiveBigIntegerField(default=0)),
                ("discount_code", models.CharField(blank=True, default="", max_length=40)),
                ("discount_amount", models.PositiveBigIntegerField(default=0)),
                ("total_amount", models.PositiveBigIntegerField(default=0)),
                ("service_fee_percent", models.FloatField(default=0)),
                ("service_fee", models.PositiveBigIntegerField(default=0)),
                ("seller_service_fee_percent", models.FloatField(default=0)),
                ("seller_service_fee", models.PositiveBigIntegerField(default=0)),
                ("seller_bank_account", models.JSONField(blank=True, default=dict)),
                ("payment_method", models.CharField(choices=[("payos", "PayOS"), ("cod", "Cash on delivery"), ("banking", "Bank transfer"), ("momo", "MoMo"), ("qr", "QR transfer"), ("vnpay", "VNPay")], default="payos", max_length=16)),
                ("payment_status", models.CharField(choices=[("pending", "Pending"), ("success", "Success"), ("failure", "Failure")], default="pending", max_length=16)),
                ("payment_deadline", models.DateTimeField(blank=True, null=True)),
                ("payment_expired", models.BooleanField(default=False)),
                ("payment_retry_count", models.PositiveIntegerField(default=0)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("shipping_method", models.CharField(default="standard", max_length=16)),
                ("shipping_scope", models.CharField(blank=True, default="", max_length=32)),
                ("shipping_meta", models.JSONField(blank=True, default=dict)),
                ("shipping_status", models.CharField(choices=[("unassigned", "Unassigned"), ("assigned", "Assigned"), ("pickup_pending", "Pickup pending"), ("picked_up", "Picked up"), ("delivering", "Delivering"), ("delivered", "Delivered"), ("failed", "Failed"), ("returned", "Returned")], db_index=True, default="unassigned", max_length=20)),
                ("shipping_location", models.JSONField(blank=True, null=True)),
                ("shipping_updated_at", models.DateTimeField(blank=True, null=True)),
                ("shipping_synced_at", models.DateTimeField(blank=True, null=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("seller", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="seller_orders", to=settings.AUTH_USER_MODEL)),
                ("shipper", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="shipments", to=settings.AUTH_USER_MODEL)),
                ("shop", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="orders", to="catalog.shop")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="orders", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["user", "-created_at"], name="order_user_created_idx"),
                    models.Index(fields=["seller", "-created_at"], name="order_seller_created_idx"),
                    models.Index(fields=["shipper", "shipping_status"], name="order_shipper_status_idx"),
                    models.Index(fields=["payment_status", "payment_deadline"], name="order_payment_deadline_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("unit_price", models.PositiveBigIntegerField()),
                ("qty", models.PositiveIntegerField(default=1)),
                ("line_total", models.PositiveBigIntegerField(default=0)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="lines", to="checkout.order")),
                ("product", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="order_lines", to="catalog.product")),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="InventoryReservation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("checkout_ref", models.CharField(db_index=True, max_length=40)),
                ("qty", models.PositiveIntegerField()),
                ("status", models.CharField(choices=[("reserved", "Reserved"), ("committed", "Committed"), ("released", "Released")], default="reserved", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("order", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="reservations", to="checkout.order")),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="reservations", to="catalog.product")),
            ],
            options={
                "ordering": ["id"],
                "constraints": [
                    models.UniqueConstraint(fields=("checkout_ref", "product"), name="uniq_reservation_checkout_product"),
                ],
            },
        ),
    ]
