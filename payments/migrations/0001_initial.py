from __future__ import annotations

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("checkout", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentLink",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider", models.CharField(choices=[("payos", "PayOS")], default="payos", max_length=20)),
                ("external_order_code", models.BigIntegerField(blank=True, null=True, unique=True)),
                ("link_id", models.CharField(blank=True, default="", max_length=64)),
                ("checkout_url", models.URLField(blank=True, default="", max_length=500)),
                ("qr_code", models.TextField(blank=True, default="")),
                ("status", models.CharField(blank=True, default="", max_length=32)),
                ("amount", models.PositiveBigIntegerField(default=0)),
                ("amount_paid", models.PositiveBigIntegerField(default=0)),
                ("amount_remaining", models.PositiveBigIntegerField(default=0)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, default="", max_length=255)),
                ("transactions", models.JSONField(blank=True, default=list)),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                ("last_webhook_at", models.DateTimeField(blank=True, null=True)),
                ("last_notified_status", models.CharField(blank=True, default="", max_length=32)),
                ("raw_response", models.JSONField(blank=True, default=dict)),
                ("raw_webhook", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("order", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="payment_link", to="checkout.order")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["provider", "status"], name="paylink_provider_status_idx"),
                ],
            },
        ),
    ]
