from __future__ import annotations

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("checkout", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ShipmentEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=32)),
                ("label", models.CharField(blank=True, max_length=120)),
                ("note", models.TextField(blank=True)),
                ("occurred_at", models.DateTimeField()),
                ("source", models.CharField(choices=[("courier", "Courier"), ("system", "System")], default="courier", max_length=16)),
                ("client_request_id", models.CharField(blank=True, default="", max_length=80)),
                ("offline", models.BooleanField(default=False)),
                ("lat", models.FloatField(blank=True, null=True)),
                ("lng", models.FloatField(blank=True, null=True)),
                ("accuracy", models.FloatField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("actor", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="shipment_events", to=settings.AUTH_USER_MODEL)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="shipment_events", to="checkout.order")),
            ],
            options={
                "ordering": ["occurred_at", "id"],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("client_request_id", ""), _negated=True), fields=("order", "client_request_id"), name="uniq_shipment_event_client_request"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TrackingPoint",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("lat", models.FloatField()),
                ("lng", models.FloatField()),
                ("status", models.CharField(max_length=32)),
                ("ts", models.DateTimeField()),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="tracking_points", to="checkout.order")),
            ],
            options={
                "ordering": ["ts", "id"],
                "indexes": [
                    models.Index(fields=["order", "ts"], name="trackpoint_order_ts_idx"),
                ],
            },
        ),
    ]
