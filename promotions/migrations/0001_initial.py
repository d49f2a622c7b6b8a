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
            name="Voucher",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=40, unique=True)),
                ("kind", models.CharField(choices=[("fixed", "Fixed amount"), ("percent", "Percentage")], default="fixed", max_length=16)),
                ("value", models.PositiveBigIntegerField(default=0)),
                ("cap", models.PositiveBigIntegerField(blank=True, help_text="Max discount for percentage vouchers. Empty or 0 means uncapped.", null=True)),
                ("min_eligible_total", models.PositiveBigIntegerField(default=0)),
                ("target_type", models.CharField(choices=[("all", "All products"), ("category", "By category"), ("product", "By product")], default="all", max_length=16)),
                ("target_categories", models.JSONField(blank=True, default=list)),
                ("usage_limit", models.PositiveIntegerField(default=0, help_text="0 = unlimited")),
                ("used_count", models.PositiveIntegerField(default=0)),
                ("active", models.BooleanField(default=True)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("seller", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="seller_vouchers", to=settings.AUTH_USER_MODEL)),
                ("shop", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="vouchers", to="catalog.shop")),
                ("target_products", models.ManyToManyField(blank=True, related_name="vouchers", to="catalog.product")),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="personal_vouchers", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["code"],
            },
        ),
    ]
