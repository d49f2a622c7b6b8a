from django.contrib import admin

from .models import Product, Shop


@admin.register(Shop)
class ShopAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "owner", "province", "is_active")
    list_filter = ("is_active", "province")
    search_fields = ("name", "owner__email", "address")
    raw_id_fields = ("owner",)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "price", "stock", "sold_count", "seller", "shop", "is_active")
    list_filter = ("is_active",)
    search_fields = ("title", "seller__email")
    raw_id_fields = ("seller", "shop")
    readonly_fields = ("sold_count", "created_at", "updated_at")
