from __future__ import annotations

from datetime import datetime
from typing import Any

from django.utils import timezone
from ninja import Schema


class CartLineIn(Schema):
    product_id: int
    quantity: int


class ShippingAddressIn(Schema):
    name: str = ""
    phone: str = ""
    province: str = ""
    district: str = ""
    ward: str = ""
    detail: str = ""
    lat: float | None = None
    lng: float | None = None


class ShippingOptionIn(Schema):
    method: str = "standard"
    rush_distance_km: float | None = None


class CheckoutIn(Schema):
    items: list[CartLineIn] = []
    payment_method: str = "payos"
    shipping_address: ShippingAddressIn
    shipping_option: ShippingOptionIn = ShippingOptionIn()
    mode: str = "cart"
    voucher_code: str | None = None
    full_name: str = ""
    email: str = ""


class OrderLineOut(Schema):
    product_id: int | None
    title: str
    unit_price: int
    qty: int
    line_total: int


class OrderOut(Schema):
    id: int
    order_code: str
    seller_id: int
    shop_id: int | None = None
    shipper_id: int | None = None
    status: str
    subtotal: int
    shipping_fee: int
    discount_code: str
    discount_amount: int
    total_amount: int
    service_fee: int
    seller_service_fee: int
    payment_method: str
    payment_status: str
    payment_deadline: datetime | None = None
    payment_expired: bool
    shipping_method: str
    shipping_scope: str
    shipping_status: str
    shipping_meta: dict[str, Any] = {}
    shipping_address: dict[str, Any] = {}
    shipping_location: dict[str, Any] | None = None
    seller_bank_account: dict[str, Any] = {}
    created_at: datetime
    payment_remaining_seconds: int | None = None
    lines: list[OrderLineOut] = []

    @staticmethod
    def resolve_lines(obj):
        return list(obj.lines.all())

    @staticmethod
    def resolve_payment_remaining_seconds(obj):
        if obj.status != "pending" or obj.payment_deadline is None:
            return None
        return max(0, int((obj.payment_deadline - timezone.now()).total_seconds()))


class CheckoutOut(Schema):
    checkout_ref: str
    order_ids: list[int]
    order_count: int
    orders: list[OrderOut]
    shipping_summary: dict[str, Any]
    discount: dict[str, Any] | None = None


class CheckoutPreviewOut(Schema):
    payment_method: str
    orders: list[dict[str, Any]]
    shipping_summary: dict[str, Any]
    discount: dict[str, Any] | None = None
    grand_total: int


class OrderListOut(Schema):
    orders: list[OrderOut]
    next_cursor: str | None = None


class OrderCancelIn(Schema):
    reason: str = ""
