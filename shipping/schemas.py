from __future__ import annotations

from datetime import datetime
from typing import Any

from ninja import Schema

from checkout.schemas import CartLineIn, ShippingAddressIn, ShippingOptionIn


class LocationIn(Schema):
    lat: float
    lng: float
    accuracy: float | None = None


class ShippingQuoteIn(Schema):
    items: list[CartLineIn]
    shipping_address: ShippingAddressIn
    shipping_option: ShippingOptionIn = ShippingOptionIn()


class ShippingQuoteOut(Schema):
    method: str
    totalShippingFee: int
    breakdown: list[dict[str, Any]]


class StatusUpdateIn(Schema):
    status: str
    note: str = ""
    location: LocationIn | None = None
    client_request_id: str | None = None
    occurred_at: datetime | None = None
    offline: bool = False


class CheckpointIn(Schema):
    location: LocationIn
    note: str = ""
    client_request_id: str | None = None
    occurred_at: datetime | None = None
    offline: bool = False


class OfflineUpdateIn(Schema):
    # Loosely typed so one malformed item is reported on its own, not as a 422 for the batch.
    order_id: Any = None
    type: Any = None
    status: Any = None
    note: Any = None
    location: Any = None
    client_request_id: Any = None
    occurred_at: Any = None
    id: Any = None


class OfflineSyncIn(Schema):
    updates: list[OfflineUpdateIn | Any]


class OfflineSyncOut(Schema):
    results: list[dict[str, Any]]
    successCount: int
    failureCount: int


class TimelineEventOut(Schema):
    id: int
    code: str
    label: str
    note: str
    occurred_at: datetime
    source: str
    client_request_id: str
    offline: bool
    lat: float | None = None
    lng: float | None = None
    accuracy: float | None = None


class CourierOrderOut(Schema):
    id: int
    order_code: str
    status: str
    total_amount: int
    payment_method: str
    payment_status: str
    shipping_method: str
    shipping_scope: str
    shipping_fee: int
    service_fee: int
    shipping_status: str
    shipping_address: dict[str, Any] = {}
    shipping_location: dict[str, Any] | None = None
    shipping_updated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CourierOrderListOut(Schema):
    orders: list[CourierOrderOut]
    next_cursor: str | None = None


class ShipmentUpdateOut(Schema):
    order: CourierOrderOut
    event: TimelineEventOut | None = None
    duplicate: bool = False
    timeline: list[TimelineEventOut] = []


class CourierSummaryOut(Schema):
    activeCount: int
    deliveredToday: int
    failedToday: int
    totalIncome: int
    todayIncome: int
    recentOrders: list[CourierOrderOut]
