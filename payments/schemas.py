from __future__ import annotations

from datetime import datetime
from typing import Any

from ninja import Schema


class PaymentLinkIn(Schema):
    order_id: int


class PaymentLinkOut(Schema):
    order_id: int
    external_order_code: int | None = None
    link_id: str = ""
    checkout_url: str = ""
    qr_code: str = ""
    status: str = ""
    amount: int = 0
    expires_at: datetime | None = None
    retries_remaining: int = 0
    reused: bool = False


class PaymentMethodChangeIn(Schema):
    payment_method: str
    decision: str = "confirm"


class PaymentMethodOptionOut(Schema):
    method: str
    label: str


class PaymentStatusOut(Schema):
    order_id: int
    status: str
    payment_status: str
    gateway_status: str
    payment_expired: bool
    payment_deadline: datetime | None = None
    can_retry_payment: bool
    retries_remaining: int
    available_payment_methods: list[PaymentMethodOptionOut] = []


class PaymentSyncOut(Schema):
    order_id: int
    status: str
    payment_status: str
    previous_payment_status: str
    changed: bool
    notified: bool


class PayosWebhookIn(Schema):
    code: str = ""
    desc: str = ""
    success: bool = False
    data: dict[str, Any] = {}
    signature: str = ""


class WebhookAckOut(Schema):
    status: str
    orderCode: int | None = None
    orderId: int | None = None
    paymentStatus: str | None = None
