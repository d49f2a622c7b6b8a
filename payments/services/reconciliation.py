"""Payment-link lifecycle and reconciliation against the gateway.

Gateway statuses are bucketed into success/pending/failure. Order payment
fields are only written through ``checkout.services.save_order`` so a
concurrent courier or checkout write is detected instead of overwritten.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from api.errors import (
    NotFoundError,
    NotOrderOwner,
    OrderNotFound,
    PaymentAlreadySettled,
    PaymentGatewayError,
    PaymentRetryLimitReached,
    ValidationError,
)
from checkout.models import Order
from checkout.services import release_order_stock, save_order
from notifications.models import Notification
from notifications.services import notify_user, publish_to_rooms

from ..models import PaymentLink
from .payos import BUCKET_FAILURE, BUCKET_PENDING, BUCKET_SUCCESS, GatewayLink

logger = logging.getLogger(__name__)

ALTERNATE_METHODS = (
    ("payos", "PayOS"),
    ("vnpay", "VNPay"),
    ("cod", "Cash on delivery"),
)

_gateway_overrides: dict[str, Any] = {}


def override_gateway(name: str, gateway: Any | None) -> None:
    """Swap the gateway used for ``name``; ``None`` restores the configured one."""

    if gateway is None:
        _gateway_overrides.pop(name, None)
    else:
        _gateway_overrides[name] = gateway


def get_gateway(name: str = "payos"):
    if name in _gateway_overrides:
        return _gateway_overrides[name]
    gateways = getattr(settings, "PAYMENT_GATEWAYS", {}) or {}
    path = gateways.get(name)
    if not path:
        raise ValidationError("Unsupported payment provider", provider=name)
    return import_string(path)()


def retry_window() -> timedelta:
    return timedelta(hours=int(getattr(settings, "PAYMENT_RETRY_WINDOW_HOURS", 10) or 10))


def max_link_attempts() -> int:
    return int(getattr(settings, "PAYMENT_MAX_LINK_ATTEMPTS", 3) or 3)


def retries_remaining(order: Order) -> int:
    return max(0, max_link_attempts() - int(order.payment_retry_count or 0))


@dataclass(frozen=True)
class ReconcileResult:
    order: Order
    previous: str
    next: str | None
    notified: bool = False

    @property
    def changed(self) -> bool:
        return self.next is not None and self.next != self.previous


@dataclass(frozen=True)
class PaymentLinkResult:
    order: Order
    link: PaymentLink
    reused: bool

    @property
    def retries_remaining(self) -> int:
        return retries_remaining(self.order)


def _schedule_retry_window(order: Order, *, now) -> None:
    order.payment_expired = False
    order.payment_deadline = now + retry_window()


def apply_link_status(order: Order, status: str, *, bucket: str | None, now=None) -> tuple[str, str | None, list[str]]:
    """Move the order's payment fields to ``bucket``.

    Returns ``(previous, next, changed_fields)``; an unknown status leaves the
    order untouched and reports ``next`` as None.
    """

    now = now or timezone.now()
    previous = order.payment_status
    if bucket is None:
        logger.warning("Unknown gateway status ignored", extra={"order_id": order.id, "status": status})
        return previous, None, []

    fields = ["payment_status", "payment_deadline", "payment_expired"]

    if bucket == BUCKET_SUCCESS:
        order.payment_status = Order.PaymentStatus.SUCCESS
        order.payment_deadline = None
        order.payment_expired = False
        if order.paid_at is None:
            order.paid_at = now
            fields.append("paid_at")
        if order.status == Order.Status.CANCELLED:
            # Stock was already released; the payment needs a manual refund.
            logger.warning("Payment settled on a cancelled order", extra={"order_id": order.id, "status": status})
        elif order.status not in (Order.Status.PROCESSING, Order.Status.SHIPPING, Order.Status.COMPLETED):
            order.status = Order.Status.PROCESSING
            fields.append("status")

    elif bucket == BUCKET_FAILURE:
        order.payment_status = Order.PaymentStatus.FAILURE
        # Repeat deliveries of the same failure keep the window already opened.
        if previous != Order.PaymentStatus.FAILURE or order.payment_deadline is None:
            _schedule_retry_window(order, now=now)
        if order.status not in (Order.Status.SHIPPING, Order.Status.COMPLETED, Order.Status.CANCELLED):
            order.status = Order.Status.PENDING
            fields.append("status")

    elif bucket == BUCKET_PENDING:
        order.payment_status = Order.PaymentStatus.PENDING
        if order.payment_deadline is None or order.payment_deadline < now:
            _schedule_retry_window(order, now=now)
        else:
            order.payment_expired = False

    return previous, bucket, fields


def _store_link(row: PaymentLink, link: GatewayLink, *, now) -> None:
    row.external_order_code = link.order_code
    row.status = link.status
    if link.link_id:
        row.link_id = link.link_id
    if link.checkout_url:
        row.checkout_url = link.checkout_url
    if link.qr_code:
        row.qr_code = link.qr_code
    if link.amount:
        row.amount = link.amount
    row.amount_paid = link.amount_paid
    row.amount_remaining = link.amount_remaining
    if link.expires_at is not None:
        row.expires_at = link.expires_at
    row.cancelled_at = link.cancelled_at
    row.cancellation_reason = link.cancellation_reason
    if link.transactions:
        row.transactions = link.transactions
    row.raw_response = link.raw
    row.last_synced_at = now


def _notify_paid(order: Order) -> None:
    notify_user(
        user_id=order.user_id,
        kind=Notification.Kind.PAYMENT,
        title="Payment received",
        message=f"Payment for order {order.order_code} was confirmed.",
        ref_id=str(order.id),
    )
    notify_user(
        user_id=order.seller_id,
        kind=Notification.Kind.PAYMENT,
        title="New paid order",
        message=f"Order {order.order_code} has been paid and is ready to prepare.",
        ref_id=str(order.id),
    )
    publish_to_rooms(
        rooms=[order.user_id, order.seller_id],
        event="order:paymentConfirmed",
        payload={
            "orderId": order.id,
            "status": order.status,
            "paymentStatus": order.payment_status,
            "totalAmount": int(order.total_amount),
        },
    )


def reconcile_payment(
    *,
    order_id: int,
    status: str,
    link: GatewayLink | None = None,
    gateway=None,
    now=None,
    webhook: dict[str, Any] | None = None,
) -> ReconcileResult:
    """Fold one gateway status into the order.

    Re-applying the bucket an order is already in changes nothing visible;
    the paid notification only fires on the first move into success.
    """

    now = now or timezone.now()
    gateway = gateway or get_gateway()

    with transaction.atomic():
        order = Order.objects.filter(id=int(order_id)).first()
        if not order:
            raise OrderNotFound("Order not found", order_id=order_id)

        previous, nxt, fields = apply_link_status(order, status, bucket=gateway.bucket_for(status), now=now)
        if fields:
            save_order(order, fields=fields)

        notify = nxt == BUCKET_SUCCESS and previous != Order.PaymentStatus.SUCCESS

        row = PaymentLink.objects.filter(order=order).first()
        if row is not None:
            if link is not None:
                _store_link(row, link, now=now)
            elif status:
                row.status = str(status).strip().upper()
            if webhook is not None:
                row.raw_webhook = webhook
                row.last_webhook_at = now
            if notify:
                row.last_notified_status = row.status
            row.save()

    if notify:
        _notify_paid(order)

    logger.info(
        "Payment reconciled",
        extra={"order_id": order.id, "status": status, "previous": previous, "next": nxt},
    )
    return ReconcileResult(order=order, previous=previous, next=nxt, notified=notify)


def _load_buyer_order(*, order_id: int, user) -> Order:
    order = Order.objects.filter(id=int(order_id)).first()
    if not order:
        raise OrderNotFound("Order not found", order_id=order_id)
    if int(order.user_id) != int(user.id) and not user.is_staff:
        raise NotOrderOwner("You do not have access to this order", order_id=order_id)
    return order


def _is_reusable(row: PaymentLink | None, *, gateway, now) -> bool:
    if row is None or not row.status or not row.checkout_url:
        return False
    if gateway.bucket_for(row.status) != BUCKET_PENDING:
        return False
    return row.expires_at is None or row.expires_at > now


def generate_external_order_code(*, now=None) -> int:
    """Numeric code unique per link; milliseconds plus two random digits."""

    now = now or timezone.now()
    return int(f"{int(now.timestamp() * 1000)}{secrets.randbelow(90) + 10}")


def _redirect_url(template: str, *, order_id: int, fallback: str) -> str:
    template = (template or "").strip()
    if not template:
        return fallback
    return template.replace(":orderId", str(order_id))


def create_payment_link(*, user, order_id: int, provider: str = "payos", now=None) -> PaymentLinkResult:
    now = now or timezone.now()
    order = _load_buyer_order(order_id=order_id, user=user)
    gateway = get_gateway(provider)

    if order.payment_method != provider:
        raise ValidationError(
            "Order is not paid through this provider",
            order_id=order.id,
            payment_method=order.payment_method,
        )
    if order.status == Order.Status.CANCELLED:
        raise ValidationError("Order was cancelled", order_id=order.id)
    if order.payment_status == Order.PaymentStatus.SUCCESS:
        raise PaymentAlreadySettled("Order is already paid", order_id=order.id)

    row = PaymentLink.objects.filter(order=order).first()

    if order.payment_expired:
        # A lapsed window reopens on request; the stale link is dropped.
        _schedule_retry_window(order, now=now)
        save_order(order, fields=["payment_expired", "payment_deadline"])
        if row is not None:
            row.status = ""
            row.save(update_fields=["status", "updated_at"])

    elif row is not None and row.external_order_code:
        try:
            current = gateway.get_link(order_code=row.external_order_code)
        except PaymentGatewayError as e:
            logger.warning("Could not refresh existing payment link", extra={"order_id": order.id, "error": str(e)})
        else:
            result = reconcile_payment(
                order_id=order.id, status=current.status, link=current, gateway=gateway, now=now
            )
            order = result.order
            row.refresh_from_db()
            if order.payment_status == Order.PaymentStatus.SUCCESS:
                raise PaymentAlreadySettled("Order is already paid", order_id=order.id, status=row.status)
        if _is_reusable(row, gateway=gateway, now=now):
            return PaymentLinkResult(order=order, link=row, reused=True)

    if int(order.payment_retry_count or 0) >= max_link_attempts():
        logger.warning(
            "Payment link retry limit reached",
            extra={"order_id": order.id, "attempts": order.payment_retry_count},
        )
        raise PaymentRetryLimitReached(
            f"Payment was attempted {max_link_attempts()} times, choose another payment method",
            order_id=order.id,
            retries_remaining=0,
            available_payment_methods=[m for m, _ in alternate_methods(exclude=provider)],
        )

    amount = int(order.total_amount)
    if amount <= 0:
        raise ValidationError("Order amount is not payable", order_id=order.id)

    client_origin = str(getattr(settings, "CLIENT_ORIGIN", "") or "").rstrip("/")
    address = order.shipping_address or {}
    link = gateway.create_link(
        order_code=generate_external_order_code(now=now),
        amount=amount,
        description=f"Thanh toan DH {order.order_code[-6:]}",
        return_url=_redirect_url(
            getattr(settings, "PAYOS_RETURN_URL", ""),
            order_id=order.id,
            fallback=f"{client_origin}/checkout-success/{order.id}?method={provider}",
        ),
        cancel_url=_redirect_url(
            getattr(settings, "PAYOS_CANCEL_URL", ""),
            order_id=order.id,
            fallback=f"{client_origin}/orders/{order.id}?payment={provider}&status=cancelled",
        ),
        items=[
            {"name": line.title, "quantity": int(line.qty), "price": int(line.unit_price)}
            for line in order.lines.all()
        ],
        buyer={
            "buyerName": address.get("name") or order.full_name,
            "buyerEmail": order.email,
            "buyerPhone": address.get("phone") or order.phone,
            "buyerAddress": address.get("formatted") or "",
        },
    )

    with transaction.atomic():
        row = row or PaymentLink(order=order, provider=provider)
        _store_link(row, link, now=now)
        row.save()

        order.payment_retry_count = int(order.payment_retry_count or 0) + 1
        _, _, fields = apply_link_status(order, link.status, bucket=gateway.bucket_for(link.status), now=now)
        save_order(order, fields=["payment_retry_count", *fields])

    logger.info(
        "Payment link created",
        extra={"order_id": order.id, "external_order_code": link.order_code, "attempt": order.payment_retry_count},
    )
    return PaymentLinkResult(order=order, link=row, reused=False)


SWITCHABLE_METHODS = (Order.PaymentMethod.PAYOS, Order.PaymentMethod.COD)


def change_payment_method(*, user, order_id: int, payment_method: str, decision: str = "confirm", now=None) -> Order:
    """Switch an unpaid order between PayOS and cash on delivery.

    Moving to COD either confirms the order for fulfillment or, with
    ``decision="cancel"``, cancels it and gives its stock back. Moving to PayOS
    opens a fresh retry window. The previous gateway link is dropped either way.
    """

    now = now or timezone.now()
    method = (payment_method or "").strip().lower()
    if method not in SWITCHABLE_METHODS:
        raise ValidationError("Only PayOS or cash on delivery can be chosen", payment_method=method)
    decision = (decision or "confirm").strip().lower()
    if method == Order.PaymentMethod.COD and decision not in ("confirm", "cancel"):
        raise ValidationError("Decision must be confirm or cancel", decision=decision)

    order = _load_buyer_order(order_id=order_id, user=user)
    if order.payment_status == Order.PaymentStatus.SUCCESS:
        raise PaymentAlreadySettled("Order is already paid", order_id=order.id)
    if order.payment_expired or order.status != Order.Status.PENDING:
        raise ValidationError(
            "Payment method can only change while the order awaits payment",
            order_id=order.id,
            status=order.status,
            payment_expired=order.payment_expired,
        )
    if order.payment_method == method:
        return order

    previous_method = order.payment_method
    order.payment_method = method
    order.payment_status = Order.PaymentStatus.PENDING
    fields = ["payment_method", "payment_status", "payment_deadline", "payment_expired"]
    cancelled = False

    if method == Order.PaymentMethod.PAYOS:
        _schedule_retry_window(order, now=now)
    else:
        cancelled = decision == "cancel"
        order.payment_deadline = None
        order.payment_expired = cancelled
        order.payment_retry_count = 0
        order.status = Order.Status.CANCELLED if cancelled else Order.Status.PROCESSING
        fields += ["payment_retry_count", "status"]

    with transaction.atomic():
        PaymentLink.objects.filter(order=order).delete()
        save_order(order, fields=fields)

    if cancelled:
        release_order_stock(order_id=order.id)

    publish_to_rooms(
        rooms=[order.user_id, order.seller_id],
        event="order:paymentMethodChanged",
        payload={"orderId": order.id, "paymentMethod": method, "status": order.status},
    )
    logger.info(
        "Payment method changed",
        extra={"order_id": order.id, "from": previous_method, "to": method, "decision": decision},
    )
    return order


def sync_payment_link(*, order_id: int, user=None, now=None) -> ReconcileResult:
    """Poll the gateway for the order's current link and reconcile it."""

    if user is not None:
        order = _load_buyer_order(order_id=order_id, user=user)
    else:
        order = Order.objects.filter(id=int(order_id)).first()
        if not order:
            raise OrderNotFound("Order not found", order_id=order_id)

    row = PaymentLink.objects.filter(order=order).first()
    if row is None or not row.external_order_code:
        raise NotFoundError("Order has no payment link", order_id=order.id)

    gateway = get_gateway(row.provider)
    link = gateway.get_link(order_code=row.external_order_code)
    return reconcile_payment(order_id=order.id, status=link.status, link=link, gateway=gateway, now=now)


def handle_payment_webhook(*, body: dict[str, Any], provider: str = "payos", now=None) -> dict[str, Any]:
    """Verify, then reconcile against the gateway's own view of the link."""

    gateway = get_gateway(provider)
    data = gateway.verify_webhook(body)
    order_code = int(data["orderCode"])

    row = PaymentLink.objects.filter(provider=provider, external_order_code=order_code).first()
    if row is None:
        logger.warning("Webhook for unknown payment link ignored", extra={"order_code": order_code})
        return {"status": "ignored", "orderCode": order_code}

    link = gateway.get_link(order_code=order_code)
    result = reconcile_payment(
        order_id=row.order_id,
        status=link.status,
        link=link,
        gateway=gateway,
        now=now,
        webhook=body,
    )
    return {
        "status": "ok",
        "orderCode": order_code,
        "orderId": result.order.id,
        "paymentStatus": result.order.payment_status,
    }


def alternate_methods(*, exclude: str | None = None) -> list[tuple[str, str]]:
    allowed = set(getattr(settings, "CHECKOUT_PAYMENT_METHODS", None) or Order.PaymentMethod.values)
    return [(m, label) for m, label in ALTERNATE_METHODS if m in allowed and m != exclude]


def payment_status_summary(*, order_id: int, user) -> dict[str, Any]:
    order = _load_buyer_order(order_id=order_id, user=user)
    row = PaymentLink.objects.filter(order=order).first()
    gateway_status = (row.status if row else "") or "unknown"
    return {
        "order_id": order.id,
        "status": order.status,
        "payment_status": order.payment_status,
        "gateway_status": gateway_status,
        "payment_expired": order.payment_expired,
        "payment_deadline": order.payment_deadline,
        "can_retry_payment": (
            order.payment_status == Order.PaymentStatus.FAILURE or order.payment_expired
        ),
        "retries_remaining": retries_remaining(order),
        "available_payment_methods": [
            {"method": m, "label": label} for m, label in alternate_methods()
        ],
    }


def pending_link_order_ids() -> list[int]:
    """Orders whose link may still move: not settled, not cancelled."""

    return list(
        PaymentLink.objects.exclude(external_order_code__isnull=True)
        .exclude(order__payment_status=Order.PaymentStatus.SUCCESS)
        .exclude(order__status__in=[Order.Status.CANCELLED, Order.Status.COMPLETED])
        .order_by("id")
        .values_list("order_id", flat=True)
    )
