"""Courier-facing shipment state machine.

Status updates, location checkpoints and offline batch replay all go through
here. Writes to the order are version-checked; a replay carrying a
``client_request_id`` already on the timeline is reported as a duplicate and
changes nothing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Iterable

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from api.errors import (
    AuthorizationError,
    ConflictError,
    IllegalTransition,
    NotOrderOwner,
    OrderNotFound,
    ServiceError,
    ValidationError,
)
from checkout.models import Order
from checkout.services import paginate_orders, save_order
from notifications.services import publish_to_room

from .models import ShipmentEvent, TrackingPoint

logger = logging.getLogger(__name__)

S = Order.ShippingStatus

STATUS_FLOW: dict[str, tuple[str, ...]] = {
    S.UNASSIGNED: (S.ASSIGNED,),
    S.ASSIGNED: (S.PICKUP_PENDING, S.PICKED_UP),
    S.PICKUP_PENDING: (S.PICKED_UP,),
    S.PICKED_UP: (S.DELIVERING,),
    S.DELIVERING: (S.DELIVERED, S.FAILED, S.RETURNED),
    S.FAILED: (S.PICKUP_PENDING,),
    S.DELIVERED: (),
    S.RETURNED: (),
}

TERMINAL_STATUSES = frozenset({S.DELIVERED, S.RETURNED})

CODE_LOCATION = "location"
CODE_REASSIGNED = "reassigned"

STATUS_LABELS = {
    S.UNASSIGNED: "Awaiting courier",
    S.ASSIGNED: "Courier assigned",
    S.PICKUP_PENDING: "Heading to pickup",
    S.PICKED_UP: "Picked up",
    S.DELIVERING: "Out for delivery",
    S.DELIVERED: "Delivered",
    S.FAILED: "Delivery failed",
    S.RETURNED: "Returned to sender",
    CODE_LOCATION: "Location update",
    CODE_REASSIGNED: "Courier changed",
}

# Lifecycle status implied by entering a shipping status.
LIFECYCLE_FOR_STATUS = {
    S.PICKED_UP: Order.Status.SHIPPING,
    S.DELIVERING: Order.Status.SHIPPING,
    S.DELIVERED: Order.Status.COMPLETED,
    S.FAILED: Order.Status.PROCESSING,
    S.RETURNED: Order.Status.CANCELLED,
}

CLAIMABLE_LIFECYCLE = (Order.Status.PENDING, Order.Status.PROCESSING)


@dataclass(frozen=True)
class ShipmentUpdate:
    order: Order
    event: ShipmentEvent | None
    duplicate: bool = False


def is_transition_allowed(current: str, nxt: str) -> bool:
    return nxt == current or nxt in STATUS_FLOW.get(current, ())


def sanitize_location(raw: Any) -> dict[str, float | None] | None:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raw = {k: getattr(raw, k, None) for k in ("lat", "lng", "accuracy")}

    def _num(value) -> float | None:
        if value is None or value == "" or isinstance(value, bool):
            return None
        try:
            out = float(value)
        except (TypeError, ValueError):
            return None
        return out if math.isfinite(out) else None

    lat, lng = _num(raw.get("lat")), _num(raw.get("lng"))
    if lat is None or lng is None:
        return None
    return {"lat": lat, "lng": lng, "accuracy": _num(raw.get("accuracy"))}


def _parse_occurred_at(value) -> datetime:
    if value in (None, ""):
        return timezone.now()
    if isinstance(value, datetime):
        dt = value
    else:
        dt = parse_datetime(str(value))
        if dt is None:
            raise ValidationError("occurredAt is not a valid timestamp", occurred_at=str(value))
    if timezone.is_naive(dt):
        dt = timezone.make_aware(dt, dt_timezone.utc)
    return dt


def timeline_for(order: Order) -> list[ShipmentEvent]:
    return list(order.shipment_events.order_by("occurred_at", "id"))


def _coerce_order_id(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("orderId must be an integer", order_id=str(value))
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError("orderId must be an integer", order_id=str(value)) from None


def _load_courier_order(*, courier, order_id: int) -> Order:
    order = Order.objects.filter(id=_coerce_order_id(order_id)).first()

    if not order:
        raise OrderNotFound("Order not found", order_id=order_id)
    if not order.shipper_id:
        raise NotOrderOwner("Order has no courier assigned yet", order_id=order.id)
    if int(order.shipper_id) != int(courier.id):
        raise NotOrderOwner("Order is assigned to another courier", order_id=order.id)
    return order


def _find_duplicate(order: Order, client_request_id: str) -> ShipmentUpdate | None:
    if not client_request_id:
        return None
    existing = ShipmentEvent.objects.filter(order=order, client_request_id=client_request_id).first()
    if not existing:
        return None
    logger.info(
        "Duplicate shipment update ignored",
        extra={"order_id": order.id, "client_request_id": client_request_id},
    )
    return ShipmentUpdate(order=order, event=existing, duplicate=True)


def _publish_shipping_event(order: Order, event: ShipmentEvent) -> None:
    payload = {
        "orderId": order.id,
        "shippingStatus": order.shipping_status,
        "status": order.status,
        "timelineEvent": event.as_payload(),
    }
    publish_to_room(room=order.user_id, event="order:shipping", payload=payload)
    publish_to_room(room=order.seller_id, event="seller:shipping", payload=payload)
    if order.shipper_id:
        publish_to_room(room=order.shipper_id, event="shipper:shipping", payload=payload)


def _apply_location(order: Order, location: dict, *, at: datetime, status: str, fields: list[str]) -> None:
    TrackingPoint.objects.create(order=order, lat=location["lat"], lng=location["lng"], status=status, ts=at)

    # Offline replays may arrive late; never move the last-known point backwards.
    current = order.shipping_location or {}
    current_at = parse_datetime(str(current.get("updatedAt") or "")) if current else None
    if current_at is not None and timezone.is_naive(current_at):
        current_at = timezone.make_aware(current_at, dt_timezone.utc)
    if current_at is None or at >= current_at:
        order.shipping_location = {**location, "updatedAt": at.isoformat()}
        fields.append("shipping_location")


def _record(
    *,
    order: Order,
    courier,
    code: str,
    note: str,
    at: datetime,
    client_request_id: str,
    offline: bool,
    location: dict | None,
    fields: list[str],
    source: str = ShipmentEvent.Source.COURIER,
) -> ShipmentEvent:
    """Append the event and persist ``fields`` in one version-checked unit."""

    now = timezone.now()
    if order.shipping_updated_at is None or at > order.shipping_updated_at:
        order.shipping_updated_at = at
    order.shipping_synced_at = now
    fields.extend(["shipping_updated_at", "shipping_synced_at"])

    with transaction.atomic():
        event = ShipmentEvent.objects.create(
            order=order,
            actor=courier,
            code=code,
            label=STATUS_LABELS.get(code, code),
            note=(note or "").strip(),
            occurred_at=at,
            source=source,
            client_request_id=client_request_id,
            offline=bool(offline),
            lat=location["lat"] if location else None,
            lng=location["lng"] if location else None,
            accuracy=location["accuracy"] if location else None,
        )
        if location:
            _apply_location(order, location, at=at, status=code, fields=fields)
        save_order(order, fields=fields)
    return event


def _record_and_publish(*, order: Order, client_request_id: str, **kwargs) -> ShipmentUpdate:
    try:
        event = _record(order=order, client_request_id=client_request_id, **kwargs)
    except IntegrityError:
        # Lost a race against the same replay.
        order.refresh_from_db()
        duplicate = _find_duplicate(order, client_request_id)
        if duplicate is None:
            raise
        return duplicate
    _publish_shipping_event(order, event)
    return ShipmentUpdate(order=order, event=event)


def update_status(
    *,
    courier,
    order_id: int,
    status: str,
    note: str = "",
    location: Any = None,
    client_request_id: str | None = None,
    occurred_at: Any = None,
    offline: bool = False,
) -> ShipmentUpdate:
    order = _load_courier_order(courier=courier, order_id=order_id)
    client_request_id = (client_request_id or "").strip()

    nxt = (status or "").strip().lower()
    if nxt not in S.values:
        raise ValidationError("Unknown shipping status", status=nxt)

    duplicate = _find_duplicate(order, client_request_id)
    if duplicate:
        return duplicate

    current = order.shipping_status or S.UNASSIGNED
    if not is_transition_allowed(current, nxt):
        logger.warning(
            "Illegal shipping transition",
            extra={"order_id": order.id, "from": current, "to": nxt},
        )
        raise IllegalTransition(
            f"Cannot move shipment from {current} to {nxt}",
            order_id=order.id,
            current=current,
            requested=nxt,
        )

    at = _parse_occurred_at(occurred_at)
    fields = ["shipping_status"]
    order.shipping_status = nxt
    if nxt != current and nxt in LIFECYCLE_FOR_STATUS:
        order.status = LIFECYCLE_FOR_STATUS[nxt]
        fields.append("status")

    return _record_and_publish(
        order=order,
        courier=courier,
        code=nxt,
        note=note,
        at=at,
        client_request_id=client_request_id,
        offline=offline,
        location=sanitize_location(location),
        fields=fields,
    )


def add_checkpoint(
    *,
    courier,
    order_id: int,
    location: Any,
    note: str = "",
    client_request_id: str | None = None,
    occurred_at: Any = None,
    offline: bool = False,
) -> ShipmentUpdate:
    order = _load_courier_order(courier=courier, order_id=order_id)
    client_request_id = (client_request_id or "").strip()

    duplicate = _find_duplicate(order, client_request_id)
    if duplicate:
        return duplicate

    point = sanitize_location(location)
    if not point:
        raise ValidationError("A valid lat/lng is required for a checkpoint", order_id=order.id)

    return _record_and_publish(
        order=order,
        courier=courier,
        code=CODE_LOCATION,
        note=note,
        at=_parse_occurred_at(occurred_at),
        client_request_id=client_request_id,
        offline=offline,
        location=point,
        fields=[],
    )


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def _offline_item(raw: Any) -> dict[str, Any]:
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise ValidationError("Each update must be an object")
    return raw


def sync_offline_updates(*, courier, updates: Iterable[Any]) -> dict[str, Any]:
    """Replay queued updates in the order given; each one stands alone."""

    updates = list(updates or [])
    if not updates:
        raise ValidationError("No updates to sync")

    results: list[dict[str, Any]] = []
    for raw in updates:
        item_id = None
        order_id = None
        try:
            item = _offline_item(raw)
            item_id = item.get("clientRequestId") or item.get("client_request_id") or item.get("id")
            order_id = item.get("orderId", item.get("order_id"))
            if order_id in (None, ""):
                raise ValidationError("orderId is required")
            order_id = _coerce_order_id(order_id)
            kind = _text(item.get("type")).lower()
            common = {
                "courier": courier,
                "order_id": order_id,
                "note": _text(item.get("note")),
                "location": item.get("location"),
                "client_request_id": _text(item.get("clientRequestId") or item.get("client_request_id")),
                "occurred_at": item.get("occurredAt", item.get("occurred_at")),
                "offline": True,
            }
            if kind == "status":
                outcome = update_status(status=_text(item.get("status")), **common)
            elif kind == "checkpoint":
                outcome = add_checkpoint(**common)
            else:
                raise ValidationError("Unknown update type", type=kind)
        except ServiceError as exc:
            results.append(
                {
                    "id": item_id,
                    "orderId": order_id,
                    "success": False,
                    "duplicate": False,
                    "code": exc.code,
                    "message": exc.message,
                }
            )
            continue

        results.append(
            {
                "id": item_id,
                "orderId": outcome.order.id,
                "success": True,
                "duplicate": outcome.duplicate,
                "shippingStatus": outcome.order.shipping_status,
            }
        )

    success_count = sum(1 for r in results if r["success"])
    logger.info(
        "Offline sync processed",
        extra={"courier_id": courier.id, "success": success_count, "failed": len(results) - success_count},
    )
    return {
        "results": results,
        "successCount": success_count,
        "failureCount": len(results) - success_count,
    }


def is_claimable(order: Order) -> bool:
    if order.shipper_id or order.shipping_status != S.UNASSIGNED:
        return False
    if order.status not in CLAIMABLE_LIFECYCLE:
        return False
    return (
        order.payment_status == Order.PaymentStatus.SUCCESS
        or order.payment_method == Order.PaymentMethod.COD
    )


def claim_order(*, courier, order_id: int) -> ShipmentUpdate:
    if getattr(courier, "role", "") != "shipper":
        raise AuthorizationError("Only couriers can claim orders")

    order = Order.objects.filter(id=_coerce_order_id(order_id)).first()
    if not order:
        raise OrderNotFound("Order not found", order_id=order_id)
    if order.shipper_id:
        raise ConflictError("Order already claimed", order_id=order.id)
    if not is_claimable(order):
        raise ConflictError("Order is not available for claiming", order_id=order.id, status=order.status)

    order.shipper = courier
    order.shipping_status = S.ASSIGNED
    event = _record(
        order=order,
        courier=courier,
        code=S.ASSIGNED,
        note=f"Claimed by courier {courier.id}",
        at=timezone.now(),
        client_request_id="",
        offline=False,
        location=None,
        fields=["shipper", "shipping_status"],
    )

    payload = {"orderId": order.id, "shippingStatus": order.shipping_status}
    publish_to_room(room=order.user_id, event="order:shippingAssigned", payload=payload)
    publish_to_room(room=courier.id, event="shipper:orderAssigned", payload=payload)
    logger.info("Order claimed", extra={"order_id": order.id, "courier_id": courier.id})
    return ShipmentUpdate(order=order, event=event)


def list_assigned_orders(*, courier, status: str = "active", limit: int = 20, cursor: Any = None):
    qs = Order.objects.filter(shipper_id=courier.id)
    status = (status or "active").strip().lower()
    if status == "active":
        qs = qs.exclude(shipping_status__in=list(TERMINAL_STATUSES))
    elif status == "completed":
        qs = qs.filter(shipping_status=S.DELIVERED)
    elif status == "failed":
        qs = qs.filter(shipping_status__in=[S.FAILED, S.RETURNED])
    elif status != "all":
        if status not in S.values:
            raise ValidationError("Unknown shipping status filter", status=status)
        qs = qs.filter(shipping_status=status)
    return paginate_orders(qs, limit=limit, cursor=cursor)


def list_available_orders(*, limit: int = 20, cursor: Any = None):
    qs = Order.objects.filter(
        shipper__isnull=True,
        shipping_status=S.UNASSIGNED,
        status__in=list(CLAIMABLE_LIFECYCLE),
    ).filter(
        Q(payment_status=Order.PaymentStatus.SUCCESS) | Q(payment_method=Order.PaymentMethod.COD)
    )
    return paginate_orders(qs, limit=limit, cursor=cursor)


def _net_shipping_income(rows) -> int:
    return sum(max(int(fee or 0) - int(service or 0), 0) for fee, service in rows)


def courier_summary(*, courier, now=None) -> dict[str, Any]:
    """Dashboard counters; income is shipping fee minus the platform's cut."""

    now = now or timezone.now()
    day_start = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)

    mine = Order.objects.filter(shipper_id=courier.id)
    delivered = mine.filter(shipping_status=S.DELIVERED)
    delivered_today = delivered.filter(updated_at__gte=day_start)

    return {
        "activeCount": mine.exclude(shipping_status__in=list(TERMINAL_STATUSES)).count(),
        "deliveredToday": delivered_today.count(),
        "failedToday": mine.filter(shipping_status__in=[S.FAILED, S.RETURNED], updated_at__gte=day_start).count(),
        "totalIncome": _net_shipping_income(delivered.values_list("shipping_fee", "service_fee")),
        "todayIncome": _net_shipping_income(delivered_today.values_list("shipping_fee", "service_fee")),
        "recentOrders": list(mine.order_by("-updated_at", "-id")[:5]),
    }
