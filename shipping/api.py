from __future__ import annotations

from ninja import Router
from ninja.errors import HttpError

from accounts.auth import JWTAuth
from checkout.services import quote_cart_shipping

from . import tracking
from .schemas import (
    CheckpointIn,
    CourierOrderListOut,
    CourierSummaryOut,
    OfflineSyncIn,
    OfflineSyncOut,
    ShipmentUpdateOut,
    ShippingQuoteIn,
    ShippingQuoteOut,
    StatusUpdateIn,
)

router = Router(tags=["shipping"])

_auth = JWTAuth()


def _require_courier(request):
    user = request.auth
    if not user:
        raise HttpError(401, "Unauthorized")
    if getattr(user, "role", "") != "shipper":
        raise HttpError(403, "Courier account required")
    return user


def _update_out(outcome: tracking.ShipmentUpdate) -> dict:
    return {
        "order": outcome.order,
        "event": outcome.event,
        "duplicate": outcome.duplicate,
        "timeline": tracking.timeline_for(outcome.order),
    }


@router.post("/quote", response=ShippingQuoteOut)
def shipping_quote(request, payload: ShippingQuoteIn):
    return quote_cart_shipping(
        items=[{"productId": it.product_id, "quantity": it.quantity} for it in payload.items],
        destination=payload.shipping_address.model_dump(),
        shipping_method=payload.shipping_option.method,
        rush_distance_km=payload.shipping_option.rush_distance_km,
    )


@router.get("/courier/orders", response=CourierOrderListOut, auth=_auth)
def courier_orders(request, status: str = "active", limit: int = 20, cursor: str | None = None):
    courier = _require_courier(request)
    orders, next_cursor = tracking.list_assigned_orders(
        courier=courier, status=status, limit=limit, cursor=cursor
    )
    return {"orders": orders, "next_cursor": next_cursor}


@router.get("/courier/summary", response=CourierSummaryOut, auth=_auth)
def courier_dashboard(request):
    courier = _require_courier(request)
    return tracking.courier_summary(courier=courier)


@router.get("/courier/orders/available", response=CourierOrderListOut, auth=_auth)
def courier_available_orders(request, limit: int = 20, cursor: str | None = None):
    _require_courier(request)
    orders, next_cursor = tracking.list_available_orders(limit=limit, cursor=cursor)
    return {"orders": orders, "next_cursor": next_cursor}


@router.post("/courier/orders/{order_id}/claim", response=ShipmentUpdateOut, auth=_auth)
def courier_claim(request, order_id: int):
    courier = _require_courier(request)
    return _update_out(tracking.claim_order(courier=courier, order_id=order_id))


@router.post("/courier/orders/{order_id}/status", response=ShipmentUpdateOut, auth=_auth)
def courier_update_status(request, order_id: int, payload: StatusUpdateIn):
    courier = _require_courier(request)
    outcome = tracking.update_status(
        courier=courier,
        order_id=order_id,
        status=payload.status,
        note=payload.note,
        location=payload.location.model_dump() if payload.location else None,
        client_request_id=payload.client_request_id,
        occurred_at=payload.occurred_at,
        offline=payload.offline,
    )
    return _update_out(outcome)


@router.post("/courier/orders/{order_id}/checkpoint", response=ShipmentUpdateOut, auth=_auth)
def courier_checkpoint(request, order_id: int, payload: CheckpointIn):
    courier = _require_courier(request)
    outcome = tracking.add_checkpoint(
        courier=courier,
        order_id=order_id,
        location=payload.location.model_dump(),
        note=payload.note,
        client_request_id=payload.client_request_id,
        occurred_at=payload.occurred_at,
        offline=payload.offline,
    )
    return _update_out(outcome)


@router.post("/courier/sync", response=OfflineSyncOut, auth=_auth)
def courier_sync(request, payload: OfflineSyncIn):
    courier = _require_courier(request)
    return tracking.sync_offline_updates(
        courier=courier,
        updates=payload.updates,
    )
