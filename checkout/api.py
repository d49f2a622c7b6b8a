from __future__ import annotations

from ninja import Router
from ninja.errors import HttpError

from accounts.auth import JWTAuth

from .schemas import CheckoutIn, CheckoutOut, CheckoutPreviewOut, OrderCancelIn, OrderListOut, OrderOut
from .services import (
    cancel_order,
    checkout,
    get_order_for_user,
    list_buyer_orders,
    list_seller_orders,
    preview_checkout,
)

router = Router(tags=["checkout"])

_auth = JWTAuth()


def _require_user(request):
    user = request.auth
    if not user:
        raise HttpError(401, "Unauthorized")
    return user


def _items(payload: CheckoutIn) -> list[dict]:
    return [{"productId": it.product_id, "quantity": it.quantity} for it in payload.items or []]


@router.post("/preview", response=CheckoutPreviewOut, auth=_auth)
def checkout_preview(request, payload: CheckoutIn):
    user = _require_user(request)
    plan = preview_checkout(
        user=user,
        items=_items(payload),
        payment_method=payload.payment_method,
        address=payload.shipping_address.model_dump(),
        shipping_method=payload.shipping_option.method,
        rush_distance_km=payload.shipping_option.rush_distance_km,
        voucher_code=payload.voucher_code,
    )
    preview = plan.as_preview()
    return {
        "payment_method": preview["paymentMethod"],
        "orders": preview["orders"],
        "shipping_summary": preview["shippingSummary"],
        "discount": preview["discount"],
        "grand_total": preview["grandTotal"],
    }


@router.post("", response={201: CheckoutOut}, auth=_auth)
def checkout_confirm(request, payload: CheckoutIn):
    user = _require_user(request)
    result = checkout(
        user=user,
        items=_items(payload),
        payment_method=payload.payment_method,
        address=payload.shipping_address.model_dump(),
        shipping_method=payload.shipping_option.method,
        rush_distance_km=payload.shipping_option.rush_distance_km,
        voucher_code=payload.voucher_code,
        mode=payload.mode,
        full_name=payload.full_name,
        email=payload.email,
    )
    return 201, {
        "checkout_ref": result.checkout_ref,
        "order_ids": [o.id for o in result.orders],
        "order_count": len(result.orders),
        "orders": result.orders,
        "shipping_summary": result.shipping_summary,
        "discount": result.discount_summary,
    }


@router.get("/orders/{order_id}", response=OrderOut, auth=_auth)
def order_detail(request, order_id: int):
    user = _require_user(request)
    return get_order_for_user(order_id=order_id, user=user)


@router.get("/orders", response=OrderListOut, auth=_auth)
def my_orders(request, status: str | None = None, limit: int = 20, cursor: str | None = None):
    user = _require_user(request)
    orders, next_cursor = list_buyer_orders(user=user, status=status, limit=limit, cursor=cursor)
    return {"orders": orders, "next_cursor": next_cursor}


@router.get("/seller/orders", response=OrderListOut, auth=_auth)
def seller_orders(request, status: str | None = None, limit: int = 20, cursor: str | None = None):
    user = _require_user(request)
    if getattr(user, "role", "") != "seller" and not user.is_staff:
        raise HttpError(403, "Seller account required")
    orders, next_cursor = list_seller_orders(seller=user, status=status, limit=limit, cursor=cursor)
    return {"orders": orders, "next_cursor": next_cursor}


@router.post("/orders/{order_id}/cancel", response=OrderOut, auth=_auth)
def order_cancel(request, order_id: int, payload: OrderCancelIn):
    user = _require_user(request)
    return cancel_order(user=user, order_id=order_id, reason=payload.reason)
