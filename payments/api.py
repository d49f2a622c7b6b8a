from __future__ import annotations

import logging

from ninja import Router
from ninja.errors import HttpError

from accounts.auth import JWTAuth

from .schemas import (
    PaymentLinkIn,
    PaymentLinkOut,
    PaymentMethodChangeIn,
    PaymentStatusOut,
    PaymentSyncOut,
    PayosWebhookIn,
    WebhookAckOut,
)
from .services.reconciliation import (
    change_payment_method,
    create_payment_link,
    handle_payment_webhook,
    payment_status_summary,
    sync_payment_link,
)

router = Router(tags=["payments"])

logger = logging.getLogger(__name__)

_auth = JWTAuth()


def _require_user(request):
    user = request.auth
    if not user:
        raise HttpError(401, "Unauthorized")
    return user


@router.post("/payos/links", response=PaymentLinkOut, auth=_auth)
def payos_create_link(request, payload: PaymentLinkIn):
    user = _require_user(request)
    result = create_payment_link(user=user, order_id=payload.order_id, provider="payos")
    link = result.link
    return {
        "order_id": result.order.id,
        "external_order_code": link.external_order_code,
        "link_id": link.link_id,
        "checkout_url": link.checkout_url,
        "qr_code": link.qr_code,
        "status": link.status,
        "amount": int(link.amount),
        "expires_at": link.expires_at,
        "retries_remaining": result.retries_remaining,
        "reused": result.reused,
    }


@router.get("/orders/{order_id}/status", response=PaymentStatusOut, auth=_auth)
def payment_status(request, order_id: int):
    user = _require_user(request)
    return payment_status_summary(order_id=order_id, user=user)


@router.post("/orders/{order_id}/payment-method", response=PaymentStatusOut, auth=_auth)
def payment_method_change(request, order_id: int, payload: PaymentMethodChangeIn):
    user = _require_user(request)
    change_payment_method(
        user=user, order_id=order_id, payment_method=payload.payment_method, decision=payload.decision
    )
    return payment_status_summary(order_id=order_id, user=user)


@router.post("/orders/{order_id}/sync", response=PaymentSyncOut, auth=_auth)
def payment_sync(request, order_id: int):
    user = _require_user(request)
    result = sync_payment_link(order_id=order_id, user=user)
    return {
        "order_id": result.order.id,
        "status": result.order.status,
        "payment_status": result.order.payment_status,
        "previous_payment_status": result.previous,
        "changed": result.changed,
        "notified": result.notified,
    }


@router.post("/payos/webhook", response=WebhookAckOut)
def payos_webhook(request, payload: PayosWebhookIn):
    return handle_payment_webhook(body=payload.model_dump(), provider="payos")
