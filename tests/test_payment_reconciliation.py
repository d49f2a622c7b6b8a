from __future__ import annotations

import itertools
from datetime import timedelta

import pytest
from django.utils import timezone

from api.errors import (
    PaymentAlreadySettled,
    PaymentRetryLimitReached,
    ValidationError,
    WebhookVerificationError,
)
from catalog.models import Product
from checkout.models import Order
from checkout.services import checkout, expire_unpaid_orders
from notifications.models import Notification
from payments.models import PaymentLink
from payments.services import payos, reconciliation
from payments.services.reconciliation import (
    apply_link_status,
    create_payment_link,
    handle_payment_webhook,
    payment_status_summary,
    reconcile_payment,
    sync_payment_link,
)


@pytest.fixture(autouse=True)
def sequential_codes(monkeypatch):
    counter = itertools.count(1_700_000_000_001)
    monkeypatch.setattr(reconciliation, "generate_external_order_code", lambda *, now=None: next(counter))


@pytest.fixture
def payos_order(buyer, address, product_a1):
    return checkout(
        user=buyer,
        items=[{"productId": product_a1.id, "quantity": 2}],
        payment_method="payos",
        address=address,
        mode="buy-now",
    ).orders[0]


def _webhook(order_code):
    return {"code": "00", "desc": "success", "success": True, "data": {"orderCode": order_code}, "signature": "sig"}


@pytest.mark.django_db
def test_create_link(payos_order, buyer, gateway):
    result = create_payment_link(user=buyer, order_id=payos_order.id)

    assert result.reused is False
    assert result.link.checkout_url.startswith("https://pay.example.test/")
    assert result.order.payment_retry_count == 1
    assert result.retries_remaining == 2
    sent = gateway.created[0]
    assert sent["amount"] == payos_order.total_amount
    assert len(sent["description"]) <= 25
    assert sent["items"][0]["quantity"] == 2


@pytest.mark.django_db
def test_pending_link_is_reused(payos_order, buyer, gateway):
    first = create_payment_link(user=buyer, order_id=payos_order.id)
    again = create_payment_link(user=buyer, order_id=payos_order.id)

    assert again.reused is True
    assert again.link.external_order_code == first.link.external_order_code
    assert len(gateway.created) == 1
    assert Order.objects.get(id=payos_order.id).payment_retry_count == 1


@pytest.mark.django_db
def test_paid_webhook_notifies_once(payos_order, buyer, seller_a, gateway, realtime):
    link = create_payment_link(user=buyer, order_id=payos_order.id).link
    gateway.statuses[link.external_order_code] = "PAID"

    ack = handle_payment_webhook(body=_webhook(link.external_order_code))
    assert ack["status"] == "ok"

    order = Order.objects.get(id=payos_order.id)
    assert order.payment_status == Order.PaymentStatus.SUCCESS
    assert order.status == Order.Status.PROCESSING
    assert order.payment_deadline is None
    assert order.paid_at is not None
    assert set(
        Notification.objects.filter(kind=Notification.Kind.PAYMENT).values_list("user_id", flat=True)
    ) == {buyer.id, seller_a.id}
    assert len(realtime.for_event("order:paymentConfirmed")) == 2

    # Gateways redeliver; a repeat PAID changes nothing and stays quiet.
    handle_payment_webhook(body=_webhook(link.external_order_code))
    assert Notification.objects.filter(kind=Notification.Kind.PAYMENT).count() == 2
    assert len(realtime.for_event("order:paymentConfirmed")) == 2

    row = PaymentLink.objects.get(order=order)
    assert row.status == "PAID"
    assert row.last_webhook_at is not None


@pytest.mark.django_db
def test_failure_opens_retry_window(payos_order, buyer, gateway):
    link = create_payment_link(user=buyer, order_id=payos_order.id).link
    gateway.statuses[link.external_order_code] = "CANCELLED"

    before = timezone.now()
    handle_payment_webhook(body=_webhook(link.external_order_code))

    order = Order.objects.get(id=payos_order.id)
    assert order.payment_status == Order.PaymentStatus.FAILURE
    assert order.status == Order.Status.PENDING
    assert before + timedelta(hours=10) <= order.payment_deadline <= timezone.now() + timedelta(hours=10)

    summary = payment_status_summary(order_id=order.id, user=buyer)
    assert summary["can_retry_payment"] is True
    assert summary["gateway_status"] == "CANCELLED"
    assert {m["method"] for m in summary["available_payment_methods"]} == {"payos", "vnpay", "cod"}


@pytest.mark.django_db
def test_failed_link_is_replaced_until_the_limit(payos_order, buyer, gateway):
    for attempt in range(3):
        link = create_payment_link(user=buyer, order_id=payos_order.id).link
        gateway.statuses[link.external_order_code] = "EXPIRED"

    assert len(gateway.created) == 3
    with pytest.raises(PaymentRetryLimitReached) as excinfo:
        create_payment_link(user=buyer, order_id=payos_order.id)
    assert excinfo.value.status_code == 429
    assert excinfo.value.code == "payment_retry_limit"
    assert excinfo.value.context["retries_remaining"] == 0


@pytest.mark.django_db
def test_paid_order_refuses_new_link(payos_order, buyer, gateway):
    link = create_payment_link(user=buyer, order_id=payos_order.id).link
    gateway.statuses[link.external_order_code] = "PAID"

    with pytest.raises(PaymentAlreadySettled):
        create_payment_link(user=buyer, order_id=payos_order.id)
    assert Order.objects.get(id=payos_order.id).payment_status == Order.PaymentStatus.SUCCESS


@pytest.mark.django_db
def test_expired_order_gets_a_fresh_window(payos_order, buyer, gateway):
    Order.objects.filter(id=payos_order.id).update(
        payment_expired=True, payment_deadline=timezone.now() - timedelta(hours=1)
    )
    result = create_payment_link(user=buyer, order_id=payos_order.id)
    assert result.order.payment_expired is False
    assert result.order.payment_deadline > timezone.now()


@pytest.mark.django_db
def test_cod_order_has_no_gateway_link(buyer, address, product_a1, gateway):
    order = checkout(
        user=buyer,
        items=[{"productId": product_a1.id, "quantity": 1}],
        payment_method="cod",
        address=address,
        mode="buy-now",
    ).orders[0]
    with pytest.raises(ValidationError):
        create_payment_link(user=buyer, order_id=order.id)


@pytest.mark.django_db
def test_webhook_for_unknown_link_is_acknowledged(gateway):
    assert handle_payment_webhook(body=_webhook(123))["status"] == "ignored"


@pytest.mark.django_db
def test_webhook_with_bad_signature(gateway):
    gateway.signature_ok = False
    with pytest.raises(WebhookVerificationError):
        handle_payment_webhook(body=_webhook(123))


@pytest.mark.django_db
def test_sync_polls_the_gateway(payos_order, buyer, gateway):
    link = create_payment_link(user=buyer, order_id=payos_order.id).link
    gateway.statuses[link.external_order_code] = "PROCESSING"

    result = sync_payment_link(order_id=payos_order.id, user=buyer)
    assert result.changed is True
    assert result.notified is True
    assert result.order.payment_status == Order.PaymentStatus.SUCCESS


@pytest.mark.django_db
def test_unknown_gateway_status_is_ignored(payos_order, gateway):
    result = reconcile_payment(order_id=payos_order.id, status="SOMETHING_NEW")
    assert result.next is None
    order = Order.objects.get(id=payos_order.id)
    assert order.payment_status == Order.PaymentStatus.PENDING
    assert order.version == payos_order.version


@pytest.mark.django_db
def test_late_payment_leaves_a_cancelled_order_cancelled(payos_order, buyer, product_a1, gateway):
    link = create_payment_link(user=buyer, order_id=payos_order.id).link
    Order.objects.filter(id=payos_order.id).update(payment_deadline=timezone.now() - timedelta(minutes=1))
    assert expire_unpaid_orders(cancel=True) == [payos_order.id]
    assert Product.objects.get(id=product_a1.id).stock == 10

    gateway.statuses[link.external_order_code] = "PAID"
    sync_payment_link(order_id=payos_order.id)

    order = Order.objects.get(id=payos_order.id)
    assert order.status == Order.Status.CANCELLED
    assert order.payment_status == Order.PaymentStatus.SUCCESS
    assert Product.objects.get(id=product_a1.id).stock == 10


def test_failure_keeps_a_cancelled_order_cancelled():
    order = Order(payment_status="pending", status="cancelled")
    apply_link_status(order, "EXPIRED", bucket=payos.bucket_for("EXPIRED"))
    assert order.status == "cancelled"


def test_pending_keeps_a_live_deadline_and_renews_a_lapsed_one():
    now = timezone.now()
    live = Order(payment_status="pending", status="pending", payment_deadline=now + timedelta(hours=2))
    apply_link_status(live, "PENDING", bucket=payos.bucket_for("PENDING"), now=now)
    assert live.payment_deadline == now + timedelta(hours=2)

    lapsed = Order(payment_status="pending", status="pending", payment_deadline=now - timedelta(minutes=1))
    apply_link_status(lapsed, "UNDERPAID", bucket=payos.bucket_for("UNDERPAID"), now=now)
    assert lapsed.payment_deadline == now + timedelta(hours=10)


def test_failure_does_not_rewind_a_shipped_order():
    order = Order(payment_status="success", status="shipping")
    apply_link_status(order, "REJECTED", bucket=payos.bucket_for("REJECTED"))
    assert order.status == "shipping"
    assert order.payment_status == "failure"


def test_success_does_not_rewind_a_completed_order():
    order = Order(payment_status="pending", status="completed")
    previous, nxt, fields = apply_link_status(order, "PAID", bucket=payos.bucket_for("PAID"))
    assert (previous, nxt) == ("pending", "success")
    assert order.status == "completed"
    assert "status" not in fields


@pytest.mark.parametrize(
    "status,bucket",
    [("PAID", "success"), ("processing", "success"), ("PENDING", "pending"), ("UNDERPAID", "pending"),
     ("CANCELLED", "failure"), ("EXPIRED", "failure"), ("FAILED", "failure"), ("REJECTED", "failure"), ("", None)],
)
def test_bucket_mapping(status, bucket):
    assert payos.bucket_for(status) == bucket


class _FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        return self._body


def test_payos_webhook_signature_roundtrip():
    gateway = payos.PayosGateway()
    data = {"orderCode": 123, "amount": 3000, "description": "VQRIO123", "reference": None, "code": "00"}
    body = {"data": data, "signature": payos.sign_data(data, key="test-checksum-key")}
    assert gateway.verify_webhook(body) == data

    tampered = {"data": {**data, "amount": 1}, "signature": body["signature"]}
    with pytest.raises(WebhookVerificationError):
        gateway.verify_webhook(tampered)


def test_payos_create_link_signs_request(monkeypatch):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, json=json, headers=headers)
        return _FakeResponse(
            200,
            {
                "code": "00",
                "desc": "success",
                "data": {
                    "orderCode": json["orderCode"],
                    "amount": json["amount"],
                    "status": "PENDING",
                    "paymentLinkId": "abc",
                    "checkoutUrl": "https://pay.payos.vn/web/abc",
                    "qrCode": "0002",
                    "expiredAt": 1_900_000_000,
                },
            },
        )

    monkeypatch.setattr(payos.requests, "post", fake_post)
    link = payos.PayosGateway().create_link(
        order_code=42,
        amount=112_000,
        description="Thanh toan DH ABCDEF and more text",
        return_url="https://shop.test/ok",
        cancel_url="https://shop.test/cancel",
    )

    signed = {
        "amount": 112_000,
        "cancelUrl": "https://shop.test/cancel",
        "description": "Thanh toan DH ABCDEF and ",
        "orderCode": 42,
        "returnUrl": "https://shop.test/ok",
    }
    assert captured["url"].endswith("/v2/payment-requests")
    assert captured["headers"]["x-client-id"] == "test-client"
    assert captured["json"]["signature"] == payos.sign_data(signed, key="test-checksum-key")
    assert link.status == "PENDING"
    assert link.link_id == "abc"
    assert link.expires_at.year == 2030


def test_payos_error_response_raises(monkeypatch):
    from api.errors import PaymentGatewayError

    monkeypatch.setattr(
        payos.requests, "get", lambda url, headers=None, timeout=None: _FakeResponse(200, {"code": "101", "desc": "not found"})
    )
    with pytest.raises(PaymentGatewayError):
        payos.PayosGateway().get_link(order_code=1)
