from __future__ import annotations

import itertools
from datetime import timedelta

import pytest
from django.utils import timezone

from api.errors import (
    NotOrderOwner,
    OrderNotCancellable,
    PaymentRetryLimitReached,
    ValidationError,
)
from catalog.models import Product
from checkout.models import InventoryReservation, Order
from checkout.services import cancel_order, checkout, list_buyer_orders, list_seller_orders
from notifications.models import Notification
from payments.models import PaymentLink
from payments.services import reconciliation
from payments.services.reconciliation import change_payment_method, create_payment_link
from shipping import tracking


@pytest.fixture(autouse=True)
def sequential_codes(monkeypatch):
    counter = itertools.count(1_800_000_000_001)
    monkeypatch.setattr(reconciliation, "generate_external_order_code", lambda *, now=None: next(counter))


def _place(buyer, address, product, *, qty=1, method="payos"):
    return checkout(
        user=buyer,
        items=[{"productId": product.id, "quantity": qty}],
        payment_method=method,
        address=address,
        mode="buy-now",
    ).orders[0]


def _exhaust_links(order, buyer, gateway):
    for _ in range(3):
        link = create_payment_link(user=buyer, order_id=order.id).link
        gateway.statuses[link.external_order_code] = "EXPIRED"
    with pytest.raises(PaymentRetryLimitReached):
        create_payment_link(user=buyer, order_id=order.id)


@pytest.mark.django_db
def test_switch_to_cod_after_retry_limit(buyer, address, product_a1, gateway):
    order = _place(buyer, address, product_a1)
    _exhaust_links(order, buyer, gateway)

    changed = change_payment_method(user=buyer, order_id=order.id, payment_method="cod")

    assert changed.payment_method == Order.PaymentMethod.COD
    assert changed.status == Order.Status.PROCESSING
    assert changed.payment_retry_count == 0
    assert changed.payment_deadline is None
    assert not PaymentLink.objects.filter(order_id=order.id).exists()
    assert tracking.is_claimable(Order.objects.get(id=order.id))


@pytest.mark.django_db
def test_switch_to_cod_with_cancel_releases_stock(buyer, address, product_b):
    order = _place(buyer, address, product_b, qty=2)
    assert Product.objects.get(id=product_b.id).stock == 3

    changed = change_payment_method(user=buyer, order_id=order.id, payment_method="cod", decision="cancel")

    assert changed.status == Order.Status.CANCELLED
    assert changed.payment_expired is True
    assert Product.objects.get(id=product_b.id).stock == 5


@pytest.mark.django_db
def test_switch_to_payos_opens_a_retry_window(buyer, address, product_a1):
    order = _place(buyer, address, product_a1, method="cod")

    before = timezone.now()
    changed = change_payment_method(user=buyer, order_id=order.id, payment_method="payos")

    assert changed.payment_method == Order.PaymentMethod.PAYOS
    assert changed.status == Order.Status.PENDING
    assert changed.payment_deadline >= before + timedelta(hours=10)


@pytest.mark.django_db
def test_payment_method_change_rules(buyer, seller_a, address, product_a1):
    order = _place(buyer, address, product_a1)

    with pytest.raises(ValidationError):
        change_payment_method(user=buyer, order_id=order.id, payment_method="momo")
    with pytest.raises(ValidationError):
        change_payment_method(user=buyer, order_id=order.id, payment_method="cod", decision="maybe")
    with pytest.raises(NotOrderOwner):
        change_payment_method(user=seller_a, order_id=order.id, payment_method="cod")

    version = Order.objects.get(id=order.id).version
    same = change_payment_method(user=buyer, order_id=order.id, payment_method="payos")
    assert same.version == version

    Order.objects.filter(id=order.id).update(payment_expired=True)
    with pytest.raises(ValidationError):
        change_payment_method(user=buyer, order_id=order.id, payment_method="cod")


@pytest.mark.django_db
def test_buyer_cancel_releases_stock_and_tells_seller(buyer, seller_b, address, product_b, realtime):
    order = _place(buyer, address, product_b, qty=2)

    cancelled = cancel_order(user=buyer, order_id=order.id, reason="ordered twice")

    assert cancelled.status == Order.Status.CANCELLED
    assert Product.objects.get(id=product_b.id).stock == 5
    assert set(order.reservations.values_list("status", flat=True)) == {InventoryReservation.Status.RELEASED}
    note = Notification.objects.get(user=seller_b, ref_id=str(order.id))
    assert "ordered twice" in note.message
    assert [e.payload["orderId"] for e in realtime.for_event("order:cancelled")] == [order.id]

    with pytest.raises(OrderNotCancellable):
        cancel_order(user=buyer, order_id=order.id)


@pytest.mark.django_db
def test_cancel_refused_once_a_courier_has_it(buyer, shipper, seller_a, address, product_a1):
    order = _place(buyer, address, product_a1, method="cod")

    with pytest.raises(NotOrderOwner):
        cancel_order(user=seller_a, order_id=order.id)

    tracking.claim_order(courier=shipper, order_id=order.id)
    with pytest.raises(OrderNotCancellable) as excinfo:
        cancel_order(user=buyer, order_id=order.id)
    assert excinfo.value.as_payload()["shipping_status"] == "assigned"


@pytest.mark.django_db
def test_order_listings(buyer, seller_b, address, product_a1, product_b):
    first = _place(buyer, address, product_a1)
    second = _place(buyer, address, product_b)
    cancel_order(user=buyer, order_id=first.id)

    mine, cursor = list_buyer_orders(user=buyer)
    assert [o.id for o in mine] == [first.id, second.id]
    assert cursor is None

    pending, _ = list_buyer_orders(user=buyer, status="pending")
    assert [o.id for o in pending] == [second.id]

    page, cursor = list_buyer_orders(user=buyer, limit=1)
    rest, _ = list_buyer_orders(user=buyer, limit=1, cursor=cursor)
    assert [o.id for o in page + rest] == [first.id, second.id]

    sold, _ = list_seller_orders(seller=seller_b)
    assert [o.id for o in sold] == [second.id]

    with pytest.raises(ValidationError):
        list_buyer_orders(user=buyer, status="lost")


@pytest.mark.django_db
def test_courier_summary(buyer, shipper, address, product_a1, product_a2):
    delivered = _place(buyer, address, product_a1, method="cod")
    active = _place(buyer, address, product_a2, method="cod")
    for order in (delivered, active):
        tracking.claim_order(courier=shipper, order_id=order.id)
    for status in ("picked_up", "delivering", "delivered"):
        tracking.update_status(courier=shipper, order_id=delivered.id, status=status)

    summary = tracking.courier_summary(courier=shipper)

    order = Order.objects.get(id=delivered.id)
    assert summary["activeCount"] == 1
    assert summary["deliveredToday"] == 1
    assert summary["failedToday"] == 0
    assert summary["totalIncome"] == max(order.shipping_fee - order.service_fee, 0)
    assert summary["todayIncome"] == summary["totalIncome"]
    assert [o.id for o in summary["recentOrders"]] == [delivered.id, active.id]
