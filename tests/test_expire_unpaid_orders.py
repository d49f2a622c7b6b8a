from __future__ import annotations

from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from catalog.models import Product
from checkout.models import InventoryReservation, Order
from checkout.services import checkout, expire_unpaid_orders
from notifications.models import Notification


@pytest.fixture
def lapsed_order(buyer, address, product_b):
    order = checkout(
        user=buyer,
        items=[{"productId": product_b.id, "quantity": 2}],
        payment_method="banking",
        address=address,
        mode="buy-now",
    ).orders[0]
    Order.objects.filter(id=order.id).update(payment_deadline=timezone.now() - timedelta(minutes=5))
    return order


@pytest.fixture
def cod_order(buyer, address, product_a1):
    order = checkout(
        user=buyer,
        items=[{"productId": product_a1.id, "quantity": 1}],
        payment_method="cod",
        address=address,
        mode="buy-now",
    ).orders[0]
    Order.objects.filter(id=order.id).update(payment_deadline=timezone.now() - timedelta(minutes=5))
    return order


@pytest.mark.django_db
def test_flags_lapsed_orders(lapsed_order, cod_order, realtime):
    assert expire_unpaid_orders() == [lapsed_order.id]

    order = Order.objects.get(id=lapsed_order.id)
    assert order.payment_expired is True
    assert order.status == Order.Status.PENDING
    assert not Order.objects.get(id=cod_order.id).payment_expired
    assert [e.payload["orderId"] for e in realtime.for_event("order:expired")] == [lapsed_order.id]

    # Already flagged orders are not picked up again.
    assert expire_unpaid_orders() == []


@pytest.mark.django_db
def test_cancel_releases_stock(lapsed_order, product_b, buyer):
    assert Product.objects.get(id=product_b.id).stock == 3

    expire_unpaid_orders(cancel=True)

    order = Order.objects.get(id=lapsed_order.id)
    assert order.status == Order.Status.CANCELLED
    assert Product.objects.get(id=product_b.id).stock == 5
    assert set(order.reservations.values_list("status", flat=True)) == {InventoryReservation.Status.RELEASED}
    assert Notification.objects.filter(user=buyer, ref_id=str(order.id)).exists()


@pytest.mark.django_db
def test_paid_orders_never_expire(lapsed_order):
    Order.objects.filter(id=lapsed_order.id).update(payment_status=Order.PaymentStatus.SUCCESS)
    assert expire_unpaid_orders() == []


@pytest.mark.django_db
def test_command_dry_run(lapsed_order):
    out = StringIO()
    call_command("expire_unpaid_orders", "--dry-run", stdout=out)
    assert "would expire unpaid orders: 1" in out.getvalue()
    assert Order.objects.get(id=lapsed_order.id).payment_expired is False

    call_command("expire_unpaid_orders", "--cancel", stdout=out)
    assert Order.objects.get(id=lapsed_order.id).status == Order.Status.CANCELLED
