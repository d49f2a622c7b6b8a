from __future__ import annotations

import pytest

from api.errors import (
    ConcurrentModification,
    InsufficientStock,
    StockConflict,
    ValidationError,
    VoucherRejected,
)
from catalog.models import Product
from checkout import services
from checkout.models import CartItem, InventoryReservation, Order
from checkout.services import checkout, preview_checkout, reserve_stock, save_order
from promotions.models import Voucher


def _stock(*products):
    return [Product.objects.get(id=p.id).stock for p in products]


@pytest.mark.django_db
def test_cart_splits_into_one_order_per_seller(buyer, seller_a, seller_b, cart_items, address, product_a1, product_a2, product_b):
    result = checkout(user=buyer, items=cart_items, payment_method="payos", address=address, mode="buy-now")

    assert len(result.orders) == 2
    by_seller = {o.seller_id: o for o in result.orders}
    a, b = by_seller[seller_a.id], by_seller[seller_b.id]

    assert a.subtotal == 100_000
    assert a.shipping_fee == 12_000
    assert a.total_amount == 112_000
    assert b.subtotal == 100_000
    assert b.total_amount == 112_000
    assert a.shipping_scope == "in_province"
    assert a.lines.count() == 2
    assert b.lines.get().qty == 2

    assert a.status == Order.Status.PENDING
    assert a.payment_status == Order.PaymentStatus.PENDING
    assert a.payment_deadline is not None
    assert a.seller_bank_account["accountNumber"] == "0011001234567"

    assert _stock(product_a1, product_a2, product_b) == [9, 9, 3]
    assert Product.objects.get(id=product_b.id).sold_count == 2
    assert set(
        InventoryReservation.objects.filter(checkout_ref=result.checkout_ref).values_list("status", flat=True)
    ) == {InventoryReservation.Status.COMMITTED}
    assert result.shipping_summary["totalShippingFee"] == 24_000


@pytest.mark.django_db
def test_service_fees_are_recorded_but_not_charged(buyer, cart_items, address):
    result = checkout(user=buyer, items=cart_items, payment_method="cod", address=address, mode="buy-now")
    order = result.orders[0]
    assert order.service_fee == 1_200
    assert order.seller_service_fee == 5_000
    assert order.total_amount == order.subtotal + order.shipping_fee


@pytest.mark.django_db
def test_voucher_discount_is_conserved_across_orders(buyer, cart_items, address, fixed_voucher):
    result = checkout(
        user=buyer, items=cart_items, payment_method="payos", address=address, voucher_code="giam30k", mode="buy-now"
    )
    orders = result.orders
    assert sum(o.discount_amount for o in orders) == 30_000
    assert sum(o.total_amount + o.discount_amount for o in orders) == sum(o.subtotal + o.shipping_fee for o in orders)
    assert all(o.discount_code == "GIAM30K" for o in orders)
    assert result.discount_summary["discount"] == 30_000

    fixed_voucher.refresh_from_db()
    assert fixed_voucher.used_count == 1


@pytest.mark.django_db
def test_preview_changes_nothing(buyer, cart_items, address, product_a1, product_b, fixed_voucher):
    plan = preview_checkout(
        user=buyer, items=cart_items, payment_method="payos", address=address, voucher_code="GIAM30K"
    )
    preview = plan.as_preview()
    assert preview["grandTotal"] == 200_000 + 24_000 - 30_000
    assert len(preview["orders"]) == 2
    assert Order.objects.count() == 0
    assert _stock(product_a1, product_b) == [10, 5]
    fixed_voucher.refresh_from_db()
    assert fixed_voucher.used_count == 0


@pytest.mark.django_db
def test_insufficient_stock_is_rejected_before_any_write(buyer, address, product_b):
    with pytest.raises(InsufficientStock) as excinfo:
        checkout(
            user=buyer,
            items=[{"productId": product_b.id, "quantity": 6}],
            payment_method="payos",
            address=address,
            mode="buy-now",
        )
    assert excinfo.value.context["available"] == 5
    assert Order.objects.count() == 0
    assert InventoryReservation.objects.count() == 0


@pytest.mark.django_db
def test_lost_stock_race_gives_back_earlier_reservations(monkeypatch, buyer, cart_items, address, product_a1, product_a2, product_b):
    real_decrement = services.decrement_stock

    def racing_decrement(*, product_id, qty):
        if product_id == product_b.id:
            return False
        return real_decrement(product_id=product_id, qty=qty)

    monkeypatch.setattr(services, "decrement_stock", racing_decrement)

    with pytest.raises(StockConflict) as excinfo:
        checkout(user=buyer, items=cart_items, payment_method="payos", address=address, mode="buy-now")

    assert excinfo.value.context["product_id"] == product_b.id
    assert _stock(product_a1, product_a2, product_b) == [10, 10, 5]
    assert Order.objects.count() == 0
    assert set(InventoryReservation.objects.values_list("status", flat=True)) == {
        InventoryReservation.Status.RELEASED
    }


@pytest.mark.django_db
def test_error_while_reserving_gives_back_earlier_reservations(monkeypatch, buyer, cart_items, address, product_a1, product_a2, product_b):
    real_decrement = services.decrement_stock

    def decrement_then_fail(*, product_id, qty):
        taken = real_decrement(product_id=product_id, qty=qty)
        if product_id == product_b.id:
            raise RuntimeError("reservation insert failed")
        return taken

    monkeypatch.setattr(services, "decrement_stock", decrement_then_fail)

    with pytest.raises(RuntimeError):
        checkout(user=buyer, items=cart_items, payment_method="payos", address=address, mode="buy-now")

    assert _stock(product_a1, product_a2, product_b) == [10, 10, 5]
    assert Order.objects.count() == 0
    assert not InventoryReservation.objects.exclude(status=InventoryReservation.Status.RELEASED).exists()


@pytest.mark.django_db
def test_failure_after_reservation_releases_stock(monkeypatch, buyer, cart_items, address, product_a1, product_a2, product_b):
    real_create = services._create_order
    calls = []

    def flaky_create(**kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("db went away")
        return real_create(**kwargs)

    monkeypatch.setattr(services, "_create_order", flaky_create)

    with pytest.raises(RuntimeError):
        checkout(user=buyer, items=cart_items, payment_method="payos", address=address, mode="buy-now")

    assert Order.objects.count() == 0
    assert _stock(product_a1, product_a2, product_b) == [10, 10, 5]
    assert not InventoryReservation.objects.exclude(status=InventoryReservation.Status.RELEASED).exists()


@pytest.mark.django_db
def test_voucher_taken_by_concurrent_checkout(monkeypatch, buyer, cart_items, address, product_a1):
    Voucher.objects.create(code="LAST", kind=Voucher.Kind.FIXED, value=10_000, usage_limit=1)
    monkeypatch.setattr(services, "mark_voucher_used", lambda *, voucher_id: False)

    with pytest.raises(VoucherRejected) as excinfo:
        checkout(
            user=buyer, items=cart_items, payment_method="payos", address=address, voucher_code="LAST", mode="buy-now"
        )
    assert excinfo.value.reason == "usage_exhausted"
    assert Order.objects.count() == 0
    assert _stock(product_a1) == [10]


@pytest.mark.django_db
def test_reserve_stock_never_goes_negative(product_b):
    reserve_stock(checkout_ref="CK1", quantities={product_b.id: 3})
    with pytest.raises(StockConflict):
        reserve_stock(checkout_ref="CK2", quantities={product_b.id: 3})
    assert _stock(product_b) == [2]


@pytest.mark.django_db
def test_cart_mode_uses_and_prunes_saved_cart(buyer, saved_cart, address):
    result = checkout(user=buyer, payment_method="cod", address=address)
    assert len(result.orders) == 2
    assert not CartItem.objects.filter(cart=saved_cart).exists()


@pytest.mark.django_db
def test_buy_now_leaves_cart_alone(buyer, saved_cart, address, product_a1):
    checkout(
        user=buyer,
        items=[{"productId": product_a1.id, "quantity": 1}],
        payment_method="cod",
        address=address,
        mode="buy-now",
    )
    assert CartItem.objects.filter(cart=saved_cart).count() == 2


@pytest.mark.django_db
@pytest.mark.parametrize(
    "items,method,address_patch",
    [
        ([], "payos", {}),
        ([{"productId": "x", "quantity": 1}], "payos", {}),
        ([{"productId": 1, "quantity": 0}], "payos", {}),
        ([{"productId": 1, "quantity": 1}], "bitcoin", {}),
        ([{"productId": 1, "quantity": 1}], "payos", {"ward": ""}),
        ([{"productId": 1, "quantity": 1}], "payos", {"detail": "  "}),
    ],
)
def test_malformed_input_is_rejected(buyer, address, items, method, address_patch):
    with pytest.raises(ValidationError):
        checkout(
            user=buyer,
            items=items,
            payment_method=method,
            address={**address, **address_patch},
            mode="buy-now",
        )
    assert Order.objects.count() == 0


@pytest.mark.django_db
def test_repeated_lines_merge(buyer, address, product_b):
    result = checkout(
        user=buyer,
        items=[{"productId": product_b.id, "quantity": 1}, {"product_id": product_b.id, "qty": 2}],
        payment_method="cod",
        address=address,
        mode="buy-now",
    )
    assert result.orders[0].lines.get().qty == 3


@pytest.mark.django_db
def test_stale_order_write_is_refused(buyer, cart_items, address):
    order = checkout(user=buyer, items=cart_items, payment_method="cod", address=address, mode="buy-now").orders[0]
    first = Order.objects.get(id=order.id)
    second = Order.objects.get(id=order.id)

    first.shipping_status = Order.ShippingStatus.ASSIGNED
    save_order(first, fields=["shipping_status"])

    second.payment_status = Order.PaymentStatus.SUCCESS
    with pytest.raises(ConcurrentModification):
        save_order(second, fields=["payment_status"])

    fresh = Order.objects.get(id=order.id)
    assert fresh.payment_status == Order.PaymentStatus.PENDING
    assert fresh.version == 1
