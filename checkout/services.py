from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Iterable

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from api.errors import (
    ConcurrentModification,
    InsufficientStock,
    NotOrderOwner,
    OrderNotCancellable,
    OrderNotFound,
    ProductNotFound,
    StockConflict,
    ValidationError,
    VoucherRejected,
)
from catalog.models import Product, Shop
from catalog.services import decrement_stock, restock
from notifications.models import Notification
from notifications.services import notify_user, publish_to_room
from promotions.services import VoucherEvaluation, mark_voucher_used, validate_voucher
from shipping.services import (
    ShippingComputation,
    build_shipping_summary,
    compute_shipping_for_seller,
    normalize_method,
    round_half_up,
)

from .models import Cart, CartItem, InventoryReservation, Order, OrderLine

logger = logging.getLogger(__name__)

MODE_CART = "cart"
MODE_BUY_NOW = "buy-now"
CHECKOUT_MODES = (MODE_CART, MODE_BUY_NOW)


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    seller_id: int
    shop_id: int | None
    title: str
    unit_price: int
    quantity: int
    categories: list[str] = field(default_factory=list)

    @property
    def line_total(self) -> int:
        return int(self.unit_price) * int(self.quantity)


@dataclass
class SellerGroup:
    seller_id: int
    shop_id: int | None
    lines: list[PricedLine] = field(default_factory=list)

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self.lines)


@dataclass(frozen=True)
class ShippingAddress:
    name: str
    phone: str
    province: str
    district: str
    ward: str
    detail: str
    lat: float | None = None
    lng: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "province": self.province,
            "district": self.district,
            "ward": self.ward,
            "detail": self.detail,
            "lat": self.lat,
            "lng": self.lng,
        }

    def formatted(self) -> str:
        parts = [self.detail, self.ward, self.district, self.province]
        return ", ".join(p for p in parts if p and p.strip())


@dataclass(frozen=True)
class OrderDraft:
    group: SellerGroup
    shipping: ShippingComputation
    discount_amount: int

    @property
    def subtotal(self) -> int:
        return self.group.subtotal

    @property
    def total_amount(self) -> int:
        return max(self.subtotal + int(self.shipping.fee) - int(self.discount_amount), 0)


@dataclass
class CheckoutPlan:
    user_id: int
    payment_method: str
    shipping_method: str
    address: ShippingAddress
    groups: list[SellerGroup]
    shipping: dict[int, ShippingComputation]
    voucher: VoucherEvaluation | None = None

    @property
    def lines(self) -> list[PricedLine]:
        return [line for group in self.groups for line in group.lines]

    @property
    def discount_total(self) -> int:
        return self.voucher.discount if self.voucher else 0

    def quantities(self) -> dict[int, int]:
        out: dict[int, int] = {}
        for line in self.lines:
            out[line.product_id] = out.get(line.product_id, 0) + int(line.quantity)
        return out

    def drafts(self) -> list[OrderDraft]:
        allocation = self.voucher.allocation if self.voucher else {}
        out: list[OrderDraft] = []
        for group in self.groups:
            shipping = self.shipping[group.seller_id]
            share = int(allocation.get(group.seller_id, 0))
            # An order never gives back more than it charges.
            share = min(share, group.subtotal + int(shipping.fee))
            out.append(OrderDraft(group=group, shipping=shipping, discount_amount=share))
        return out

    def shipping_summary(self) -> dict[str, Any]:
        return build_shipping_summary(
            [self.shipping[g.seller_id] for g in self.groups], method=self.shipping_method
        )

    def discount_summary(self) -> dict[str, Any] | None:
        if not self.voucher:
            return None
        return {
            "code": self.voucher.code,
            "eligibleTotal": self.voucher.eligible_total,
            "discount": self.voucher.discount,
            "allocation": [
                {"sellerId": seller_id, "amount": amount}
                for seller_id, amount in self.voucher.allocation.items()
            ],
        }

    def as_preview(self) -> dict[str, Any]:
        drafts = self.drafts()
        return {
            "paymentMethod": self.payment_method,
            "orders": [
                {
                    "sellerId": d.group.seller_id,
                    "shopId": d.group.shop_id,
                    "subtotal": d.subtotal,
                    "shippingFee": int(d.shipping.fee),
                    "discountAmount": d.discount_amount,
                    "totalAmount": d.total_amount,
                    "items": [
                        {
                            "productId": line.product_id,
                            "title": line.title,
                            "quantity": line.quantity,
                            "unitPrice": line.unit_price,
                            "lineTotal": line.line_total,
                        }
                        for line in d.group.lines
                    ],
                }
                for d in drafts
            ],
            "shippingSummary": self.shipping_summary(),
            "discount": self.discount_summary(),
            "grandTotal": sum(d.total_amount for d in drafts),
        }


@dataclass
class CheckoutResult:
    checkout_ref: str
    orders: list[Order]
    shipping_summary: dict[str, Any]
    discount_summary: dict[str, Any] | None


def _coerce_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_cart_lines(items: Iterable[Any]) -> list[CartLine]:
    """Validate raw ``{productId, quantity}`` items; repeated products merge."""

    items = list(items or [])
    if not items:
        raise ValidationError("No items to check out")

    merged: dict[int, int] = {}
    for idx, item in enumerate(items, start=1):
        if isinstance(item, CartLine):
            raw_pid, raw_qty = item.product_id, item.quantity
        elif isinstance(item, dict):
            raw_pid = item.get("productId", item.get("product_id"))
            raw_qty = item.get("quantity", item.get("qty"))
        else:
            raw_pid = getattr(item, "product_id", None)
            raw_qty = getattr(item, "quantity", None)

        try:
            product_id = int(raw_pid)
        except (TypeError, ValueError):
            raise ValidationError(f"Item {idx} has an invalid product id", position=idx)
        if isinstance(raw_qty, bool) or not isinstance(raw_qty, (int, str)):
            raise ValidationError(f"Item {idx} has an invalid quantity", position=idx)
        try:
            quantity = int(raw_qty)
        except (TypeError, ValueError):
            raise ValidationError(f"Item {idx} has an invalid quantity", position=idx)
        if quantity <= 0:
            raise ValidationError(f"Item {idx} has an invalid quantity", position=idx)

        merged[product_id] = merged.get(product_id, 0) + quantity

    return [CartLine(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def normalize_payment_method(method: str | None) -> str:
    m = (method or "").strip().lower()
    allowed = getattr(settings, "CHECKOUT_PAYMENT_METHODS", None) or list(Order.PaymentMethod.values)
    if m not in allowed or m not in Order.PaymentMethod.values:
        raise ValidationError("Unsupported payment method", payment_method=m)
    return m


def normalize_address(raw: Any, *, user=None) -> ShippingAddress:
    if not raw:
        raise ValidationError("Shipping address is required")
    if not isinstance(raw, dict):
        raw = dict(raw)

    address = ShippingAddress(
        name=(raw.get("name") or getattr(user, "name", "") or "").strip(),
        phone=(raw.get("phone") or getattr(user, "phone", "") or "").strip(),
        province=(raw.get("province") or "").strip(),
        district=(raw.get("district") or "").strip(),
        ward=(raw.get("ward") or "").strip(),
        detail=(raw.get("detail") or "").strip(),
        lat=_coerce_float(raw.get("lat")),
        lng=_coerce_float(raw.get("lng")),
    )
    if not address.detail:
        raise ValidationError("Street-level address detail is required", field="detail")
    if not (address.province and address.district and address.ward):
        raise ValidationError("Province, district and ward are required", field="province")
    return address


def load_priced_lines(lines: list[CartLine], *, check_stock: bool = True) -> list[PricedLine]:
    """Read current price and stock; pre-check only, not the stock guard."""

    products = {
        p.id: p
        for p in Product.objects.filter(id__in=[line.product_id for line in lines], is_active=True)
    }
    priced: list[PricedLine] = []
    for line in lines:
        product = products.get(line.product_id)
        if not product:
            raise ProductNotFound(f"Product {line.product_id} not found", product_id=line.product_id)
        if check_stock and int(product.stock) < int(line.quantity):
            raise InsufficientStock(
                f'Only {product.stock} left of "{product.title}"',
                product_id=product.id,
                available=int(product.stock),
                requested=int(line.quantity),
            )
        priced.append(
            PricedLine(
                product_id=product.id,
                seller_id=int(product.seller_id),
                shop_id=product.shop_id,
                title=product.title,
                unit_price=int(product.price),
                quantity=int(line.quantity),
                categories=list(product.categories or []),
            )
        )
    return priced


def group_by_seller(lines: Iterable[PricedLine]) -> list[SellerGroup]:
    groups: dict[int, SellerGroup] = {}
    for line in lines:
        group = groups.get(line.seller_id)
        if group is None:
            group = SellerGroup(seller_id=line.seller_id, shop_id=line.shop_id)
            groups[line.seller_id] = group
        group.lines.append(line)
    return list(groups.values())


def quote_shipping(
    *,
    groups: list[SellerGroup],
    destination,
    method: str,
    rush_distance_km: float | None = None,
) -> dict[int, ShippingComputation]:
    shop_ids = {g.shop_id for g in groups if g.shop_id}
    shops = {s.id: s for s in Shop.objects.filter(id__in=shop_ids)}
    return {
        g.seller_id: compute_shipping_for_seller(
            seller_id=g.seller_id,
            shop=shops.get(g.shop_id),
            shop_id=g.shop_id,
            destination=destination,
            method=method,
            requested_rush_distance_km=rush_distance_km,
        )
        for g in groups
    }


def quote_cart_shipping(
    *,
    items: Iterable[Any],
    destination: Any,
    shipping_method: str | None = None,
    rush_distance_km: float | None = None,
) -> dict[str, Any]:
    """Per-seller shipping breakdown for a cart; stock is not checked."""

    lines = normalize_cart_lines(items)
    groups = group_by_seller(load_priced_lines(lines, check_stock=False))
    method = normalize_method(shipping_method)
    if not isinstance(destination, dict):
        destination = dict(destination or {})
    shipping = quote_shipping(
        groups=groups,
        destination=destination,
        method=method,
        rush_distance_km=rush_distance_km,
    )
    return build_shipping_summary([shipping[g.seller_id] for g in groups], method=method)


def preview_checkout(
    *,
    user,
    items: Iterable[Any],
    payment_method: str,
    address: Any,
    shipping_method: str | None = None,
    rush_distance_km: float | None = None,
    voucher_code: str | None = None,
    now=None,
) -> CheckoutPlan:
    """Everything checkout computes, without touching stock, vouchers or carts."""

    lines = normalize_cart_lines(items)
    method = normalize_payment_method(payment_method)
    destination = normalize_address(address, user=user)

    priced = load_priced_lines(lines)
    groups = group_by_seller(priced)

    voucher = None
    if (voucher_code or "").strip():
        voucher = validate_voucher(code=voucher_code, user_id=user.id, lines=priced, now=now)

    ship_method = normalize_method(shipping_method)
    shipping = quote_shipping(
        groups=groups,
        destination=destination.as_dict(),
        method=ship_method,
        rush_distance_km=rush_distance_km,
    )
    return CheckoutPlan(
        user_id=user.id,
        payment_method=method,
        shipping_method=ship_method,
        address=destination,
        groups=groups,
        shipping=shipping,
        voucher=voucher,
    )


def reserve_stock(*, checkout_ref: str, quantities: dict[int, int]) -> list[InventoryReservation]:
    """Take stock product by product; on a lost race give back what was taken.

    Products are visited in id order so concurrent checkouts contend in the
    same sequence.
    """

    taken: list[InventoryReservation] = []
    for product_id in sorted(quantities):
        qty = int(quantities[product_id])
        try:
            with transaction.atomic():
                if decrement_stock(product_id=product_id, qty=qty):
                    taken.append(
                        InventoryReservation.objects.create(
                            checkout_ref=checkout_ref,
                            product_id=product_id,
                            qty=qty,
                        )
                    )
                    continue
        except Exception:
            # The failed product rolled back with its atomic block; the rest must be given back.
            release_reservations(taken)
            raise

        released = release_reservations(taken)
        logger.warning(
            "Stock conflict during checkout",
            extra={"checkout_ref": checkout_ref, "product_id": product_id, "released": released},
        )
        title = Product.objects.filter(id=product_id).values_list("title", flat=True).first() or ""
        raise StockConflict(
            f'Could not reserve stock for "{title or product_id}", please retry',
            product_id=product_id,
            requested=qty,
        )
    return taken


def release_reservations(reservations: Iterable[InventoryReservation]) -> int:
    """Return stock for reservations that still hold it. Idempotent per row."""

    released = 0
    for r in reservations:
        with transaction.atomic():
            claimed = InventoryReservation.objects.filter(
                id=r.id,
                status__in=[InventoryReservation.Status.RESERVED, InventoryReservation.Status.COMMITTED],
            ).update(status=InventoryReservation.Status.RELEASED, updated_at=timezone.now())
            if not claimed:
                continue
            restock(product_id=r.product_id, qty=r.qty)
            r.status = InventoryReservation.Status.RELEASED
            released += 1
    return released


def release_order_stock(*, order_id: int) -> int:
    rows = list(
        InventoryReservation.objects.filter(
            order_id=int(order_id),
            status__in=[InventoryReservation.Status.RESERVED, InventoryReservation.Status.COMMITTED],
        ).order_by("id")
    )
    return release_reservations(rows)


def compute_service_fees(*, subtotal: int, shipping_fee: int, total_amount: int) -> dict[str, Any]:
    shipping_pct = min(max(float(getattr(settings, "SHIPPING_SERVICE_FEE_PERCENT", 0) or 0), 0.0), 100.0)
    seller_pct = min(max(float(getattr(settings, "SELLER_SERVICE_FEE_PERCENT", 0) or 0), 0.0), 100.0)

    shipping_fee = max(int(shipping_fee), 0)
    service_fee = min(max(round_half_up(shipping_fee * shipping_pct / 100), 0), shipping_fee)
    seller_fee = min(max(round_half_up(max(int(subtotal), 0) * seller_pct / 100), 0), max(int(total_amount), 0))
    return {
        "service_fee_percent": shipping_pct,
        "service_fee": int(service_fee),
        "seller_service_fee_percent": seller_pct,
        "seller_service_fee": int(seller_fee),
    }


def generate_order_code(*, now=None) -> str:
    now = now or timezone.now()
    return f"OD{now:%y%m%d}{secrets.token_hex(4).upper()}"


def _create_order(*, plan: CheckoutPlan, draft: OrderDraft, user, full_name: str, email: str, now) -> Order:
    shops = {s.id: s for s in Shop.objects.filter(id=draft.group.shop_id)} if draft.group.shop_id else {}
    shop = shops.get(draft.group.shop_id)
    fees = compute_service_fees(
        subtotal=draft.subtotal,
        shipping_fee=int(draft.shipping.fee),
        total_amount=draft.total_amount,
    )
    window_hours = int(getattr(settings, "CHECKOUT_PAYMENT_WINDOW_HOURS", 24) or 24)

    order = Order.objects.create(
        order_code=generate_order_code(now=now),
        user=user,
        seller_id=draft.group.seller_id,
        shop=shop,
        full_name=full_name,
        email=email,
        phone=plan.address.phone,
        shipping_address={**plan.address.as_dict(), "formatted": plan.address.formatted()},
        subtotal=draft.subtotal,
        shipping_fee=int(draft.shipping.fee),
        discount_code=plan.voucher.code if plan.voucher else "",
        discount_amount=draft.discount_amount,
        total_amount=draft.total_amount,
        seller_bank_account=shop.bank_account_snapshot() if shop else {},
        payment_method=plan.payment_method,
        payment_status=Order.PaymentStatus.PENDING,
        payment_deadline=now + timedelta(hours=window_hours),
        shipping_method=plan.shipping_method,
        shipping_scope=draft.shipping.scope or plan.shipping_method,
        shipping_meta={"summaryEntry": draft.shipping.as_summary()},
        shipping_status=Order.ShippingStatus.UNASSIGNED,
        status=Order.Status.PENDING,
        **fees,
    )
    for line in draft.group.lines:
        OrderLine.objects.create(
            order=order,
            product_id=line.product_id,
            title=line.title,
            unit_price=line.unit_price,
            qty=line.quantity,
        )
    return order


def prune_cart(*, user_id: int, product_ids: Iterable[int]) -> int:
    deleted, _ = CartItem.objects.filter(
        cart__user_id=int(user_id), product_id__in=list(product_ids)
    ).delete()
    return deleted


def cart_items_for(*, user_id: int) -> list[dict[str, int]]:
    cart = Cart.objects.filter(user_id=int(user_id)).first()
    if not cart:
        return []
    return [
        {"productId": it.product_id, "quantity": it.qty}
        for it in cart.items.order_by("created_at", "id")
    ]


def checkout(
    *,
    user,
    items: Iterable[Any] | None = None,
    payment_method: str,
    address: Any,
    shipping_method: str | None = None,
    rush_distance_km: float | None = None,
    voucher_code: str | None = None,
    mode: str = MODE_CART,
    full_name: str = "",
    email: str = "",
    now=None,
) -> CheckoutResult:
    """Split a cart into one order per seller and commit it.

    Stock is reserved before the orders are written; any failure after that
    point releases the reservations before the error propagates.
    """

    now = now or timezone.now()
    mode = (mode or MODE_CART).strip().lower()
    if mode not in CHECKOUT_MODES:
        raise ValidationError("Unsupported checkout mode", mode=mode)

    items = list(items or [])
    if not items and mode == MODE_CART:
        items = cart_items_for(user_id=user.id)

    plan = preview_checkout(
        user=user,
        items=items,
        payment_method=payment_method,
        address=address,
        shipping_method=shipping_method,
        rush_distance_km=rush_distance_km,
        voucher_code=voucher_code,
        now=now,
    )

    checkout_ref = f"CK{secrets.token_hex(8).upper()}"
    quantities = plan.quantities()
    reservations = reserve_stock(checkout_ref=checkout_ref, quantities=quantities)

    full_name = (full_name or user.name or plan.address.name or "").strip()
    email = (email or user.email or "").strip()

    try:
        with transaction.atomic():
            orders: list[Order] = []
            for draft in plan.drafts():
                order = _create_order(
                    plan=plan, draft=draft, user=user, full_name=full_name, email=email, now=now
                )
                InventoryReservation.objects.filter(
                    checkout_ref=checkout_ref,
                    product_id__in=[line.product_id for line in draft.group.lines],
                ).update(order=order, status=InventoryReservation.Status.COMMITTED, updated_at=now)
                orders.append(order)

            if plan.voucher and plan.voucher.discount > 0 and orders:
                if not mark_voucher_used(voucher_id=plan.voucher.voucher.id):
                    raise VoucherRejected(
                        "Voucher usage limit reached",
                        reason="usage_exhausted",
                        voucher_code=plan.voucher.code,
                    )

            if mode == MODE_CART:
                prune_cart(user_id=user.id, product_ids=quantities.keys())
    except Exception:
        released = release_reservations(reservations)
        logger.warning(
            "Checkout aborted after stock reservation",
            extra={"checkout_ref": checkout_ref, "released": released},
        )
        raise

    logger.info(
        "Checkout committed",
        extra={
            "checkout_ref": checkout_ref,
            "user_id": user.id,
            "order_ids": [o.id for o in orders],
        },
    )
    return CheckoutResult(
        checkout_ref=checkout_ref,
        orders=orders,
        shipping_summary=plan.shipping_summary(),
        discount_summary=plan.discount_summary(),
    )


def save_order(order: Order, *, fields: Iterable[str]) -> Order:
    """Persist ``fields`` only if nobody else wrote the order since it was read."""

    fields = list(dict.fromkeys(fields))
    values = {name: getattr(order, name) for name in fields}
    now = timezone.now()
    updated = Order.objects.filter(id=order.id, version=order.version).update(
        **values,
        version=F("version") + 1,
        updated_at=now,
    )
    if updated != 1:
        logger.warning(
            "Concurrent order write rejected",
            extra={"order_id": order.id, "version": order.version, "fields": fields},
        )
        raise ConcurrentModification(
            "Order was modified concurrently, reload and retry",
            order_id=order.id,
        )
    order.version = int(order.version) + 1
    order.updated_at = now
    return order


def expire_unpaid_orders(*, now=None, cancel: bool = False, dry_run: bool = False) -> list[int]:
    """Flag orders whose payment window lapsed; optionally cancel them."""

    now = now or timezone.now()
    qs = (
        Order.objects.filter(
            payment_deadline__lt=now,
            payment_expired=False,
            status=Order.Status.PENDING,
        )
        .exclude(payment_status=Order.PaymentStatus.SUCCESS)
        .exclude(payment_method=Order.PaymentMethod.COD)
        .order_by("id")
    )
    ids = list(qs.values_list("id", flat=True))
    if dry_run or not ids:
        return ids

    expired: list[int] = []
    for order in Order.objects.filter(id__in=ids).order_by("id"):
        order.payment_expired = True
        fields = ["payment_expired"]
        if cancel:
            order.status = Order.Status.CANCELLED
            fields.append("status")
        try:
            save_order(order, fields=fields)
        except ConcurrentModification:
            continue
        if cancel:
            release_order_stock(order_id=order.id)
            notify_user(
                user_id=order.user_id,
                kind=Notification.Kind.ORDER,
                title="Order cancelled",
                message=f"Order {order.order_code} was cancelled because payment was not received in time.",
                ref_id=str(order.id),
            )
        publish_to_room(
            room=order.user_id,
            event="order:expired",
            payload={
                "orderId": order.id,
                "status": order.status,
                "paymentMethod": order.payment_method,
                "paymentExpired": True,
            },
        )
        expired.append(order.id)

    logger.info("Expired unpaid orders", extra={"count": len(expired), "cancel": cancel})
    return expired


def get_order_for_user(*, order_id: int, user) -> Order:
    order = Order.objects.select_related("shop").filter(id=int(order_id)).first()
    if not order:
        raise OrderNotFound("Order not found", order_id=order_id)
    if int(order.user_id) != int(user.id) and int(order.seller_id) != int(user.id) and not user.is_staff:
        raise NotOrderOwner("You do not have access to this order", order_id=order_id)
    return order


CANCELLABLE_STATUSES = (Order.Status.PENDING, Order.Status.PROCESSING)

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


def encode_cursor(order: Order) -> str:
    micros = (order.updated_at - _EPOCH) // timedelta(microseconds=1)
    return f"{micros}_{order.id}"


def decode_cursor(cursor: Any) -> tuple[datetime, int]:
    try:
        micros, _, pk = str(cursor).strip().partition("_")
        return _EPOCH + timedelta(microseconds=int(micros)), int(pk)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Malformed cursor", cursor=str(cursor)) from None


def paginate_orders(qs, *, limit: int, cursor: Any = None) -> tuple[list[Order], str | None]:
    """Keyset page over (updated_at, id), newest first."""

    limit = max(1, min(int(limit or 20), 50))
    if cursor:
        at, pk = decode_cursor(cursor)
        qs = qs.filter(Q(updated_at__lt=at) | Q(updated_at=at, id__lt=pk))
    orders = list(qs.order_by("-updated_at", "-id")[:limit])
    next_cursor = encode_cursor(orders[-1]) if len(orders) == limit else None
    return orders, next_cursor


def _filter_status(qs, status: str | None):
    status = (status or "").strip().lower()
    if not status or status == "all":
        return qs
    if status not in Order.Status.values:
        raise ValidationError("Unknown order status filter", status=status)
    return qs.filter(status=status)


def list_buyer_orders(*, user, status: str | None = None, limit: int = 20, cursor: Any = None):
    qs = _filter_status(Order.objects.filter(user_id=user.id), status)
    return paginate_orders(qs.prefetch_related("lines"), limit=limit, cursor=cursor)


def list_seller_orders(*, seller, status: str | None = None, limit: int = 20, cursor: Any = None):
    qs = _filter_status(Order.objects.filter(seller_id=seller.id), status)
    return paginate_orders(qs.prefetch_related("lines"), limit=limit, cursor=cursor)


def cancel_order(*, user, order_id: int, reason: str = "") -> Order:
    """Buyer cancellation before a courier takes the parcel; stock goes back."""

    order = Order.objects.filter(id=int(order_id)).first()
    if not order:
        raise OrderNotFound("Order not found", order_id=order_id)
    if int(order.user_id) != int(user.id):
        raise NotOrderOwner("You do not have access to this order", order_id=order_id)
    if order.status not in CANCELLABLE_STATUSES or order.shipping_status != Order.ShippingStatus.UNASSIGNED:
        raise OrderNotCancellable(
            "Order can no longer be cancelled",
            order_id=order.id,
            status=order.status,
            shipping_status=order.shipping_status,
        )

    order.status = Order.Status.CANCELLED
    order.payment_deadline = None
    save_order(order, fields=["status", "payment_deadline"])
    released = release_order_stock(order_id=order.id)

    if order.payment_status == Order.PaymentStatus.SUCCESS and order.payment_method != Order.PaymentMethod.COD:
        logger.warning("Paid order cancelled by buyer, refund due", extra={"order_id": order.id})

    reason = (reason or "").strip()
    notify_user(
        user_id=order.seller_id,
        kind=Notification.Kind.ORDER,
        title="Order cancelled by buyer",
        message=f"Order {order.order_code} was cancelled." + (f" Reason: {reason}" if reason else ""),
        ref_id=str(order.id),
    )
    publish_to_room(
        room=order.user_id,
        event="order:cancelled",
        payload={"orderId": order.id, "status": order.status},
    )
    logger.info("Order cancelled by buyer", extra={"order_id": order.id, "released": released})
    return order
