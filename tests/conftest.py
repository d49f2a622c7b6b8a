from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

import pytest
from django.utils import timezone

from accounts.models import User
from catalog.models import Product, Shop
from checkout.models import Cart, CartItem
from notifications.services import get_realtime_backend
from payments.services import payos
from payments.services.payos import GatewayLink
from payments.services.reconciliation import override_gateway
from promotions.models import Voucher


@pytest.fixture(autouse=True)
def realtime():
    backend = get_realtime_backend()
    backend.clear()
    yield backend
    backend.clear()


@pytest.fixture
def buyer(db):
    return User.objects.create_user(email="buyer@example.com", password="pw", name="Nguyen Van A", phone="0900000001")


@pytest.fixture
def seller_a(db):
    return User.objects.create_user(email="seller-a@example.com", password="pw", role=User.Role.SELLER)


@pytest.fixture
def seller_b(db):
    return User.objects.create_user(email="seller-b@example.com", password="pw", role=User.Role.SELLER)


@pytest.fixture
def shipper(db):
    return User.objects.create_user(email="courier@example.com", password="pw", role=User.Role.SHIPPER)


@pytest.fixture
def other_shipper(db):
    return User.objects.create_user(email="courier2@example.com", password="pw", role=User.Role.SHIPPER)


@pytest.fixture
def shop_a(seller_a):
    return Shop.objects.create(
        owner=seller_a,
        name="Shop A",
        province="Hà Nội",
        bank_name="VCB",
        bank_account_number="0011001234567",
        bank_account_holder="SHOP A",
    )


@pytest.fixture
def shop_b(seller_b):
    return Shop.objects.create(owner=seller_b, name="Shop B", province="Thành phố Hà Nội")


@pytest.fixture
def product_a1(seller_a, shop_a):
    return Product.objects.create(
        title="Ao thun", price=60_000, stock=10, seller=seller_a, shop=shop_a, categories=["fashion"]
    )


@pytest.fixture
def product_a2(seller_a, shop_a):
    return Product.objects.create(
        title="Mu luoi trai", price=40_000, stock=10, seller=seller_a, shop=shop_a, categories=["accessories"]
    )


@pytest.fixture
def product_b(seller_b, shop_b):
    return Product.objects.create(
        title="Binh nuoc", price=50_000, stock=5, seller=seller_b, shop=shop_b, categories=["home"]
    )


@pytest.fixture
def address():
    return {
        "name": "Nguyen Van A",
        "phone": "0900000001",
        "province": "Hà Nội",
        "district": "Ba Đình",
        "ward": "Phúc Xá",
        "detail": "12 Hang Bong",
    }


@pytest.fixture
def cart_items(product_a1, product_a2, product_b):
    return [
        {"productId": product_a1.id, "quantity": 1},
        {"productId": product_a2.id, "quantity": 1},
        {"productId": product_b.id, "quantity": 2},
    ]


@pytest.fixture
def saved_cart(buyer, product_a1, product_b):
    cart = Cart.objects.create(user=buyer)
    CartItem.objects.create(cart=cart, product=product_a1, qty=1)
    CartItem.objects.create(cart=cart, product=product_b, qty=1)
    return cart


@pytest.fixture
def percent_voucher(db):
    return Voucher.objects.create(
        code="sale10",
        kind=Voucher.Kind.PERCENT,
        value=10,
        cap=20_000,
        min_eligible_total=50_000,
    )


@pytest.fixture
def fixed_voucher(db):
    return Voucher.objects.create(code="GIAM30K", kind=Voucher.Kind.FIXED, value=30_000)


@dataclass
class FakeGateway:
    """Stands in for PayOS; statuses are set per external order code."""

    statuses: dict[int, str] = field(default_factory=dict)
    created: list[dict] = field(default_factory=list)
    fail_get: bool = False
    signature_ok: bool = True

    bucket_for = staticmethod(payos.bucket_for)

    def _link(self, order_code: int, *, amount: int = 0) -> GatewayLink:
        return GatewayLink(
            order_code=order_code,
            status=self.statuses.get(order_code, "PENDING"),
            amount=amount,
            link_id=f"link-{order_code}",
            checkout_url=f"https://pay.example.test/{order_code}",
            qr_code="000201010212",
            expires_at=timezone.now() + timedelta(minutes=15),
        )

    def create_link(self, *, order_code, amount, **kwargs):
        self.created.append({"order_code": order_code, "amount": amount, **kwargs})
        self.statuses.setdefault(order_code, "PENDING")
        return self._link(order_code, amount=amount)

    def get_link(self, *, order_code):
        if self.fail_get:
            from api.errors import PaymentGatewayError

            raise PaymentGatewayError("gateway down")
        return self._link(int(order_code))

    def verify_webhook(self, body):
        from api.errors import WebhookVerificationError

        if not self.signature_ok:
            raise WebhookVerificationError("Webhook signature mismatch")
        return body["data"]


@pytest.fixture
def gateway():
    fake = FakeGateway()
    override_gateway("payos", fake)
    yield fake
    override_gateway("payos", None)
