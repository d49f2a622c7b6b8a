from __future__ import annotations

from ninja import Schema

from checkout.schemas import CartLineIn


class VoucherApplyIn(Schema):
    code: str
    items: list[CartLineIn]


class VoucherCartIn(Schema):
    items: list[CartLineIn]


class VoucherAllocationOut(Schema):
    seller_id: int
    amount: int


class VoucherQuoteOut(Schema):
    code: str
    kind: str
    value: int
    cap: int | None = None
    eligible_total: int
    discount: int
    allocation: list[VoucherAllocationOut] = []


class BestVoucherOut(Schema):
    voucher: VoucherQuoteOut | None = None
