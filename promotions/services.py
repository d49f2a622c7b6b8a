from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from django.db.models import F, Q
from django.utils import timezone

from api.errors import VoucherNotForUser, VoucherNotFound, VoucherRejected

from .models import Voucher

logger = logging.getLogger(__name__)


class PricedLine(Protocol):
    product_id: int
    seller_id: int
    shop_id: int | None
    categories: list[str]

    @property
    def line_total(self) -> int: ...


@dataclass(frozen=True)
class VoucherEvaluation:
    voucher: Voucher
    eligible_total: int
    discount: int
    eligible_by_seller: dict[int, int] = field(default_factory=dict)
    allocation: dict[int, int] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.voucher.code


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount(*, eligible_total: int, kind: str, value: int, cap: int | None = None) -> int:
    """Discount for an eligible subtotal; never negative, never above it."""

    eligible_total = int(eligible_total or 0)
    if eligible_total <= 0:
        return 0

    value = int(value or 0)
    if kind == Voucher.Kind.PERCENT:
        # Half-up on whole units.
        discount = (eligible_total * value + 50) // 100
        if cap:
            discount = min(discount, int(cap))
    elif kind == Voucher.Kind.FIXED:
        discount = value
    else:
        discount = 0

    return max(0, min(int(discount), eligible_total))


def allocate_discount(*, total: int, weights: dict[int, int]) -> dict[int, int]:
    """Split ``total`` across keys in proportion to their weights.

    Every share is floored except the last positively weighted key, which takes
    whatever remains, so the shares always add up to ``total``.
    """

    total = max(0, int(total or 0))
    allocation = {key: 0 for key in weights}
    positive = [(k, int(w)) for k, w in weights.items() if int(w or 0) > 0]
    if not positive or total <= 0:
        return allocation

    weight_sum = sum(w for _, w in positive)
    assigned = 0
    for key, weight in positive[:-1]:
        share = total * weight // weight_sum
        allocation[key] = share
        assigned += share
    allocation[positive[-1][0]] = total - assigned
    return allocation


def _target_product_ids(voucher: Voucher) -> set[int]:
    if voucher.target_type != Voucher.TargetType.PRODUCT or not voucher.pk:
        return set()
    return set(voucher.target_products.values_list("id", flat=True))


def matches_targets(voucher: Voucher, line: PricedLine, *, target_product_ids: set[int] | None = None) -> bool:
    if voucher.seller_id and int(voucher.seller_id) != int(line.seller_id):
        return False
    if voucher.shop_id and (line.shop_id is None or int(voucher.shop_id) != int(line.shop_id)):
        return False

    if voucher.target_type == Voucher.TargetType.CATEGORY:
        wanted = {str(c).strip() for c in (voucher.target_categories or []) if str(c).strip()}
        have = {str(c).strip() for c in (line.categories or []) if str(c).strip()}
        return bool(wanted & have)

    if voucher.target_type == Voucher.TargetType.PRODUCT:
        ids = target_product_ids if target_product_ids is not None else _target_product_ids(voucher)
        return int(line.product_id) in ids

    return True


def eligible_subtotals(voucher: Voucher, lines: Iterable[PricedLine]) -> dict[int, int]:
    """Eligible line totals per seller, in first-seen order."""

    target_ids = _target_product_ids(voucher)
    out: dict[int, int] = {}
    for line in lines:
        if not matches_targets(voucher, line, target_product_ids=target_ids):
            continue
        seller_id = int(line.seller_id)
        out[seller_id] = out.get(seller_id, 0) + int(line.line_total)
    return out


def evaluate_voucher(voucher: Voucher, lines: list[PricedLine]) -> VoucherEvaluation:
    by_seller = eligible_subtotals(voucher, lines)
    eligible_total = sum(by_seller.values())
    discount = compute_discount(
        eligible_total=eligible_total,
        kind=voucher.kind,
        value=voucher.value,
        cap=voucher.cap,
    )
    return VoucherEvaluation(
        voucher=voucher,
        eligible_total=eligible_total,
        discount=discount,
        eligible_by_seller=by_seller,
        allocation=allocate_discount(total=discount, weights=by_seller),
    )


def validate_voucher(*, code: str, user_id: int | None, lines: list[PricedLine], now=None) -> VoucherEvaluation:
    """Resolve a code against a cart, raising the specific rejection reason."""

    now = now or timezone.now()
    normalized = normalize_code(code)
    voucher = Voucher.objects.filter(code=normalized).first() if normalized else None
    if not voucher:
        raise VoucherNotFound("Voucher not found", voucher_code=normalized)

    if not voucher.active:
        raise VoucherRejected("Voucher is not active", reason="inactive", voucher_code=voucher.code)
    if voucher.expires_at and voucher.expires_at < now:
        raise VoucherRejected("Voucher has expired", reason="expired", voucher_code=voucher.code)
    if voucher.is_exhausted:
        raise VoucherRejected("Voucher usage limit reached", reason="usage_exhausted", voucher_code=voucher.code)
    if voucher.user_id and (user_id is None or int(voucher.user_id) != int(user_id)):
        raise VoucherNotForUser("Voucher belongs to another user", voucher_code=voucher.code)

    evaluation = evaluate_voucher(voucher, lines)
    if evaluation.eligible_total <= 0:
        raise VoucherRejected("Voucher does not apply to these items", reason="not_applicable", voucher_code=voucher.code)
    if voucher.min_eligible_total and evaluation.eligible_total < int(voucher.min_eligible_total):
        raise VoucherRejected(
            "Eligible subtotal is below the voucher minimum",
            reason="below_minimum",
            voucher_code=voucher.code,
            min_eligible_total=int(voucher.min_eligible_total),
            eligible_total=evaluation.eligible_total,
        )
    return evaluation


def apply_voucher(*, code: str, user_id: int | None, lines: list[PricedLine], now=None) -> VoucherEvaluation:
    """Preview a voucher against a cart. Usage is never counted here."""

    return validate_voucher(code=code, user_id=user_id, lines=lines, now=now)


def visible_vouchers(*, user_id: int | None, shop_ids: Iterable[int] = (), now=None):
    now = now or timezone.now()
    qs = Voucher.objects.filter(active=True).filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
    qs = qs.filter(Q(shop__isnull=True) | Q(shop_id__in=list(shop_ids)))
    if user_id is None:
        qs = qs.filter(user__isnull=True)
    else:
        qs = qs.filter(Q(user__isnull=True) | Q(user_id=int(user_id)))
    return qs.filter(Q(usage_limit=0) | Q(used_count__lt=F("usage_limit"))).order_by("id")


def suggest_best_voucher(*, user_id: int | None, lines: list[PricedLine], now=None) -> VoucherEvaluation | None:
    """Pick the visible voucher with the highest discount for this cart."""

    shop_ids = {int(line.shop_id) for line in lines if line.shop_id}
    best: VoucherEvaluation | None = None
    for voucher in visible_vouchers(user_id=user_id, shop_ids=shop_ids, now=now):
        evaluation = evaluate_voucher(voucher, lines)
        if evaluation.eligible_total <= 0:
            continue
        if voucher.min_eligible_total and evaluation.eligible_total < int(voucher.min_eligible_total):
            continue
        if best is None or evaluation.discount > best.discount:
            best = evaluation
    return best


def mark_voucher_used(*, voucher_id: int) -> bool:
    """Count one redemption, refusing to go past ``usage_limit``.

    Runs inside the checkout transaction; a False return means a concurrent
    checkout took the last use.
    """

    updated = (
        Voucher.objects.filter(id=int(voucher_id))
        .filter(Q(usage_limit=0) | Q(used_count__lt=F("usage_limit")))
        .update(used_count=F("used_count") + 1)
    )
    if updated != 1:
        logger.warning("Voucher usage limit hit at commit", extra={"voucher_id": voucher_id})
        return False
    return True
