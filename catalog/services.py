from __future__ import annotations

import logging

from django.db.models import F

from .models import Product

logger = logging.getLogger(__name__)


def decrement_stock(*, product_id: int, qty: int) -> bool:
    """Atomically take ``qty`` units if at least that many are on hand.

    Returns False when the conditional update matched no row (stock race lost
    or product gone). Never drives stock below zero.
    """

    qty = int(qty)
    if qty <= 0:
        return True
    updated = Product.objects.filter(id=int(product_id), stock__gte=qty).update(
        stock=F("stock") - qty,
        sold_count=F("sold_count") + qty,
    )
    return updated == 1


def restock(*, product_id: int, qty: int) -> None:
    """Give back units taken by :func:`decrement_stock`."""

    qty = int(qty)
    if qty <= 0:
        return
    updated = Product.objects.filter(id=int(product_id)).update(
        stock=F("stock") + qty,
        sold_count=F("sold_count") - qty,
    )
    if not updated:
        logger.warning("Restock skipped, product missing", extra={"product_id": product_id, "qty": qty})
