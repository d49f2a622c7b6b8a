from __future__ import annotations

from ninja import Router
from ninja.errors import HttpError

from accounts.auth import JWTAuth
from checkout.services import load_priced_lines, normalize_cart_lines

from .schemas import BestVoucherOut, VoucherApplyIn, VoucherCartIn, VoucherQuoteOut
from .services import VoucherEvaluation, apply_voucher, suggest_best_voucher

router = Router(tags=["promotions"])

_auth = JWTAuth()


def _require_user(request):
    user = request.auth
    if not user:
        raise HttpError(401, "Unauthorized")
    return user


def _priced(items):
    lines = normalize_cart_lines(
        [{"productId": it.product_id, "quantity": it.quantity} for it in items]
    )
    return load_priced_lines(lines, check_stock=False)


def _quote_out(evaluation: VoucherEvaluation) -> dict:
    v = evaluation.voucher
    return {
        "code": v.code,
        "kind": v.kind,
        "value": int(v.value),
        "cap": int(v.cap) if v.cap else None,
        "eligible_total": evaluation.eligible_total,
        "discount": evaluation.discount,
        "allocation": [
            {"seller_id": seller_id, "amount": amount}
            for seller_id, amount in evaluation.allocation.items()
        ],
    }


@router.post("/vouchers/apply", response=VoucherQuoteOut, auth=_auth)
def voucher_apply(request, payload: VoucherApplyIn):
    user = _require_user(request)
    evaluation = apply_voucher(code=payload.code, user_id=user.id, lines=_priced(payload.items))
    return _quote_out(evaluation)


@router.post("/vouchers/best", response=BestVoucherOut, auth=_auth)
def voucher_best(request, payload: VoucherCartIn):
    user = _require_user(request)
    best = suggest_best_voucher(user_id=user.id, lines=_priced(payload.items))
    return {"voucher": _quote_out(best) if best else None}
