"""PayOS payment-link client.

Only the three calls the reconciliation layer needs: create a link, fetch a
link, verify a webhook body. Responses are normalized into ``GatewayLink``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import requests
from django.conf import settings

from api.errors import PaymentGatewayError, WebhookVerificationError

logger = logging.getLogger(__name__)

BUCKET_SUCCESS = "success"
BUCKET_PENDING = "pending"
BUCKET_FAILURE = "failure"

SUCCESS_STATUSES = frozenset({"PAID", "PROCESSING"})
PENDING_STATUSES = frozenset({"PENDING", "UNDERPAID"})
FAILURE_STATUSES = frozenset({"CANCELLED", "FAILED", "EXPIRED", "REJECTED"})

# PayOS rejects descriptions longer than this.
DESCRIPTION_MAX_LENGTH = 25


@dataclass(frozen=True)
class PayosConfig:
    base_url: str
    client_id: str
    api_key: str
    checksum_key: str


@dataclass(frozen=True)
class GatewayLink:
    order_code: int
    status: str
    amount: int = 0
    amount_paid: int = 0
    amount_remaining: int = 0
    link_id: str = ""
    checkout_url: str = ""
    qr_code: str = ""
    expires_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str = ""
    transactions: list[dict[str, Any]] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


def bucket_for(status: str | None) -> str | None:
    """Map a raw PayOS status to success/pending/failure; None if unknown."""

    s = (status or "").strip().upper()
    if s in SUCCESS_STATUSES:
        return BUCKET_SUCCESS
    if s in PENDING_STATUSES:
        return BUCKET_PENDING
    if s in FAILURE_STATUSES:
        return BUCKET_FAILURE
    return None


def _get_cfg() -> PayosConfig:
    cfg = PayosConfig(
        base_url=str(getattr(settings, "PAYOS_BASE_URL", "https://api-merchant.payos.vn")).rstrip("/"),
        client_id=str(getattr(settings, "PAYOS_CLIENT_ID", "") or "").strip(),
        api_key=str(getattr(settings, "PAYOS_API_KEY", "") or "").strip(),
        checksum_key=str(getattr(settings, "PAYOS_CHECKSUM_KEY", "") or "").strip(),
    )
    missing = [
        name
        for name, value in (
            ("PAYOS_CLIENT_ID", cfg.client_id),
            ("PAYOS_API_KEY", cfg.api_key),
            ("PAYOS_CHECKSUM_KEY", cfg.checksum_key),
        )
        if not value
    ]
    if missing:
        raise PaymentGatewayError("PayOS is not configured", missing=missing)
    return cfg


def _epoch_to_datetime(value) -> datetime | None:
    if value in (None, "", 0):
        return None
    if isinstance(value, (int, float)):
        # Milliseconds vs seconds.
        seconds = value / 1000 if value > 1e12 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _normalize_transactions(transactions) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for tx in transactions or []:
        if not isinstance(tx, dict):
            continue
        out.append(
            {
                "reference": tx.get("reference"),
                "amount": tx.get("amount"),
                "description": tx.get("description"),
                "transactionDateTime": tx.get("transactionDateTime"),
                "accountNumber": tx.get("accountNumber"),
                "counterAccountBankId": tx.get("counterAccountBankId"),
                "counterAccountBankName": tx.get("counterAccountBankName"),
                "counterAccountName": tx.get("counterAccountName"),
                "counterAccountNumber": tx.get("counterAccountNumber"),
            }
        )
    return out


def link_from_payload(data: dict[str, Any]) -> GatewayLink:
    try:
        order_code = int(data.get("orderCode"))
    except (TypeError, ValueError):
        raise PaymentGatewayError("PayOS response is missing orderCode")

    amount = int(data.get("amount") or 0)
    amount_paid = int(data.get("amountPaid") or 0)
    remaining = data.get("amountRemaining")
    return GatewayLink(
        order_code=order_code,
        status=str(data.get("status") or "").strip().upper(),
        amount=amount,
        amount_paid=amount_paid,
        amount_remaining=int(remaining) if remaining is not None else max(amount - amount_paid, 0),
        link_id=str(data.get("paymentLinkId") or data.get("id") or ""),
        checkout_url=str(data.get("checkoutUrl") or ""),
        qr_code=str(data.get("qrCode") or ""),
        expires_at=_epoch_to_datetime(data.get("expiredAt")),
        cancelled_at=_epoch_to_datetime(data.get("canceledAt") or data.get("cancelledAt")),
        cancellation_reason=str(data.get("cancellationReason") or ""),
        transactions=_normalize_transactions(data.get("transactions")),
        raw=data,
    )


def _signature_value(value: Any) -> str:
    if value is None or value in ("null", "undefined"):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return str(value)


def sign_data(data: dict[str, Any], *, key: str) -> str:
    """HMAC-SHA256 over ``k1=v1&k2=v2`` with keys sorted."""

    message = "&".join(f"{k}={_signature_value(data[k])}" for k in sorted(data))
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class PayosGateway:
    name = "payos"

    bucket_for = staticmethod(bucket_for)

    def __init__(self) -> None:
        self.cfg = _get_cfg()

    def _headers(self) -> dict[str, str]:
        return {
            "x-client-id": self.cfg.client_id,
            "x-api-key": self.cfg.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _unwrap(self, r: requests.Response, *, op: str) -> dict[str, Any]:
        if r.status_code >= 400:
            raise PaymentGatewayError(f"PayOS {op} failed: {r.status_code} {r.text[:300]}")
        try:
            body = r.json()
        except ValueError:
            raise PaymentGatewayError(f"PayOS {op}: unexpected response")
        if not isinstance(body, dict) or str(body.get("code")) != "00":
            desc = body.get("desc") if isinstance(body, dict) else ""
            raise PaymentGatewayError(f"PayOS {op} rejected: {desc or 'unknown error'}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise PaymentGatewayError(f"PayOS {op}: unexpected response")
        return data

    def create_link(
        self,
        *,
        order_code: int,
        amount: int,
        description: str,
        return_url: str,
        cancel_url: str,
        items: list[dict[str, Any]] | None = None,
        buyer: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> GatewayLink:
        description = (description or "")[:DESCRIPTION_MAX_LENGTH]
        signed = {
            "amount": int(amount),
            "cancelUrl": cancel_url,
            "description": description,
            "orderCode": int(order_code),
            "returnUrl": return_url,
        }
        payload: dict[str, Any] = {
            **signed,
            "items": items or [],
            "signature": sign_data(signed, key=self.cfg.checksum_key),
        }
        for key, value in (buyer or {}).items():
            if value:
                payload[key] = value
        if expires_at is not None:
            payload["expiredAt"] = int(expires_at.timestamp())

        try:
            r = requests.post(
                f"{self.cfg.base_url}/v2/payment-requests",
                json=payload,
                headers=self._headers(),
                timeout=30,
            )
        except requests.RequestException as e:
            raise PaymentGatewayError(f"PayOS create link failed: {e}")
        return link_from_payload(self._unwrap(r, op="create link"))

    def get_link(self, *, order_code: int) -> GatewayLink:
        try:
            r = requests.get(
                f"{self.cfg.base_url}/v2/payment-requests/{int(order_code)}",
                headers=self._headers(),
                timeout=20,
            )
        except requests.RequestException as e:
            raise PaymentGatewayError(f"PayOS get link failed: {e}")
        return link_from_payload(self._unwrap(r, op="get link"))

    def verify_webhook(self, body: dict[str, Any]) -> dict[str, Any]:
        """Return the webhook's ``data`` once its signature checks out."""

        if not isinstance(body, dict):
            raise WebhookVerificationError("Webhook body must be an object")
        data = body.get("data")
        signature = str(body.get("signature") or "").strip()
        if not isinstance(data, dict) or not signature:
            raise WebhookVerificationError("Webhook is missing data or signature")

        expected = sign_data(data, key=self.cfg.checksum_key)
        if not hmac.compare_digest(expected, signature.lower()):
            logger.warning("PayOS webhook signature mismatch", extra={"order_code": data.get("orderCode")})
            raise WebhookVerificationError("Webhook signature mismatch")
        if data.get("orderCode") in (None, ""):
            raise WebhookVerificationError("Webhook is missing orderCode")
        return data
