"""Error taxonomy shared by the checkout, shipping and payments services.

Services raise these; the NinjaAPI exception handler in ``api.api`` renders
them as ``{"detail": ..., "code": ..., **context}`` with ``status_code``.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def as_payload(self) -> dict[str, Any]:
        return {**self.context, "detail": self.message, "code": self.code}


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "forbidden"


class ExternalServiceError(ServiceError):
    status_code = 502
    code = "external_service_error"


# Checkout / inventory

class ProductNotFound(NotFoundError):
    code = "product_not_found"


class InsufficientStock(ValidationError):
    code = "insufficient_stock"


class StockConflict(ConflictError):
    code = "stock_conflict"


# Vouchers

class VoucherNotFound(NotFoundError):
    code = "voucher_not_found"


class VoucherRejected(ValidationError):
    code = "voucher_rejected"

    def __init__(self, message: str = "", *, reason: str, **context: Any) -> None:
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class VoucherNotForUser(AuthorizationError):
    code = "voucher_not_for_user"


# Orders

class OrderNotFound(NotFoundError):
    code = "order_not_found"


class NotOrderOwner(AuthorizationError):
    code = "not_order_owner"


class ConcurrentModification(ConflictError):
    code = "concurrent_modification"


class OrderNotCancellable(ConflictError):
    code = "order_not_cancellable"


# Shipment

class IllegalTransition(ConflictError):
    code = "illegal_transition"


# Payments

class PaymentRetryLimitReached(ConflictError):
    status_code = 429
    code = "payment_retry_limit"


class PaymentAlreadySettled(ConflictError):
    code = "payment_already_settled"


class PaymentGatewayError(ExternalServiceError):
    code = "payment_gateway_error"


class WebhookVerificationError(ExternalServiceError):
    status_code = 400
    code = "webhook_invalid"
