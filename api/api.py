from __future__ import annotations

import logging

from django.conf import settings
from ninja import NinjaAPI

from checkout.api import router as checkout_router
from payments.api import router as payments_router
from promotions.api import router as promotions_router
from shipping.api import router as shipping_router

from .errors import ServiceError

logger = logging.getLogger(__name__)

docs_url = "/docs" if getattr(settings, "NINJA_ENABLE_DOCS", True) else None
openapi_url = "/openapi.json" if getattr(settings,
                                         "NINJA_ENABLE_DOCS", True) else None

api = NinjaAPI(
    title="Marketplace checkout & fulfillment API",
    version="1",
    docs_url=docs_url,
    openapi_url=openapi_url,
)

api.add_router("/checkout", checkout_router)
api.add_router("/promotions", promotions_router)
api.add_router("/shipping", shipping_router)
api.add_router("/payments", payments_router)


@api.exception_handler(ServiceError)
def service_error(request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning("%s: %s", exc.code, exc.message, extra=exc.context)
    return api.create_response(request, exc.as_payload(), status=exc.status_code)


@api.get("/health")
def health(request):
    return {"status": "ok"}
