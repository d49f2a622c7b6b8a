from __future__ import annotations

from django.core.exceptions import ImproperlyConfigured

from .settings_base import *  # noqa: F403

DEBUG = env.bool("DEBUG", default=False)  # type: ignore[name-defined]  # noqa: F405

# Security hardening for production (tunable via env)
SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)  # type: ignore[name-defined]  # noqa: F405
SESSION_COOKIE_SECURE = env.bool("SESSION_COOKIE_SECURE", default=True)  # type: ignore[name-defined]  # noqa: F405
CSRF_COOKIE_SECURE = env.bool("CSRF_COOKIE_SECURE", default=True)  # type: ignore[name-defined]  # noqa: F405
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

# Webhooks cannot be verified without the checksum key.
if "payos" in CHECKOUT_PAYMENT_METHODS and not PAYOS_CHECKSUM_KEY:  # noqa: F405
    raise ImproperlyConfigured("PAYOS_CHECKSUM_KEY is required when payos is enabled")
