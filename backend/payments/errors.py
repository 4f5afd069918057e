"""Payment-specific failures, rendered by ``core.exceptions``."""

from __future__ import annotations

from core.exceptions import InternalServiceError, ServiceUnavailableError


class PaymentConfigurationError(InternalServiceError):
    """Provider credentials or secrets are missing or rejected."""


class PaymentProviderError(InternalServiceError):
    """The provider returned an error we cannot recover from."""


class PaymentTransientError(ServiceUnavailableError):
    """Provider is rate limiting or unreachable; the caller may retry."""


class WebhookSignatureError(InternalServiceError):
    """An inbound webhook body did not match its signature header."""


class ReconciliationError(InternalServiceError):
    """A payment/booking status write failed partway through."""
