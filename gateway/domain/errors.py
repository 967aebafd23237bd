from typing import Optional


class GatewayError(Exception):
    """Base class for payment gateway errors."""


class DuplicateCorrelationIdError(GatewayError):
    """Raised when a payment with the same correlationId was already accepted."""


class InvalidRangeError(GatewayError):
    """Raised when a summary query has an unusable date range."""


class CacheTimeoutError(GatewayError):
    """Raised when no health snapshot appears while another instance refreshes it."""


class HealthProbeError(GatewayError):
    """Raised when a processor health probe fails."""


class DownstreamForwardError(GatewayError):
    """Raised when forwarding a payment to a processor fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoreUnavailableError(GatewayError):
    """Raised when the coordination store cannot be reached."""


class MalformedMessageError(GatewayError):
    """Raised when a queued message cannot be decoded into a payment."""
