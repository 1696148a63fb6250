"""Exception hierarchy for identifier resolution and gateway calls."""

from typing import Any, List, Optional

# Gateway error types that mean the payment is already in the requested state
ALREADY_CANCELLED_ERROR_TYPES = frozenset([
    "PAYMENT_ALREADY_CANCELLED",
    "ALREADY_CANCELLED",
])


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class InvalidInput(ReconciliationError, ValueError):
    """Raised when a caller-supplied value cannot be used."""


class PaymentNotFound(ReconciliationError):
    """Raised when a payment is unknown to the gateway or the local store."""


class ResolutionFailed(PaymentNotFound):
    """Raised when no candidate identifier is recognized by the gateway.

    Attributes:
        raw_identifier: The identifier resolution started from.
        attempted: Candidate ids probed, in order.
    """

    def __init__(self, raw_identifier: Optional[str], attempted: List[str]):
        self.raw_identifier = raw_identifier
        self.attempted = list(attempted)
        super().__init__(
            f"No gateway payment found for {raw_identifier!r} "
            f"after {len(self.attempted)} candidate(s)"
        )


class GatewayError(ReconciliationError):
    """Base class for errors reported by or about the gateway.

    Attributes:
        status_code: HTTP status code, if a response was received.
        response_body: Raw gateway response body, kept for diagnosis.
        idempotency_key: Key of the failed cancel request, when there was one.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Any = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.idempotency_key: Optional[str] = None
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "message": str(self),
            "status_code": self.status_code,
            "response_body": self.response_body,
            "idempotency_key": self.idempotency_key,
        }


class GatewayUnreachable(GatewayError):
    """Raised on timeouts, transport failures and 5xx responses."""


class GatewayRejected(GatewayError):
    """Raised when the gateway returns a structured 4xx error.

    Attributes:
        error_type: Gateway error type code (e.g. PAYMENT_ALREADY_CANCELLED).
        gateway_message: Message reported by the gateway.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Any = None,
        error_type: Optional[str] = None,
        gateway_message: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)
        self.error_type = error_type
        self.gateway_message = gateway_message

    @property
    def already_cancelled(self) -> bool:
        return (self.error_type or "").upper() in ALREADY_CANCELLED_ERROR_TYPES

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["error_type"] = self.error_type
        data["gateway_message"] = self.gateway_message
        return data
