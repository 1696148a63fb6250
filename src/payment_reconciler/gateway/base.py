from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class PaymentState:
    """Canonical payment statuses shared by gateway records and local rows."""
    READY = "ready"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    PARTIALLY_CANCELLED = "partially_cancelled"
    CANCELLED = "cancelled"


# Canonical models
class GatewayPaymentRecord(BaseModel):
    id: str
    status: str  # ready|pending|paid|failed|partially_cancelled|cancelled
    gateway_status: Optional[str] = None  # status exactly as the gateway reported it
    amount: int = 0  # total, minor units
    cancelled_amount: int = 0
    currency: Optional[str] = None
    order_id: Optional[str] = None
    order_name: Optional[str] = None
    requested_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    raw_data: Optional[Dict[str, Any]] = None

    @property
    def cancellable_amount(self) -> int:
        return max(self.amount - self.cancelled_amount, 0)


class ProbeResult(BaseModel):
    candidate_id: str
    valid: bool
    record: Optional[GatewayPaymentRecord] = None
    status_code: Optional[int] = None


class CancelRequest(BaseModel):
    reason: str
    amount: Optional[int] = Field(default=None, gt=0)  # None cancels the remaining balance


class CancelResult(BaseModel):
    payment_id: str
    idempotency_key: str
    status: str  # gateway cancellation status, e.g. SUCCEEDED|REQUESTED
    cancelled_amount: Optional[int] = None
    record: Optional[GatewayPaymentRecord] = None
    raw_response: Optional[Dict[str, Any]] = None


class GatewayProbeBase(ABC):
    """
    Gateway interface used by the reconciliation engine. Lookups must be
    read-only; only cancel mutates gateway state.
    """

    @abstractmethod
    async def probe(self, candidate_id: str) -> ProbeResult:
        """
        Look up a payment by id. 4xx means not valid; transport failures and
        5xx raise GatewayUnreachable.
        """
        raise NotImplementedError

    @abstractmethod
    async def find_by_order_id(self, order_id: str) -> Optional[GatewayPaymentRecord]:
        """
        Look up a payment by the caller's order reference.
        """
        raise NotImplementedError

    @abstractmethod
    async def cancel(
        self,
        payment_id: str,
        request: CancelRequest,
        idempotency_key: str,
    ) -> CancelResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    async def health_check(self) -> Dict[str, Any]:
        return {"ok": True}
