"""Models for identifier resolution and payment reconciliation."""

import enum
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from ..gateway.base import GatewayPaymentRecord


class ResolutionMethod(str, enum.Enum):
    """How a gateway payment id was found."""
    CACHE = "cache"
    DIRECT = "direct"
    CANDIDATE = "candidate"
    ORDER_LOOKUP = "order_lookup"


class DiscrepancyType(str, enum.Enum):
    """Differences between a local payment and the gateway record."""
    PAYMENT_ID_MISMATCH = "payment_id_mismatch"
    STATUS_MISMATCH = "status_mismatch"
    AMOUNT_MISMATCH = "amount_mismatch"
    CURRENCY_MISMATCH = "currency_mismatch"


class SyncStatus(str, enum.Enum):
    """Outcome of syncing one local payment."""
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    UNRESOLVED = "unresolved"
    FAILED = "failed"


class Resolution(BaseModel):
    """Result of resolving a raw identifier to a gateway payment id."""
    raw_identifier: Optional[str] = None
    payment_id: str = Field(..., description="Confirmed gateway payment id")
    method: ResolutionMethod
    attempts: List[str] = Field(default_factory=list, description="Ids probed, in order")
    record: Optional[GatewayPaymentRecord] = None


class LocalPayment(BaseModel):
    """A payment as stored locally."""
    id: str
    order_id: str
    payment_key: Optional[str] = None
    resolved_payment_id: Optional[str] = None
    amount: int
    cancelled_amount: int = 0
    currency: str = "KRW"
    status: str

    class Config:
        from_attributes = True


class Discrepancy(BaseModel):
    """One field that differs between local state and the gateway."""
    order_id: str
    payment_id: str
    discrepancy_type: DiscrepancyType
    field_name: str
    local_value: Any = None
    gateway_value: Any = None
    detected_at: datetime = Field(default_factory=datetime.utcnow)


class CancelOutcome(BaseModel):
    """Result of a cancel request as reported to callers."""
    order_id: str
    success: bool
    status: Optional[str] = Field(None, description="Local payment status after the attempt")
    payment_id: Optional[str] = Field(None, description="Resolved gateway payment id")
    resolution_method: Optional[ResolutionMethod] = None
    idempotency_key: Optional[str] = None
    cancelled_amount: Optional[int] = None
    already_cancelled: bool = False
    review_required: bool = False
    error: Optional[Dict[str, Any]] = Field(None, description="Error details incl. raw gateway body")


class SyncResult(BaseModel):
    """Result of converging one local payment to the gateway record."""
    order_id: str
    status: SyncStatus
    payment_id: Optional[str] = None
    local_status: Optional[str] = None
    gateway_status: Optional[str] = None
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    error_message: Optional[str] = None


class SyncReport(BaseModel):
    """Summary of a batch sync run."""
    id: str
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    status_filter: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    results: List[SyncResult] = Field(default_factory=list)

    def count(self, status: SyncStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total_discrepancies(self) -> int:
        return sum(len(r.discrepancies) for r in self.results)

    @property
    def has_issues(self) -> bool:
        return any(
            r.status in (SyncStatus.UNRESOLVED, SyncStatus.FAILED) for r in self.results
        )

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the report without per-payment results."""
        return {
            "id": self.id,
            "status_filter": self.status_filter,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "total": len(self.results),
                "unchanged": self.count(SyncStatus.UNCHANGED),
                "updated": self.count(SyncStatus.UPDATED),
                "unresolved": self.count(SyncStatus.UNRESOLVED),
                "failed": self.count(SyncStatus.FAILED),
                "discrepancies": self.total_discrepancies,
            },
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the complete report including every result."""
        result = self.to_summary_dict()
        result["results"] = [r.model_dump(mode="json") for r in self.results]
        return result
