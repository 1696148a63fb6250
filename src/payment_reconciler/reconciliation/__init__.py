"""Resolution and reconciliation of stored payment identifiers.

Features:
- Resolve stored identifiers to gateway payment ids (direct, candidates, order lookup)
- Cache confirmed mappings
- Cancel payments with a fresh idempotency key per attempt
- Converge local payment rows to the gateway record and report discrepancies
"""

from .models import (
    ResolutionMethod,
    DiscrepancyType,
    SyncStatus,
    Resolution,
    LocalPayment,
    Discrepancy,
    CancelOutcome,
    SyncResult,
    SyncReport,
)
from .cache import (
    IdentifierCache,
    InMemoryIdentifierCache,
    DatabaseIdentifierCache,
)
from .engine import ReconciliationEngine
from .reconciler import Reconciler
from .service import ReconciliationService
from .report import ReportGenerator

__all__ = [
    # Models
    "ResolutionMethod",
    "DiscrepancyType",
    "SyncStatus",
    "Resolution",
    "LocalPayment",
    "Discrepancy",
    "CancelOutcome",
    "SyncResult",
    "SyncReport",
    # Caches
    "IdentifierCache",
    "InMemoryIdentifierCache",
    "DatabaseIdentifierCache",
    # Core Components
    "ReconciliationEngine",
    "Reconciler",
    "ReconciliationService",
    "ReportGenerator",
]
