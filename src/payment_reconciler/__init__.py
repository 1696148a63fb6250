# payment_reconciler package
__version__ = "0.1.0"

from .config import GatewayConfig
from .exceptions import (
    ReconciliationError,
    InvalidInput,
    PaymentNotFound,
    ResolutionFailed,
    GatewayError,
    GatewayUnreachable,
    GatewayRejected,
)
from .identifiers import normalize, generate_candidates
from .gateway import PortOneGateway, SimulatorGateway, get_gateway
from .database import (
    Payment,
    IdentifierMapping,
    TransactionHistory,
    PaymentStatus,
    TransactionAction,
    init_db,
    close_db,
    get_db,
)
from .reconciliation import (
    ReconciliationEngine,
    ReconciliationService,
    Reconciler,
    ReportGenerator,
    InMemoryIdentifierCache,
    DatabaseIdentifierCache,
)
