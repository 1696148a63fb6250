"""Database module for local payment persistence."""

from .models import (
    Payment,
    IdentifierMapping,
    TransactionHistory,
    Base,
    PaymentStatus,
    TransactionAction,
)
from .session import (
    get_db,
    get_db_context,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    PaymentRepository,
    IdentifierMappingRepository,
    TransactionHistoryRepository,
)

__all__ = [
    # Models
    "Payment",
    "IdentifierMapping",
    "TransactionHistory",
    "Base",
    "PaymentStatus",
    "TransactionAction",
    # Session management
    "get_db",
    "get_db_context",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "PaymentRepository",
    "IdentifierMappingRepository",
    "TransactionHistoryRepository",
]
