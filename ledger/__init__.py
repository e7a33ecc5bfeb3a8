"""
UC / Coins Distribution Ledger

This package provides:
- Administrator credentials with bcrypt password hashing
- Signed, revocable admin sessions with a 24 hour lifetime
- Validated distributions of UC and Coins to opaque user UIDs
- An append-only transaction ledger with paginated, filterable reads
- CSV export of the ledger
- In-memory and SQL store variants behind the same interfaces
"""

from .credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    PasswordHasher,
    SqlCredentialStore,
)
from .errors import (
    AdminNotFoundError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidDistributionError,
    InvalidQueryError,
    LedgerServiceError,
    NotAuthenticatedError,
    StorageError,
    ValidationFailedError,
)
from .models import (
    AdminIdentity,
    Administrator,
    Transaction,
    TransactionFilter,
    TransactionPage,
    TransactionStatus,
)
from .service import DistributionService, QueryService
from .sessions import SessionService
from .storage import InMemoryTransactionStore, SqlTransactionStore, TransactionStore

__all__ = [
    "AdminIdentity",
    "Administrator",
    "Transaction",
    "TransactionFilter",
    "TransactionPage",
    "TransactionStatus",
    "CredentialStore",
    "InMemoryCredentialStore",
    "SqlCredentialStore",
    "PasswordHasher",
    "TransactionStore",
    "InMemoryTransactionStore",
    "SqlTransactionStore",
    "SessionService",
    "DistributionService",
    "QueryService",
    "LedgerServiceError",
    "ValidationFailedError",
    "InvalidDistributionError",
    "InvalidQueryError",
    "NotAuthenticatedError",
    "InvalidCredentialsError",
    "AdminNotFoundError",
    "DuplicateUsernameError",
    "StorageError",
]
