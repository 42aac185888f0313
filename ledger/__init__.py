"""
Virtual Ledger for Consultant, Company and Platform Balances

This module provides:
- Virtual accounts, one per (owner type, owner id), created lazily
- Immutable, append-only transactions with balance snapshots
- Atomic credit and debit against a single account
- Replay audit that rebuilds balances from the transaction log
- The error taxonomy shared by the commission services
"""

from .exceptions import (
    AlreadyReversedError,
    AttributionExpiredError,
    CommissionsLockedError,
    ForbiddenError,
    IneligibleCommissionsError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateError,
    LedgerServiceError,
    MissingRegionError,
    NotFoundError,
)
from .models import (
    AccountStatus,
    Direction,
    OwnerType,
    ReferenceType,
    TransactionType,
    VirtualAccount,
    VirtualTransaction,
    AccountBalance,
    LedgerAudit,
    EarningsSummary,
    LedgerStats,
)
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "AccountStatus",
    "Direction",
    "OwnerType",
    "ReferenceType",
    "TransactionType",
    "VirtualAccount",
    "VirtualTransaction",
    "AccountBalance",
    "LedgerAudit",
    "EarningsSummary",
    "LedgerStats",
    "LedgerService",
    "InMemoryStorage",
    "LedgerServiceError",
    "InvalidAmountError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidStateError",
    "AlreadyReversedError",
    "IneligibleCommissionsError",
    "CommissionsLockedError",
    "InsufficientBalanceError",
    "MissingRegionError",
    "AttributionExpiredError",
]
