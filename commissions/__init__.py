"""
Commission Lifecycle and Withdrawal Workflow

This module provides:
- Commission lifecycle: pending → confirmed → paid, with dispute and clawback
- Idempotent commission awards per earning event
- Withdrawal requests that lock the commissions they reference
- Balance summaries derived from commission and withdrawal state
"""

from .container import Services, build_services
from .locks import ACTIVE_WITHDRAWAL_STATUSES, locked_commission_ids
from .models import (
    CommissionStatus,
    CommissionType,
    WithdrawalStatus,
    OwnerRole,
    DisputeResolution,
    Commission,
    CommissionWithdrawal,
    BalanceSummary,
)
from .service import CommissionService
from .withdrawals import WithdrawalService

__all__ = [
    "Services",
    "build_services",
    "ACTIVE_WITHDRAWAL_STATUSES",
    "locked_commission_ids",
    "CommissionStatus",
    "CommissionType",
    "WithdrawalStatus",
    "OwnerRole",
    "DisputeResolution",
    "Commission",
    "CommissionWithdrawal",
    "BalanceSummary",
    "CommissionService",
    "WithdrawalService",
]
