"""
Which commissions are locked by an in-flight withdrawal.

A commission referenced by a withdrawal in one of ``ACTIVE_WITHDRAWAL_STATUSES``
cannot be put into another withdrawal request. Lock membership is derived from
withdrawal status alone; nothing is stored on the commission itself, so a
withdrawal reaching COMPLETED, CANCELLED or REJECTED releases its commissions
without any further write. Both the balance summary and withdrawal requests
read the lock set from here.
"""

from typing import Iterable
from uuid import UUID

from ledger.storage import InMemoryStorage

from .models import WithdrawalStatus

ACTIVE_WITHDRAWAL_STATUSES = frozenset({
    WithdrawalStatus.PENDING,
    WithdrawalStatus.APPROVED,
    WithdrawalStatus.PROCESSING,
})

# Withdrawals not yet debited; a reversed commission rejects them.
RELEASABLE_WITHDRAWAL_STATUSES = frozenset({
    WithdrawalStatus.PENDING,
    WithdrawalStatus.APPROVED,
})


def locked_commission_ids(withdrawals: Iterable[dict]) -> set[UUID]:
    locked: set[UUID] = set()
    for withdrawal in withdrawals:
        if withdrawal["status"] in ACTIVE_WITHDRAWAL_STATUSES:
            locked.update(withdrawal["commission_ids"])
    return locked


def locked_commission_ids_for(storage: InMemoryStorage, owner_id: UUID) -> set[UUID]:
    return locked_commission_ids(
        w for w in storage.withdrawals.values() if w["consultant_id"] == owner_id
    )


def withdrawn_commission_ids_for(storage: InMemoryStorage, owner_id: UUID) -> set[UUID]:
    """Commissions already paid out by a COMPLETED withdrawal; never eligible again."""
    withdrawn: set[UUID] = set()
    for withdrawal in storage.withdrawals.values():
        if withdrawal["consultant_id"] == owner_id and withdrawal["status"] == WithdrawalStatus.COMPLETED:
            withdrawn.update(withdrawal["commission_ids"])
    return withdrawn
