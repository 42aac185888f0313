import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from ledger.exceptions import (
    CommissionsLockedError,
    ForbiddenError,
    IneligibleCommissionsError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
)
from ledger.models import OwnerType, ReferenceType, TransactionType, quantize
from ledger.service import LedgerService

from .locks import locked_commission_ids_for, withdrawn_commission_ids_for
from .models import (
    AvailableCommission,
    BalanceSummary,
    CommissionStatus,
    CommissionWithdrawal,
    OwnerRole,
    RequestWithdrawalInput,
    WithdrawalStatus,
)
from .notifications import Notifier

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class WithdrawalService:
    """
    Payout requests against confirmed commissions.

    One workflow serves every payout role; ``owner_role`` on the withdrawal
    records whether a consultant or a sales agent asked for it. Nothing here
    reads the ledger balance to decide eligibility: availability is derived
    from commission and withdrawal state, and the ledger is only debited when
    an approved withdrawal is executed.
    """

    def __init__(self, ledger: LedgerService, notifier: Optional[Notifier] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.notifier = notifier or Notifier()

    def calculate_balance(self, owner_id: UUID) -> BalanceSummary:
        with self.storage.read():
            return self._calculate_balance(owner_id)

    def _calculate_balance(self, owner_id: UUID) -> BalanceSummary:
        commissions = [
            c for c in self.storage.commissions.values()
            if c["consultant_id"] == owner_id and c["status"] != CommissionStatus.CANCELLED
        ]
        unavailable = locked_commission_ids_for(self.storage, owner_id) | withdrawn_commission_ids_for(self.storage, owner_id)

        available = []
        pending_balance = ZERO
        total_earned = ZERO
        for commission in sorted(commissions, key=lambda c: c["created_at"]):
            total_earned += commission["amount"]
            if commission["status"] == CommissionStatus.CONFIRMED and commission["id"] not in unavailable:
                available.append(AvailableCommission(
                    id=commission["id"],
                    amount=commission["amount"],
                    description=commission["description"] or "Commission payment",
                    created_at=commission["created_at"],
                ))
            elif commission["status"] == CommissionStatus.PENDING:
                pending_balance += commission["amount"]

        total_withdrawn = sum(
            (w["amount"] for w in self.storage.withdrawals.values()
             if w["consultant_id"] == owner_id and w["status"] == WithdrawalStatus.COMPLETED),
            ZERO,
        )

        return BalanceSummary(
            consultant_id=owner_id,
            available_balance=sum((c.amount for c in available), ZERO),
            pending_balance=pending_balance,
            total_earned=total_earned,
            total_withdrawn=total_withdrawn,
            currency=self.ledger.currency,
            commission_count=len(available),
            available_commissions=available,
        )

    def request(self, owner_id: UUID, request: RequestWithdrawalInput) -> CommissionWithdrawal:
        if request.amount is None or quantize(request.amount) <= 0:
            raise InvalidAmountError("Invalid amount")

        commission_ids = list(request.commission_ids)
        if not commission_ids:
            raise IneligibleCommissionsError("At least one commission is required")
        if len(set(commission_ids)) != len(commission_ids):
            raise IneligibleCommissionsError("Duplicate commissions in withdrawal request")

        with self.storage.transaction():
            self.ledger.verify_account(OwnerType.CONSULTANT, owner_id)

            commissions = []
            for commission_id in commission_ids:
                commission = self.storage.commissions.get(commission_id)
                if (
                    commission
                    and commission["consultant_id"] == owner_id
                    and commission["status"] == CommissionStatus.CONFIRMED
                ):
                    commissions.append(commission)

            if len(commissions) != len(commission_ids):
                raise IneligibleCommissionsError()

            locked = locked_commission_ids_for(self.storage, owner_id)
            if any(commission_id in locked for commission_id in commission_ids):
                raise CommissionsLockedError()

            withdrawn = withdrawn_commission_ids_for(self.storage, owner_id)
            if any(commission_id in withdrawn for commission_id in commission_ids):
                raise IneligibleCommissionsError("One or more commissions have already been withdrawn")

            total_amount = sum((c["amount"] for c in commissions), ZERO)
            if total_amount != quantize(request.amount):
                logger.warning(
                    "Withdrawal amount %s from %s does not match commissions total %s, using total",
                    request.amount, owner_id, total_amount,
                )

            now = datetime.now(timezone.utc)
            withdrawal_data = {
                "id": uuid4(),
                "consultant_id": owner_id,
                "owner_role": OwnerRole(request.owner_role),
                "amount": total_amount,
                "commission_ids": commission_ids,
                "payment_method": request.payment_method,
                "payment_details": dict(request.payment_details or {}),
                "notes": request.notes,
                "status": WithdrawalStatus.PENDING,
                "processed_by": None,
                "processed_at": None,
                "rejected_by": None,
                "rejected_at": None,
                "rejection_reason": None,
                "payment_reference": None,
                "debit_transaction_id": None,
                "created_at": now,
                "updated_at": now,
            }
            self.storage.withdrawals[withdrawal_data["id"]] = withdrawal_data

        logger.info("Withdrawal %s requested by %s for %s", withdrawal_data["id"], owner_id, total_amount)
        return self._changed(withdrawal_data, "withdrawal.requested")

    def cancel(self, withdrawal_id: UUID, owner_id: UUID) -> CommissionWithdrawal:
        with self.storage.transaction():
            data = self._get_owned(withdrawal_id, owner_id)
            if data["status"] != WithdrawalStatus.PENDING:
                raise InvalidStateError("Cannot cancel non-pending withdrawal")
            self._set_status(data, WithdrawalStatus.CANCELLED)

        return self._changed(data, "withdrawal.cancelled")

    def approve(
        self,
        withdrawal_id: UUID,
        admin_id: Optional[str] = None,
        allowed_region_ids: Optional[list[UUID]] = None,
    ) -> CommissionWithdrawal:
        with self.storage.transaction():
            data = self._get_scoped(withdrawal_id, allowed_region_ids)
            if data["status"] != WithdrawalStatus.PENDING:
                raise InvalidStateError("Only pending withdrawals can be approved")
            self._check_commissions_confirmed(data)

            data["processed_by"] = admin_id or data["processed_by"]
            self._set_status(data, WithdrawalStatus.APPROVED)

        return self._changed(data, "withdrawal.approved")

    def reject(
        self,
        withdrawal_id: UUID,
        admin_id: Optional[str] = None,
        reason: Optional[str] = None,
        allowed_region_ids: Optional[list[UUID]] = None,
    ) -> CommissionWithdrawal:
        with self.storage.transaction():
            data = self._get_scoped(withdrawal_id, allowed_region_ids)
            if data["status"] != WithdrawalStatus.PENDING:
                raise InvalidStateError("Only pending withdrawals can be rejected")

            data["rejected_by"] = admin_id
            data["rejected_at"] = datetime.now(timezone.utc)
            data["rejection_reason"] = reason
            self._set_status(data, WithdrawalStatus.REJECTED)

        return self._changed(data, "withdrawal.rejected")

    def execute(self, withdrawal_id: UUID, owner_id: UUID) -> CommissionWithdrawal:
        """Debit the owner's account and hand the withdrawal to the payment rail."""
        with self.storage.transaction():
            data = self._get_owned(withdrawal_id, owner_id)
            if data["status"] != WithdrawalStatus.APPROVED:
                raise InvalidStateError("Withdrawal must be approved before execution")
            self._check_commissions_confirmed(data)
            self.ledger.verify_account(OwnerType.CONSULTANT, owner_id)

            transaction = self.ledger.debit_owner(
                OwnerType.CONSULTANT,
                owner_id,
                data["amount"],
                TransactionType.COMMISSION_WITHDRAWAL,
                reference_type=ReferenceType.COMMISSION_WITHDRAWAL,
                reference_id=data["id"],
                description="Withdrawal executed",
            )
            data["debit_transaction_id"] = transaction.id
            data["processed_at"] = data["processed_at"] or transaction.created_at
            self._set_status(data, WithdrawalStatus.PROCESSING)

        logger.info("Withdrawal %s executed, debited %s", withdrawal_id, data["amount"])
        return self._changed(data, "withdrawal.processing")

    def complete(
        self,
        withdrawal_id: UUID,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CommissionWithdrawal:
        """
        Apply the payment rail's confirmation. The debit already happened in
        ``execute``; this only settles the withdrawal and marks its
        commissions PAID.
        """
        with self.storage.transaction():
            data = self._get_data(withdrawal_id)
            if data["status"] == WithdrawalStatus.COMPLETED:
                return CommissionWithdrawal(**data)
            if data["status"] != WithdrawalStatus.PROCESSING:
                raise InvalidStateError("Only processing withdrawals can be completed")

            now = datetime.now(timezone.utc)
            for commission_id in data["commission_ids"]:
                commission = self.storage.commissions.get(commission_id)
                if commission and commission["status"] == CommissionStatus.CONFIRMED:
                    commission["status"] = CommissionStatus.PAID
                    commission["paid_at"] = now
                    commission["updated_at"] = now

            data["payment_reference"] = payment_reference or data["payment_reference"]
            if notes:
                data["notes"] = f"{data['notes']}\n{notes}" if data["notes"] else notes
            self._set_status(data, WithdrawalStatus.COMPLETED)

        return self._changed(data, "withdrawal.completed")

    def get(self, withdrawal_id: UUID) -> CommissionWithdrawal:
        with self.storage.read():
            return CommissionWithdrawal(**self._get_data(withdrawal_id))

    def list_for_owner(self, owner_id: UUID, status: Optional[WithdrawalStatus] = None) -> list[CommissionWithdrawal]:
        with self.storage.read():
            records = [
                w for w in self.storage.withdrawals.values()
                if w["consultant_id"] == owner_id and (status is None or w["status"] == status)
            ]
            records.sort(key=lambda w: w["created_at"], reverse=True)
            return [CommissionWithdrawal(**w) for w in records]

    def list_all(
        self,
        allowed_region_ids: Optional[list[UUID]] = None,
        status: Optional[WithdrawalStatus] = None,
    ) -> list[CommissionWithdrawal]:
        if allowed_region_ids is not None and not allowed_region_ids:
            return []

        with self.storage.read():
            records = [
                w for w in self.storage.withdrawals.values()
                if (status is None or w["status"] == status)
                and (allowed_region_ids is None or self._region_of(w) in allowed_region_ids)
            ]
            records.sort(key=lambda w: w["created_at"], reverse=True)
            return [CommissionWithdrawal(**w) for w in records]

    def _check_commissions_confirmed(self, data: dict) -> None:
        for commission_id in data["commission_ids"]:
            commission = self.storage.commissions.get(commission_id)
            if not commission or commission["status"] != CommissionStatus.CONFIRMED:
                raise IneligibleCommissionsError(
                    f"Commission {commission_id} is no longer confirmed; withdrawal {data['id']} cannot proceed"
                )

    def _set_status(self, data: dict, status: WithdrawalStatus) -> None:
        logger.info("Withdrawal %s: %s -> %s", data["id"], data["status"].value, status.value)
        data["status"] = status
        data["updated_at"] = datetime.now(timezone.utc)

    def _changed(self, data: dict, event: str) -> CommissionWithdrawal:
        withdrawal = CommissionWithdrawal(**data)
        self.notifier.send(event, consultant_id=withdrawal.consultant_id,
                           withdrawal_id=withdrawal.id, amount=str(withdrawal.amount))
        return withdrawal

    def _region_of(self, data: dict) -> Optional[UUID]:
        consultant = self.storage.consultants.get(data["consultant_id"]) or {}
        return consultant.get("region_id")

    def _get_scoped(self, withdrawal_id: UUID, allowed_region_ids: Optional[list[UUID]]) -> dict:
        data = self._get_data(withdrawal_id)
        if allowed_region_ids is not None and self._region_of(data) not in allowed_region_ids:
            raise ForbiddenError("Access denied for this region")
        return data

    def _get_owned(self, withdrawal_id: UUID, owner_id: UUID) -> dict:
        data = self._get_data(withdrawal_id)
        if data["consultant_id"] != owner_id:
            raise ForbiddenError("Unauthorized")
        return data

    def _get_data(self, withdrawal_id: UUID) -> dict:
        data = self.storage.withdrawals.get(withdrawal_id)
        if not data:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return data
