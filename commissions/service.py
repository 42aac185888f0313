import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from ledger.exceptions import (
    AlreadyReversedError,
    AttributionExpiredError,
    InvalidAmountError,
    InvalidStateError,
    MissingRegionError,
    NotFoundError,
)
from ledger.models import Direction, OwnerType, ReferenceType, TransactionType, quantize
from ledger.service import LedgerService

from .locks import RELEASABLE_WITHDRAWAL_STATUSES, locked_commission_ids_for
from .models import (
    AwardCommissionInput,
    Commission,
    CommissionListResponse,
    CommissionStatus,
    CommissionType,
    DisputeResolution,
    RequestCommissionInput,
    SalesCommissionInput,
    SalesEventType,
    TERMINAL_COMMISSION_STATUSES,
    WithdrawalStatus,
)
from .notifications import Notifier
from .pricing import PricingResolver, StoredPricingResolver

logger = logging.getLogger(__name__)


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months elapsed from ``start`` to ``end``."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


class CommissionService:
    def __init__(
        self,
        ledger: LedgerService,
        pricing: Optional[PricingResolver] = None,
        notifier: Optional[Notifier] = None,
        default_rate: Decimal = Decimal("0.10"),
        attribution_window_months: int = 12,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.pricing = pricing or StoredPricingResolver(self.storage, default_rate, ledger.currency)
        self.notifier = notifier or Notifier()
        self.default_rate = default_rate
        self.attribution_window_months = attribution_window_months

    def award(self, request: AwardCommissionInput) -> Commission:
        """Create a CONFIRMED commission and credit the consultant's account in one unit."""
        consultant = self._get_consultant(request.consultant_id)

        with self.storage.transaction():
            existing = self._find_existing(request.consultant_id, request.type, request.job_id, request.subscription_id)
            if existing:
                logger.warning("Commission for %s already awarded (%s), returning existing", request.consultant_id, existing["id"])
                return Commission(**existing)

            amount, rate = self._resolve_amount(request)
            commission_data = self._create_confirmed(
                consultant_id=request.consultant_id,
                region_id=consultant["region_id"],
                type=request.type,
                amount=amount,
                rate=rate,
                job_id=request.job_id,
                subscription_id=request.subscription_id,
                description=request.description,
            )

        commission = Commission(**commission_data)
        self.notifier.send("commission.earned", consultant_id=commission.consultant_id,
                           commission_id=commission.id, amount=str(commission.amount))
        return commission

    def request(self, request: RequestCommissionInput) -> Commission:
        """Record a consultant-initiated commission as PENDING; the ledger is untouched until confirm."""
        consultant = self._get_consultant(request.consultant_id)
        if not consultant.get("region_id"):
            raise MissingRegionError(f"Consultant {request.consultant_id} has no region assigned")

        with self.storage.transaction():
            existing = self._find_existing(request.consultant_id, request.type, request.job_id, request.subscription_id)
            if existing:
                logger.warning("Commission for %s already exists (%s), returning existing", request.consultant_id, existing["id"])
                return Commission(**existing)

            amount, rate = self._resolve_amount(request)
            commission_data = self._new_record(
                consultant_id=request.consultant_id,
                region_id=consultant["region_id"],
                type=request.type,
                amount=amount,
                rate=rate,
                job_id=request.job_id,
                subscription_id=request.subscription_id,
                description=request.description,
                status=CommissionStatus.PENDING,
            )
            self.storage.commissions[commission_data["id"]] = commission_data

        logger.info("Commission %s requested by %s for %s", commission_data["id"], request.consultant_id, amount)
        return Commission(**commission_data)

    def confirm(self, commission_id: UUID) -> Commission:
        """
        Move a commission to CONFIRMED, crediting the ledger the first time.

        Confirming an already credited commission only re-affirms CONFIRMED.
        A PAID commission is refused rather than touched up: setting it back
        to CONFIRMED would drop the record that it was paid and let it be
        withdrawn again.
        """
        credited = False
        with self.storage.transaction():
            data = self._get_data(commission_id)
            status = data["status"]

            if status in TERMINAL_COMMISSION_STATUSES:
                raise InvalidStateError(f"Cannot confirm commission in {status.value} state")
            if status == CommissionStatus.PAID:
                raise InvalidStateError("Commission has already been paid")

            if not self._was_credited(data):
                self._credit(data)
                credited = True

            now = datetime.now(timezone.utc)
            data["status"] = CommissionStatus.CONFIRMED
            data["confirmed_at"] = data["confirmed_at"] or now
            data["updated_at"] = now

        commission = Commission(**data)
        if credited:
            logger.info("Commission %s confirmed, credited %s", commission_id, commission.amount)
            self.notifier.send("commission.earned", consultant_id=commission.consultant_id,
                               commission_id=commission.id, amount=str(commission.amount))
        return commission

    def mark_as_paid(self, commission_id: UUID) -> Commission:
        with self.storage.transaction():
            data = self._get_data(commission_id)
            self._check_payable(data)
            self._mark_paid(data)

        commission = Commission(**data)
        self.notifier.send("commission.paid", consultant_id=commission.consultant_id, commission_id=commission.id)
        return commission

    def process_payments(self, commission_ids: list[UUID]) -> list[Commission]:
        with self.storage.transaction():
            records = [self._get_data(commission_id) for commission_id in commission_ids]
            for data in records:
                self._check_payable(data)
            for data in records:
                self._mark_paid(data)

        logger.info("Marked %d commissions as paid", len(records))
        return [Commission(**data) for data in records]

    def dispute(self, commission_id: UUID, reason: str) -> Commission:
        with self.storage.transaction():
            data = self._get_data(commission_id)
            if data["status"] in TERMINAL_COMMISSION_STATUSES:
                raise InvalidStateError(f"Cannot dispute commission in {data['status'].value} state")

            data["status"] = CommissionStatus.DISPUTED
            self._append_note(data, f"Disputed: {reason}")

        logger.info("Commission %s disputed", commission_id)
        commission = Commission(**data)
        self.notifier.send("commission.disputed", consultant_id=commission.consultant_id,
                           commission_id=commission.id, reason=reason)
        return commission

    def resolve_dispute(self, commission_id: UUID, resolution: DisputeResolution, notes: Optional[str] = None) -> Commission:
        """
        VALID restores CONFIRMED. A commission that was PAID before the
        dispute also comes back as CONFIRMED; no prior status is kept.
        INVALID reverses the commission through ``clawback``.
        """
        resolution = DisputeResolution(resolution)

        with self.storage.transaction():
            data = self._get_data(commission_id)
            if data["status"] != CommissionStatus.DISPUTED:
                raise InvalidStateError("Only disputed commissions can be resolved")

            if resolution == DisputeResolution.INVALID:
                return self.clawback(commission_id, notes or "Dispute resolved as invalid")

            # Disputed straight from PENDING: never credited, so this is the confirm credit.
            if not self._was_credited(data):
                self._credit(data)

            now = datetime.now(timezone.utc)
            data["status"] = CommissionStatus.CONFIRMED
            data["confirmed_at"] = data["confirmed_at"] or now
            self._append_note(data, f"Dispute resolved as valid{': ' + notes if notes else ''}")

        logger.info("Commission %s dispute resolved as valid", commission_id)
        return Commission(**data)

    def clawback(self, commission_id: UUID, reason: str) -> Commission:
        """
        Reverse a commission. Credited commissions are debited back; PENDING
        ones are cancelled. PENDING or APPROVED withdrawals that include the
        commission can no longer be paid as requested, so they are REJECTED
        in the same unit and their other commissions become available again.
        """
        with self.storage.transaction():
            data = self._get_data(commission_id)
            if data["status"] in TERMINAL_COMMISSION_STATUSES:
                raise AlreadyReversedError(f"Commission {commission_id} is already {data['status'].value}")

            if data["status"] == CommissionStatus.PENDING or not self._was_credited(data):
                data["status"] = CommissionStatus.CANCELLED
                self._append_note(data, f"Cancelled: {reason}")
            else:
                self.ledger.debit_owner(
                    OwnerType.CONSULTANT,
                    data["consultant_id"],
                    data["amount"],
                    TransactionType.COMMISSION_CLAWBACK,
                    reference_type=ReferenceType.COMMISSION,
                    reference_id=data["id"],
                    description=f"Commission clawback: {reason}",
                )
                data["status"] = CommissionStatus.CLAWBACK
                self._append_note(data, f"Clawback: {reason}")

            released = self._reject_withdrawals_including(data, reason)

        logger.info("Commission %s reversed to %s", commission_id, data["status"].value)
        commission = Commission(**data)
        self.notifier.send("commission.clawback", consultant_id=commission.consultant_id,
                           commission_id=commission.id, status=commission.status.value)
        for withdrawal_id in released:
            self.notifier.send("withdrawal.rejected", consultant_id=commission.consultant_id,
                               withdrawal_id=withdrawal_id)
        return commission

    def cancel(self, commission_id: UUID, reason: Optional[str] = None) -> Commission:
        with self.storage.transaction():
            data = self._get_data(commission_id)
            if data["status"] != CommissionStatus.PENDING:
                raise InvalidStateError("Only pending commissions can be cancelled")
            data["status"] = CommissionStatus.CANCELLED
            self._append_note(data, f"Cancelled{': ' + reason if reason else ''}")

        return Commission(**data)

    def process_sales_commission(self, request: SalesCommissionInput) -> Commission:
        """
        Award the company's sales agent for a job payment or subscription sale.

        Attribution expires ``attribution_window_months`` after it was locked;
        the first paid event locks it.
        """
        commission_type = (
            CommissionType.RECRUITMENT_SERVICE
            if request.event_type == SalesEventType.JOB_PAYMENT
            else CommissionType.SUBSCRIPTION_SALE
        )

        with self.storage.transaction():
            company = self.storage.companies.get(request.company_id)
            if not company:
                raise NotFoundError(f"Company {request.company_id} not found")

            sales_agent_id = company.get("sales_agent_id")
            if not sales_agent_id:
                raise NotFoundError("No sales agent assigned to company")
            agent = self._get_consultant(sales_agent_id)

            existing = self._find_existing(sales_agent_id, commission_type, request.job_id, request.subscription_id)
            if existing:
                return Commission(**existing)

            now = datetime.now(timezone.utc)
            locked_at = company.get("attribution_locked_at")
            if locked_at and months_between(locked_at, now) >= self.attribution_window_months:
                raise AttributionExpiredError(f"Attribution for company {request.company_id} expired")

            rate = agent.get("default_commission_rate")
            if rate is None:
                rate = self.default_rate
            amount = quantize(Decimal(str(request.amount)) * rate)
            if amount <= 0:
                raise InvalidAmountError("Commission amount must be positive")

            commission_data = self._create_confirmed(
                consultant_id=sales_agent_id,
                region_id=company.get("region_id") or agent.get("region_id"),
                type=commission_type,
                amount=amount,
                rate=rate,
                job_id=request.job_id,
                subscription_id=request.subscription_id,
                description=request.description,
            )

            if not company.get("attribution_locked"):
                company["attribution_locked"] = True
                company["attribution_locked_at"] = now

        commission = Commission(**commission_data)
        self.notifier.send("commission.earned", consultant_id=commission.consultant_id,
                           commission_id=commission.id, amount=str(commission.amount))
        return commission

    def get(self, commission_id: UUID) -> Commission:
        with self.storage.read():
            return Commission(**self._get_data(commission_id))

    def list_commissions(
        self,
        consultant_id: Optional[UUID] = None,
        region_id: Optional[UUID] = None,
        status: Optional[CommissionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> CommissionListResponse:
        with self.storage.read():
            records = [
                c for c in self.storage.commissions.values()
                if (consultant_id is None or c["consultant_id"] == consultant_id)
                and (region_id is None or c["region_id"] == region_id)
                and (status is None or c["status"] == status)
            ]
            records.sort(key=lambda c: c["created_at"], reverse=True)
            return CommissionListResponse(
                commissions=[Commission(**c) for c in records[offset:offset + limit]],
                total=len(records),
            )

    def _resolve_amount(self, request: AwardCommissionInput) -> tuple[Decimal, Optional[Decimal]]:
        if request.amount is not None:
            amount, rate = quantize(request.amount), request.rate
        else:
            quote = self.pricing.resolve(
                request.consultant_id,
                job_id=request.job_id,
                subscription_id=request.subscription_id,
                override_rate=request.rate,
            )
            amount, rate = quantize(quote.amount), quote.rate

        if amount <= 0:
            raise InvalidAmountError("Commission amount must be positive")
        return amount, rate

    def _find_existing(
        self,
        consultant_id: UUID,
        type: CommissionType,
        job_id: Optional[UUID],
        subscription_id: Optional[UUID],
    ) -> Optional[dict]:
        # Only event-linked commissions have a natural key; manual ones never collide.
        if job_id is None and subscription_id is None:
            return None
        for commission in self.storage.commissions.values():
            if (
                commission["consultant_id"] == consultant_id
                and commission["type"] == type
                and commission["job_id"] == job_id
                and commission["subscription_id"] == subscription_id
            ):
                return commission
        return None

    def _new_record(self, status: CommissionStatus, **fields) -> dict:
        now = datetime.now(timezone.utc)
        return {
            "id": uuid4(),
            "consultant_id": fields["consultant_id"],
            "region_id": fields.get("region_id"),
            "job_id": fields.get("job_id"),
            "subscription_id": fields.get("subscription_id"),
            "type": fields["type"],
            "amount": fields["amount"],
            "rate": fields.get("rate"),
            "status": status,
            "description": fields.get("description") or f"Commission for {fields['type'].value}",
            "notes": None,
            "created_at": now,
            "confirmed_at": now if status == CommissionStatus.CONFIRMED else None,
            "paid_at": None,
            "updated_at": now,
        }

    def _create_confirmed(self, **fields) -> dict:
        commission_data = self._new_record(status=CommissionStatus.CONFIRMED, **fields)
        self.storage.commissions[commission_data["id"]] = commission_data
        self._credit(commission_data)
        logger.info("Commission %s awarded to %s: %s", commission_data["id"], commission_data["consultant_id"], commission_data["amount"])
        return commission_data

    def _credit(self, data: dict) -> None:
        self.ledger.credit_owner(
            OwnerType.CONSULTANT,
            data["consultant_id"],
            data["amount"],
            TransactionType.COMMISSION_EARNED,
            reference_type=ReferenceType.COMMISSION,
            reference_id=data["id"],
            description=f"Commission earned: {data['description']}",
        )

    def _was_credited(self, data: dict) -> bool:
        return self.ledger.find_transaction(ReferenceType.COMMISSION, data["id"], Direction.CREDIT) is not None

    def _reject_withdrawals_including(self, data: dict, reason: str) -> list[UUID]:
        withdrawal_ids = [
            w["id"] for w in self.storage.withdrawals.values()
            if w["status"] in RELEASABLE_WITHDRAWAL_STATUSES and data["id"] in w["commission_ids"]
        ]
        now = datetime.now(timezone.utc)
        for withdrawal_id in withdrawal_ids:
            withdrawal = self.storage.withdrawals[withdrawal_id]
            logger.info("Withdrawal %s: %s -> REJECTED, commission %s reversed",
                        withdrawal_id, withdrawal["status"].value, data["id"])
            withdrawal["status"] = WithdrawalStatus.REJECTED
            withdrawal["rejected_at"] = now
            withdrawal["rejection_reason"] = f"Commission {data['id']} reversed: {reason}"
            withdrawal["updated_at"] = now
        return withdrawal_ids

    def _check_payable(self, data: dict) -> None:
        if data["status"] != CommissionStatus.CONFIRMED:
            raise InvalidStateError(f"Commission {data['id']} is {data['status'].value}, only confirmed commissions can be paid")
        if data["id"] in locked_commission_ids_for(self.storage, data["consultant_id"]):
            raise InvalidStateError(f"Commission {data['id']} is locked by an active withdrawal")

    def _mark_paid(self, data: dict) -> None:
        now = datetime.now(timezone.utc)
        data["status"] = CommissionStatus.PAID
        data["paid_at"] = now
        data["updated_at"] = now

    def _append_note(self, data: dict, text: str) -> None:
        now = datetime.now(timezone.utc)
        line = f"[{now.isoformat()}] {text}"
        data["notes"] = f"{data['notes']}\n{line}" if data["notes"] else line
        data["updated_at"] = now

    def _get_consultant(self, consultant_id: UUID) -> dict:
        consultant = self.storage.consultants.get(consultant_id)
        if not consultant:
            raise NotFoundError(f"Consultant {consultant_id} not found")
        return consultant

    def _get_data(self, commission_id: UUID) -> dict:
        data = self.storage.commissions.get(commission_id)
        if not data:
            raise NotFoundError(f"Commission {commission_id} not found")
        return data
