from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from ledger.service import LedgerService
from ledger.settings import Settings, get_settings
from ledger.storage import InMemoryStorage

from .models import (
    AwardCommissionInput,
    BalanceSummary,
    Commission,
    CommissionWithdrawal,
    DisputeResolution,
    RequestCommissionInput,
    RequestWithdrawalInput,
)
from .notifications import NotificationSink, Notifier
from .pricing import PricingResolver
from .service import CommissionService
from .withdrawals import WithdrawalService


@dataclass
class Services:
    """The services of one process, built once and passed to whoever needs them."""

    storage: InMemoryStorage
    ledger: LedgerService
    commissions: CommissionService
    withdrawals: WithdrawalService

    def award_commission(self, request: AwardCommissionInput) -> Commission:
        return self.commissions.award(request)

    def request_commission(self, request: RequestCommissionInput) -> Commission:
        return self.commissions.request(request)

    def confirm_commission(self, commission_id: UUID) -> Commission:
        return self.commissions.confirm(commission_id)

    def dispute_commission(self, commission_id: UUID, reason: str) -> Commission:
        return self.commissions.dispute(commission_id, reason)

    def resolve_dispute(self, commission_id: UUID, resolution: DisputeResolution, notes: Optional[str] = None) -> Commission:
        return self.commissions.resolve_dispute(commission_id, resolution, notes)

    def clawback_commission(self, commission_id: UUID, reason: str) -> Commission:
        return self.commissions.clawback(commission_id, reason)

    def calculate_balance(self, owner_id: UUID) -> BalanceSummary:
        return self.withdrawals.calculate_balance(owner_id)

    def request_withdrawal(self, owner_id: UUID, request: RequestWithdrawalInput) -> CommissionWithdrawal:
        return self.withdrawals.request(owner_id, request)

    def cancel_withdrawal(self, withdrawal_id: UUID, owner_id: UUID) -> CommissionWithdrawal:
        return self.withdrawals.cancel(withdrawal_id, owner_id)

    def approve_withdrawal(self, withdrawal_id: UUID, admin_id: Optional[str] = None) -> CommissionWithdrawal:
        return self.withdrawals.approve(withdrawal_id, admin_id=admin_id)

    def execute_withdrawal(self, withdrawal_id: UUID, owner_id: UUID) -> CommissionWithdrawal:
        return self.withdrawals.execute(withdrawal_id, owner_id)


def build_services(
    settings: Optional[Settings] = None,
    storage: Optional[InMemoryStorage] = None,
    pricing: Optional[PricingResolver] = None,
    notification_sink: Optional[NotificationSink] = None,
) -> Services:
    settings = settings or get_settings()
    storage = storage or InMemoryStorage(seed=settings.seed_demo_data)
    notifier = Notifier(notification_sink)

    ledger = LedgerService(storage, currency=settings.currency)
    commissions = CommissionService(
        ledger,
        pricing=pricing,
        notifier=notifier,
        default_rate=settings.default_commission_rate,
        attribution_window_months=settings.attribution_window_months,
    )
    withdrawals = WithdrawalService(ledger, notifier=notifier)
    return Services(storage=storage, ledger=ledger, commissions=commissions, withdrawals=withdrawals)
