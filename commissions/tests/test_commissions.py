"""
Unit Tests for the Commission Service

Tests cover:
1. Award flow and idempotency
2. Request / confirm flow
3. Dispute resolution
4. Clawback symmetry
5. Sales commissions and attribution
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from commissions.container import build_services
from commissions.models import (
    AwardCommissionInput,
    CommissionStatus,
    CommissionType,
    DisputeResolution,
    RequestCommissionInput,
    SalesCommissionInput,
    SalesEventType,
)
from commissions.service import months_between
from ledger.exceptions import (
    AlreadyReversedError,
    AttributionExpiredError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateError,
    MissingRegionError,
    NotFoundError,
)
from ledger.models import Direction, OwnerType, ReferenceType, TransactionType
from ledger.settings import Settings
from ledger.storage import InMemoryStorage


# Test constants
CONSULTANT_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
NO_REGION_ID = UUID("550e8400-e29b-41d4-a716-4466554400ff")
SALES_AGENT_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
REGION_ID = UUID("aaaaaaaa-0000-0000-0000-000000000001")
COMPANY_ID = UUID("77777777-7777-7777-7777-777777777777")
JOB_ID = UUID("11111111-1111-1111-1111-111111111111")
SUBSCRIPTION_ID = UUID("22222222-2222-2222-2222-222222222222")


def make_services():
    storage = InMemoryStorage()
    storage.add_consultant(CONSULTANT_ID, region_id=REGION_ID)
    storage.add_consultant(NO_REGION_ID)
    storage.add_consultant(SALES_AGENT_ID, region_id=REGION_ID, default_commission_rate=Decimal("0.15"), role="SALES_AGENT")
    storage.add_company(COMPANY_ID, region_id=REGION_ID, sales_agent_id=SALES_AGENT_ID)
    storage.set_job_payment(JOB_ID, Decimal("2000.00"))
    storage.set_subscription_payment(SUBSCRIPTION_ID, Decimal("990.00"))
    return build_services(Settings(seed_demo_data=False), storage=storage)


def ledger_balance(services, owner_id=CONSULTANT_ID):
    return services.ledger.get_balance(OwnerType.CONSULTANT, owner_id)


class TestAwardFlow:
    """Tests for system-initiated commission awards."""

    def test_award_credits_immediately(self):
        """Awarded commissions start CONFIRMED with one ledger credit."""
        services = make_services()

        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID,
            type=CommissionType.PLACEMENT,
            job_id=JOB_ID,
            amount=Decimal("200.00"),
        ))

        assert commission.status == CommissionStatus.CONFIRMED
        assert commission.confirmed_at is not None
        assert commission.region_id == REGION_ID
        balance = ledger_balance(services)
        assert balance.balance == Decimal("200.00")
        assert balance.total_credits == Decimal("200.00")

        credit = services.ledger.find_transaction(ReferenceType.COMMISSION, commission.id, Direction.CREDIT)
        assert credit.type == TransactionType.COMMISSION_EARNED

    def test_duplicate_award_is_noop(self):
        """Awarding twice for the same job yields one commission and one credit."""
        services = make_services()
        request = AwardCommissionInput(
            consultant_id=CONSULTANT_ID,
            type=CommissionType.PLACEMENT,
            job_id=JOB_ID,
            amount=Decimal("200.00"),
        )

        first = services.award_commission(request)
        second = services.award_commission(request)

        assert second.id == first.id
        assert services.commissions.list_commissions(consultant_id=CONSULTANT_ID).total == 1
        balance = ledger_balance(services)
        assert balance.total_credits == Decimal("200.00")
        assert balance.total_entries == 1

    def test_manual_awards_without_event_are_distinct(self):
        """CUSTOM awards with no job or subscription never collapse into one."""
        services = make_services()
        request = AwardCommissionInput(consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("25.00"))

        services.award_commission(request)
        services.award_commission(request)

        assert ledger_balance(services).balance == Decimal("50.00")

    def test_amount_derived_from_job_payment(self):
        """Without an amount the job payment is multiplied by the default rate."""
        services = make_services()

        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID,
            type=CommissionType.PLACEMENT,
            job_id=JOB_ID,
        ))

        assert commission.amount == Decimal("200.00")
        assert commission.rate == Decimal("0.10")

    def test_rate_override(self):
        """A caller rate beats the consultant's configured rate."""
        services = make_services()

        commission = services.award_commission(AwardCommissionInput(
            consultant_id=SALES_AGENT_ID,
            type=CommissionType.SUBSCRIPTION_SALE,
            subscription_id=SUBSCRIPTION_ID,
            rate=Decimal("0.2"),
        ))

        assert commission.amount == Decimal("198.00")

    def test_consultant_rate_used(self):
        """The consultant's default rate applies when no override is given."""
        services = make_services()

        commission = services.award_commission(AwardCommissionInput(
            consultant_id=SALES_AGENT_ID,
            type=CommissionType.SUBSCRIPTION_SALE,
            subscription_id=SUBSCRIPTION_ID,
        ))

        assert commission.amount == Decimal("148.50")

    def test_zero_configured_rate_not_replaced_by_default(self):
        """A configured rate of zero is a real rate, so the derived amount is zero."""
        services = make_services()
        consultant_id = uuid4()
        services.storage.add_consultant(consultant_id, region_id=REGION_ID, default_commission_rate=Decimal("0"))

        assert services.commissions.pricing.rate_for(consultant_id) == Decimal("0")
        with pytest.raises(InvalidAmountError):
            services.award_commission(AwardCommissionInput(
                consultant_id=consultant_id,
                type=CommissionType.PLACEMENT,
                job_id=JOB_ID,
            ))
        assert services.storage.commissions == {}

    def test_non_positive_amount_rejected(self):
        """Zero amounts fail before anything is written."""
        services = make_services()

        with pytest.raises(InvalidAmountError):
            services.award_commission(AwardCommissionInput(
                consultant_id=CONSULTANT_ID,
                type=CommissionType.CUSTOM,
                amount=Decimal("0"),
            ))

        assert services.storage.commissions == {}
        assert services.ledger.find_account(OwnerType.CONSULTANT, CONSULTANT_ID) is None

    def test_unknown_consultant(self):
        """Awards need a known consultant."""
        services = make_services()

        with pytest.raises(NotFoundError):
            services.award_commission(AwardCommissionInput(
                consultant_id=uuid4(), type=CommissionType.CUSTOM, amount=Decimal("10.00"),
            ))


class TestRequestConfirmFlow:
    """Tests for consultant-initiated commissions."""

    def test_request_has_no_ledger_effect(self):
        """Requested commissions are PENDING and leave the balance alone."""
        services = make_services()

        commission = services.request_commission(RequestCommissionInput(
            consultant_id=CONSULTANT_ID,
            type=CommissionType.RECRUITMENT_SERVICE,
            amount=Decimal("75.00"),
        ))

        assert commission.status == CommissionStatus.PENDING
        assert commission.confirmed_at is None
        assert ledger_balance(services).balance == Decimal("0.00")

    def test_request_requires_region(self):
        """A consultant with no region cannot request a commission."""
        services = make_services()

        with pytest.raises(MissingRegionError):
            services.request_commission(RequestCommissionInput(
                consultant_id=NO_REGION_ID,
                type=CommissionType.CUSTOM,
                amount=Decimal("10.00"),
            ))

    def test_confirm_credits_exactly_once(self):
        """Confirming twice credits once; the second call only reaffirms."""
        services = make_services()
        commission = services.request_commission(RequestCommissionInput(
            consultant_id=CONSULTANT_ID,
            type=CommissionType.CUSTOM,
            amount=Decimal("75.00"),
        ))

        confirmed = services.confirm_commission(commission.id)
        again = services.confirm_commission(commission.id)

        assert confirmed.status == CommissionStatus.CONFIRMED
        assert confirmed.confirmed_at is not None
        assert again.status == CommissionStatus.CONFIRMED
        assert again.confirmed_at == confirmed.confirmed_at
        balance = ledger_balance(services)
        assert balance.balance == Decimal("75.00")
        assert balance.total_entries == 1

    def test_confirm_cancelled_fails(self):
        """Terminal commissions cannot be confirmed."""
        services = make_services()
        commission = services.request_commission(RequestCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("75.00"),
        ))
        services.commissions.cancel(commission.id, "duplicate")

        with pytest.raises(InvalidStateError):
            services.confirm_commission(commission.id)

    def test_mark_as_paid(self):
        """Paying is a status change only."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("40.00"),
        ))

        paid = services.commissions.mark_as_paid(commission.id)

        assert paid.status == CommissionStatus.PAID
        assert paid.paid_at is not None
        assert ledger_balance(services).balance == Decimal("40.00")

    def test_confirm_paid_keeps_paid(self):
        """Re-confirming a paid commission fails and leaves it PAID with one credit."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("40.00"),
        ))
        services.commissions.mark_as_paid(commission.id)

        with pytest.raises(InvalidStateError):
            services.confirm_commission(commission.id)

        assert services.commissions.get(commission.id).status == CommissionStatus.PAID
        assert ledger_balance(services).total_entries == 1

    def test_process_payments_all_or_nothing(self):
        """One unpayable commission stops the whole batch."""
        services = make_services()
        confirmed = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("40.00"),
        ))
        pending = services.request_commission(RequestCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("10.00"),
        ))

        with pytest.raises(InvalidStateError):
            services.commissions.process_payments([confirmed.id, pending.id])

        assert services.commissions.get(confirmed.id).status == CommissionStatus.CONFIRMED


class TestDisputeFlow:
    """Tests for disputes and their resolution."""

    def test_dispute_and_resolve_valid(self):
        """A valid dispute restores CONFIRMED without touching the ledger."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("90.00"),
        ))

        disputed = services.dispute_commission(commission.id, "Candidate left in week one")
        assert disputed.status == CommissionStatus.DISPUTED
        assert "Candidate left in week one" in disputed.notes

        resolved = services.resolve_dispute(commission.id, DisputeResolution.VALID, "Replacement found")
        assert resolved.status == CommissionStatus.CONFIRMED
        assert "Replacement found" in resolved.notes
        assert ledger_balance(services).balance == Decimal("90.00")
        assert ledger_balance(services).total_entries == 1

    def test_paid_commission_resolves_to_confirmed(self):
        """A PAID commission comes back as CONFIRMED after a valid dispute."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("90.00"),
        ))
        services.commissions.mark_as_paid(commission.id)
        services.dispute_commission(commission.id, "Invoice query")

        resolved = services.resolve_dispute(commission.id, DisputeResolution.VALID)

        assert resolved.status == CommissionStatus.CONFIRMED

    def test_resolve_invalid_claws_back(self):
        """An invalid dispute reverses the credit."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("90.00"),
        ))
        services.dispute_commission(commission.id, "Fraudulent placement")

        resolved = services.resolve_dispute(commission.id, DisputeResolution.INVALID, "Confirmed fraud")

        assert resolved.status == CommissionStatus.CLAWBACK
        assert ledger_balance(services).balance == Decimal("0.00")

    def test_disputed_pending_commission_credits_on_valid(self):
        """A commission disputed before confirmation is credited when upheld."""
        services = make_services()
        commission = services.request_commission(RequestCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("30.00"),
        ))
        services.dispute_commission(commission.id, "Check hours")

        services.resolve_dispute(commission.id, DisputeResolution.VALID)

        assert ledger_balance(services).balance == Decimal("30.00")

    def test_resolve_requires_dispute(self):
        """Only DISPUTED commissions can be resolved."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("90.00"),
        ))

        with pytest.raises(InvalidStateError):
            services.resolve_dispute(commission.id, DisputeResolution.VALID)


class TestClawbackFlow:
    """Tests for reversing commissions."""

    def test_clawback_confirmed_debits_original_amount(self):
        """Clawback of a CONFIRMED commission debits exactly its amount."""
        services = make_services()
        services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("100.00"),
        ))
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.PLACEMENT, job_id=JOB_ID, amount=Decimal("60.00"),
        ))

        reversed_commission = services.clawback_commission(commission.id, "Placement fell through")

        assert reversed_commission.status == CommissionStatus.CLAWBACK
        balance = ledger_balance(services)
        assert balance.balance == Decimal("100.00")
        assert balance.total_debits == Decimal("60.00")
        debit = services.ledger.find_transaction(ReferenceType.COMMISSION, commission.id, Direction.DEBIT)
        assert debit.type == TransactionType.COMMISSION_CLAWBACK

    def test_clawback_pending_cancels(self):
        """A PENDING commission is cancelled with no ledger effect."""
        services = make_services()
        commission = services.request_commission(RequestCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("30.00"),
        ))

        reversed_commission = services.clawback_commission(commission.id, "Not billable")

        assert reversed_commission.status == CommissionStatus.CANCELLED
        assert ledger_balance(services).total_entries == 0

    def test_clawback_twice_fails(self):
        """Reversed commissions cannot be reversed again."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("30.00"),
        ))
        services.clawback_commission(commission.id, "First")

        with pytest.raises(AlreadyReversedError):
            services.clawback_commission(commission.id, "Second")

        assert ledger_balance(services).balance == Decimal("0.00")

    def test_clawback_after_funds_spent_rolls_back(self):
        """If the balance cannot cover the clawback, nothing changes."""
        services = make_services()
        commission = services.award_commission(AwardCommissionInput(
            consultant_id=CONSULTANT_ID, type=CommissionType.CUSTOM, amount=Decimal("30.00"),
        ))
        services.ledger.debit_owner(OwnerType.CONSULTANT, CONSULTANT_ID, Decimal("20.00"), TransactionType.ADJUSTMENT)

        with pytest.raises(InsufficientBalanceError):
            services.clawback_commission(commission.id, "Late reversal")

        assert services.commissions.get(commission.id).status == CommissionStatus.CONFIRMED
        assert ledger_balance(services).balance == Decimal("10.00")


class TestSalesCommission:
    """Tests for sales-agent commissions on company payments."""

    def test_job_payment_awards_sales_agent(self):
        """A job payment awards RECRUITMENT_SERVICE at the agent's rate and locks attribution."""
        services = make_services()

        commission = services.commissions.process_sales_commission(SalesCommissionInput(
            company_id=COMPANY_ID,
            amount=Decimal("1000.00"),
            description="Job posting payment",
            job_id=JOB_ID,
            event_type=SalesEventType.JOB_PAYMENT,
        ))

        assert commission.consultant_id == SALES_AGENT_ID
        assert commission.type == CommissionType.RECRUITMENT_SERVICE
        assert commission.amount == Decimal("150.00")
        assert services.storage.companies[COMPANY_ID]["attribution_locked"] is True
        assert ledger_balance(services, SALES_AGENT_ID).balance == Decimal("150.00")

    def test_sales_commission_idempotent(self):
        """The same subscription sale is only commissioned once."""
        services = make_services()
        request = SalesCommissionInput(
            company_id=COMPANY_ID,
            amount=Decimal("990.00"),
            description="Subscription upgrade",
            subscription_id=SUBSCRIPTION_ID,
        )

        first = services.commissions.process_sales_commission(request)
        second = services.commissions.process_sales_commission(request)

        assert first.id == second.id
        assert ledger_balance(services, SALES_AGENT_ID).total_entries == 1

    def test_expired_attribution(self):
        """Attribution older than the window earns nothing."""
        services = make_services()
        company = services.storage.companies[COMPANY_ID]
        company["attribution_locked"] = True
        company["attribution_locked_at"] = datetime.now(timezone.utc) - timedelta(days=400)

        with pytest.raises(AttributionExpiredError):
            services.commissions.process_sales_commission(SalesCommissionInput(
                company_id=COMPANY_ID,
                amount=Decimal("990.00"),
                description="Renewal",
                subscription_id=SUBSCRIPTION_ID,
            ))

    def test_unknown_company(self):
        """Sales commissions need a known company."""
        services = make_services()

        with pytest.raises(NotFoundError):
            services.commissions.process_sales_commission(SalesCommissionInput(
                company_id=uuid4(), amount=Decimal("10.00"), description="x",
            ))

    def test_zero_rate_agent_earns_nothing(self):
        """An agent configured at zero is not paid the platform default."""
        services = make_services()
        services.storage.consultants[SALES_AGENT_ID]["default_commission_rate"] = Decimal("0")

        with pytest.raises(InvalidAmountError):
            services.commissions.process_sales_commission(SalesCommissionInput(
                company_id=COMPANY_ID,
                amount=Decimal("1000.00"),
                description="Job posting payment",
                job_id=JOB_ID,
                event_type=SalesEventType.JOB_PAYMENT,
            ))

        assert services.storage.companies[COMPANY_ID]["attribution_locked"] is False
        assert services.ledger.find_account(OwnerType.CONSULTANT, SALES_AGENT_ID) is None

    def test_months_between(self):
        """Whole months only count once the day of month is reached."""
        start = datetime(2025, 1, 15, tzinfo=timezone.utc)

        assert months_between(start, datetime(2026, 1, 14, tzinfo=timezone.utc)) == 11
        assert months_between(start, datetime(2026, 1, 15, tzinfo=timezone.utc)) == 12


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
