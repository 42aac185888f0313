from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


CENT = Decimal("0.01")


def quantize(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


class OwnerType(str, Enum):
    CONSULTANT = "CONSULTANT"
    COMPANY = "COMPANY"
    PLATFORM = "PLATFORM"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"


class Direction(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionType(str, Enum):
    COMMISSION_EARNED = "COMMISSION_EARNED"
    COMMISSION_CLAWBACK = "COMMISSION_CLAWBACK"
    COMMISSION_WITHDRAWAL = "COMMISSION_WITHDRAWAL"
    SUBSCRIPTION_PURCHASE = "SUBSCRIPTION_PURCHASE"
    JOB_POSTING_DEDUCTION = "JOB_POSTING_DEDUCTION"
    ADDON_PURCHASE = "ADDON_PURCHASE"
    TOP_UP = "TOP_UP"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"


class ReferenceType(str, Enum):
    COMMISSION = "COMMISSION"
    COMMISSION_WITHDRAWAL = "COMMISSION_WITHDRAWAL"
    SUBSCRIPTION = "SUBSCRIPTION"
    JOB = "JOB"


class VirtualAccount(BaseModel):
    id: UUID
    owner_type: OwnerType
    owner_id: UUID
    balance: Decimal = Decimal("0.00")
    total_credits: Decimal = Decimal("0.00")
    total_debits: Decimal = Decimal("0.00")
    status: AccountStatus = AccountStatus.ACTIVE
    currency: str = "USD"
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE


class VirtualTransaction(BaseModel):
    id: UUID
    account_id: UUID
    sequence: int
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    direction: Direction
    balance_after: Decimal
    status: TransactionStatus = TransactionStatus.COMPLETED
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[UUID] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == Direction.CREDIT else -self.amount


class AccountBalance(BaseModel):
    account_id: Optional[UUID] = None
    owner_type: OwnerType
    owner_id: UUID
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    currency: str
    status: AccountStatus
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class TransactionHistoryResponse(BaseModel):
    account_id: Optional[UUID] = None
    transactions: list[VirtualTransaction]
    total_count: int
    limit: int
    offset: int
    current_balance: Decimal


class LedgerAudit(BaseModel):
    """Result of replaying an account's transactions from a zero balance."""

    account_id: UUID
    transaction_count: int
    replayed_balance: Decimal
    stored_balance: Decimal
    replayed_credits: Decimal
    replayed_debits: Decimal
    mismatched_transaction_ids: list[UUID] = Field(default_factory=list)
    is_consistent: bool


class EarningsSummary(BaseModel):
    owner_type: OwnerType
    owner_id: UUID
    total_earnings: Decimal
    recent_earnings: Decimal = Field(..., description="Credits within the last period_days")
    period_days: int
    transaction_count: int
    current_balance: Decimal
    currency: str


class LedgerStats(BaseModel):
    """Platform-wide account totals for admins."""

    total_accounts: int
    active_accounts: int
    total_balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    currency: str
