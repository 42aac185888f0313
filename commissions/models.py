from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class CommissionType(str, Enum):
    PLACEMENT = "PLACEMENT"
    RECRUITMENT_SERVICE = "RECRUITMENT_SERVICE"
    SUBSCRIPTION_SALE = "SUBSCRIPTION_SALE"
    CUSTOM = "CUSTOM"


class CommissionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    DISPUTED = "DISPUTED"
    CLAWBACK = "CLAWBACK"
    CANCELLED = "CANCELLED"


TERMINAL_COMMISSION_STATUSES = frozenset({CommissionStatus.CLAWBACK, CommissionStatus.CANCELLED})
CREDITED_COMMISSION_STATUSES = frozenset({
    CommissionStatus.CONFIRMED,
    CommissionStatus.PAID,
    CommissionStatus.DISPUTED,
})


class DisputeResolution(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class OwnerRole(str, Enum):
    CONSULTANT = "CONSULTANT"
    SALES_AGENT = "SALES_AGENT"


class SalesEventType(str, Enum):
    JOB_PAYMENT = "JOB_PAYMENT"
    SUBSCRIPTION_SALE = "SUBSCRIPTION_SALE"


class AwardCommissionInput(BaseModel):
    consultant_id: UUID
    type: CommissionType
    job_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    amount: Optional[Decimal] = Field(default=None, description="Explicit amount; derived from the job or subscription payment when omitted")
    rate: Optional[Decimal] = Field(default=None, ge=0, le=1, description="Overrides the consultant's default rate")
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "consultant_id": "550e8400-e29b-41d4-a716-446655440000",
            "type": "PLACEMENT",
            "job_id": "11111111-1111-1111-1111-111111111111",
            "amount": 200.00,
        }
    })


class RequestCommissionInput(AwardCommissionInput):
    pass


class SalesCommissionInput(BaseModel):
    company_id: UUID
    amount: Decimal = Field(..., description="Payment figure the commission is computed from")
    description: str
    job_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    event_type: SalesEventType = SalesEventType.SUBSCRIPTION_SALE


class DisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ResolveDisputeRequest(BaseModel):
    resolution: DisputeResolution
    notes: Optional[str] = None


class ClawbackRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ProcessPaymentsRequest(BaseModel):
    commission_ids: list[UUID] = Field(..., min_length=1)


class RequestWithdrawalInput(BaseModel):
    amount: Decimal
    payment_method: str
    payment_details: dict[str, Any] = Field(default_factory=dict)
    commission_ids: list[UUID]
    notes: Optional[str] = None
    owner_role: OwnerRole = OwnerRole.CONSULTANT

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 500.00,
            "payment_method": "BANK_TRANSFER",
            "payment_details": {"iban": "GB33BUKB20201555555555"},
            "commission_ids": ["33333333-3333-3333-3333-333333333333"],
        }
    })


class ApproveWithdrawalRequest(BaseModel):
    admin_id: Optional[str] = None
    allowed_region_ids: Optional[list[UUID]] = None


class RejectWithdrawalRequest(ApproveWithdrawalRequest):
    reason: Optional[str] = None


class CompleteWithdrawalRequest(BaseModel):
    payment_reference: Optional[str] = None
    notes: Optional[str] = None


class Commission(BaseModel):
    id: UUID
    consultant_id: UUID
    region_id: Optional[UUID] = None
    job_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    type: CommissionType
    amount: Decimal
    rate: Optional[Decimal] = None
    status: CommissionStatus
    description: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_COMMISSION_STATUSES

    def was_credited(self) -> bool:
        return self.status in CREDITED_COMMISSION_STATUSES


class CommissionWithdrawal(BaseModel):
    id: UUID
    consultant_id: UUID
    owner_role: OwnerRole = OwnerRole.CONSULTANT
    amount: Decimal
    commission_ids: list[UUID]
    payment_method: str
    payment_details: dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    status: WithdrawalStatus
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    payment_reference: Optional[str] = None
    debit_transaction_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AvailableCommission(BaseModel):
    id: UUID
    amount: Decimal
    description: str
    created_at: datetime


class BalanceSummary(BaseModel):
    consultant_id: UUID
    available_balance: Decimal
    pending_balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    currency: str
    commission_count: int
    available_commissions: list[AvailableCommission]


class CommissionListResponse(BaseModel):
    commissions: list[Commission]
    total: int


class PriceQuote(BaseModel):
    amount: Decimal
    rate: Optional[Decimal] = None
    currency: str
