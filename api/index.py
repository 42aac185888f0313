import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from commissions.container import Services, build_services
from commissions.models import (
    ApproveWithdrawalRequest,
    AwardCommissionInput,
    BalanceSummary,
    ClawbackRequest,
    Commission,
    CommissionListResponse,
    CommissionStatus,
    CommissionWithdrawal,
    CompleteWithdrawalRequest,
    DisputeRequest,
    ProcessPaymentsRequest,
    RejectWithdrawalRequest,
    RequestCommissionInput,
    RequestWithdrawalInput,
    ResolveDisputeRequest,
    SalesCommissionInput,
    WithdrawalStatus,
)
from ledger.exceptions import LedgerServiceError, NotFoundError
from ledger.models import (
    AccountBalance,
    EarningsSummary,
    LedgerAudit,
    LedgerStats,
    OwnerType,
    TransactionHistoryResponse,
    TransactionType,
    VirtualAccount,
)
from ledger.settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.api_title,
        description="Virtual ledger, commission lifecycle and withdrawal workflow",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = services or build_services(settings)

    @app.exception_handler(LedgerServiceError)
    async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    app.include_router(router)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "commission-ledger"}


# Commissions

@router.post("/commissions/award", response_model=Commission, status_code=status.HTTP_201_CREATED, tags=["Commissions"])
def award_commission(body: AwardCommissionInput, services: Services = Depends(get_services)) -> Commission:
    return services.award_commission(body)


@router.post("/commissions/request", response_model=Commission, status_code=status.HTTP_201_CREATED, tags=["Commissions"])
def request_commission(body: RequestCommissionInput, services: Services = Depends(get_services)) -> Commission:
    return services.request_commission(body)


@router.post("/commissions/sales", response_model=Commission, status_code=status.HTTP_201_CREATED, tags=["Commissions"])
def process_sales_commission(body: SalesCommissionInput, services: Services = Depends(get_services)) -> Commission:
    return services.commissions.process_sales_commission(body)


@router.post("/commissions/pay", response_model=list[Commission], tags=["Commissions"])
def process_payments(body: ProcessPaymentsRequest, services: Services = Depends(get_services)) -> list[Commission]:
    return services.commissions.process_payments(body.commission_ids)


@router.get("/commissions", response_model=CommissionListResponse, tags=["Commissions"])
def list_commissions(
    consultant_id: Optional[UUID] = None,
    region_id: Optional[UUID] = None,
    status: Optional[CommissionStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    services: Services = Depends(get_services),
) -> CommissionListResponse:
    return services.commissions.list_commissions(consultant_id, region_id, status, limit, offset)


@router.get("/commissions/{commission_id}", response_model=Commission, tags=["Commissions"])
def get_commission(commission_id: UUID, services: Services = Depends(get_services)) -> Commission:
    return services.commissions.get(commission_id)


@router.post("/commissions/{commission_id}/confirm", response_model=Commission, tags=["Commissions"])
def confirm_commission(commission_id: UUID, services: Services = Depends(get_services)) -> Commission:
    return services.confirm_commission(commission_id)


@router.post("/commissions/{commission_id}/pay", response_model=Commission, tags=["Commissions"])
def mark_commission_paid(commission_id: UUID, services: Services = Depends(get_services)) -> Commission:
    return services.commissions.mark_as_paid(commission_id)


@router.post("/commissions/{commission_id}/dispute", response_model=Commission, tags=["Commissions"])
def dispute_commission(commission_id: UUID, body: DisputeRequest, services: Services = Depends(get_services)) -> Commission:
    return services.dispute_commission(commission_id, body.reason)


@router.post("/commissions/{commission_id}/resolve", response_model=Commission, tags=["Commissions"])
def resolve_dispute(commission_id: UUID, body: ResolveDisputeRequest, services: Services = Depends(get_services)) -> Commission:
    return services.resolve_dispute(commission_id, body.resolution, body.notes)


@router.post("/commissions/{commission_id}/clawback", response_model=Commission, tags=["Commissions"])
def clawback_commission(commission_id: UUID, body: ClawbackRequest, services: Services = Depends(get_services)) -> Commission:
    return services.clawback_commission(commission_id, body.reason)


@router.post("/commissions/{commission_id}/cancel", response_model=Commission, tags=["Commissions"])
def cancel_commission(commission_id: UUID, reason: Optional[str] = None, services: Services = Depends(get_services)) -> Commission:
    return services.commissions.cancel(commission_id, reason)


# Consultant withdrawals

@router.get("/consultants/{consultant_id}/balance", response_model=BalanceSummary, tags=["Withdrawals"])
def get_consultant_balance(consultant_id: UUID, services: Services = Depends(get_services)) -> BalanceSummary:
    return services.calculate_balance(consultant_id)


@router.get("/consultants/{consultant_id}/withdrawals", response_model=list[CommissionWithdrawal], tags=["Withdrawals"])
def list_consultant_withdrawals(
    consultant_id: UUID,
    status: Optional[WithdrawalStatus] = None,
    services: Services = Depends(get_services),
) -> list[CommissionWithdrawal]:
    return services.withdrawals.list_for_owner(consultant_id, status)


@router.post(
    "/consultants/{consultant_id}/withdrawals",
    response_model=CommissionWithdrawal,
    status_code=status.HTTP_201_CREATED,
    tags=["Withdrawals"],
)
def request_withdrawal(
    consultant_id: UUID,
    body: RequestWithdrawalInput,
    services: Services = Depends(get_services),
) -> CommissionWithdrawal:
    return services.request_withdrawal(consultant_id, body)


@router.post("/consultants/{consultant_id}/withdrawals/{withdrawal_id}/cancel", response_model=CommissionWithdrawal, tags=["Withdrawals"])
def cancel_withdrawal(consultant_id: UUID, withdrawal_id: UUID, services: Services = Depends(get_services)) -> CommissionWithdrawal:
    return services.cancel_withdrawal(withdrawal_id, consultant_id)


@router.post("/consultants/{consultant_id}/withdrawals/{withdrawal_id}/execute", response_model=CommissionWithdrawal, tags=["Withdrawals"])
def execute_withdrawal(consultant_id: UUID, withdrawal_id: UUID, services: Services = Depends(get_services)) -> CommissionWithdrawal:
    return services.execute_withdrawal(withdrawal_id, consultant_id)


# Admin

@router.get("/admin/withdrawals", response_model=list[CommissionWithdrawal], tags=["Admin"])
def list_withdrawals(
    status: Optional[WithdrawalStatus] = None,
    region_id: Optional[list[UUID]] = Query(default=None),
    services: Services = Depends(get_services),
) -> list[CommissionWithdrawal]:
    return services.withdrawals.list_all(region_id, status)


@router.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=CommissionWithdrawal, tags=["Admin"])
def approve_withdrawal(
    withdrawal_id: UUID,
    body: ApproveWithdrawalRequest = Body(default_factory=ApproveWithdrawalRequest),
    services: Services = Depends(get_services),
) -> CommissionWithdrawal:
    return services.withdrawals.approve(withdrawal_id, body.admin_id, body.allowed_region_ids)


@router.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=CommissionWithdrawal, tags=["Admin"])
def reject_withdrawal(
    withdrawal_id: UUID,
    body: RejectWithdrawalRequest = Body(default_factory=RejectWithdrawalRequest),
    services: Services = Depends(get_services),
) -> CommissionWithdrawal:
    return services.withdrawals.reject(withdrawal_id, body.admin_id, body.reason, body.allowed_region_ids)


@router.post("/admin/withdrawals/{withdrawal_id}/complete", response_model=CommissionWithdrawal, tags=["Admin"])
def complete_withdrawal(
    withdrawal_id: UUID,
    body: CompleteWithdrawalRequest = Body(default_factory=CompleteWithdrawalRequest),
    services: Services = Depends(get_services),
) -> CommissionWithdrawal:
    return services.withdrawals.complete(withdrawal_id, body.payment_reference, body.notes)


# Virtual accounts

@router.get("/admin/accounts/stats", response_model=LedgerStats, tags=["Admin"])
def get_ledger_stats(services: Services = Depends(get_services)) -> LedgerStats:
    return services.ledger.get_stats()


@router.get("/accounts/{owner_type}/{owner_id}", response_model=AccountBalance, tags=["Accounts"])
def get_account_balance(owner_type: OwnerType, owner_id: UUID, services: Services = Depends(get_services)) -> AccountBalance:
    return services.ledger.get_balance(owner_type, owner_id)


@router.get("/accounts/{owner_type}/{owner_id}/transactions", response_model=TransactionHistoryResponse, tags=["Accounts"])
def get_account_transactions(
    owner_type: OwnerType,
    owner_id: UUID,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    type: Optional[TransactionType] = None,
    services: Services = Depends(get_services),
) -> TransactionHistoryResponse:
    return services.ledger.get_transactions(owner_type, owner_id, limit, offset, type)


@router.get("/accounts/{owner_type}/{owner_id}/earnings", response_model=EarningsSummary, tags=["Accounts"])
def get_account_earnings(owner_type: OwnerType, owner_id: UUID, services: Services = Depends(get_services)) -> EarningsSummary:
    return services.ledger.get_earnings(owner_type, owner_id)


@router.get("/accounts/{owner_type}/{owner_id}/audit", response_model=LedgerAudit, tags=["Accounts"])
def audit_account(owner_type: OwnerType, owner_id: UUID, services: Services = Depends(get_services)) -> LedgerAudit:
    account = services.ledger.find_account(owner_type, owner_id)
    if account is None:
        raise NotFoundError(f"No {owner_type.value} account for {owner_id}")
    return services.ledger.replay(account.id)


@router.post("/accounts/{owner_type}/{owner_id}/freeze", response_model=VirtualAccount, tags=["Accounts"])
def freeze_account(owner_type: OwnerType, owner_id: UUID, services: Services = Depends(get_services)) -> VirtualAccount:
    return services.ledger.freeze_account(owner_type, owner_id)


@router.post("/accounts/{owner_type}/{owner_id}/unfreeze", response_model=VirtualAccount, tags=["Accounts"])
def unfreeze_account(owner_type: OwnerType, owner_id: UUID, services: Services = Depends(get_services)) -> VirtualAccount:
    return services.ledger.unfreeze_account(owner_type, owner_id)


app = create_app()
handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
