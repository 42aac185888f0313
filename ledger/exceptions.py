class LedgerServiceError(Exception):
    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


class InvalidAmountError(LedgerServiceError):
    """Amount must be positive"""
    code = "INVALID_AMOUNT"


class NotFoundError(LedgerServiceError):
    """Record not found"""
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(LedgerServiceError):
    """Access denied"""
    status_code = 403
    code = "FORBIDDEN"


class InvalidStateError(LedgerServiceError):
    """Operation not allowed in the current status"""
    status_code = 409
    code = "INVALID_STATE"


class AlreadyReversedError(InvalidStateError):
    """Commission has already been reversed"""
    code = "ALREADY_REVERSED"


class IneligibleCommissionsError(LedgerServiceError):
    """One or more commissions are invalid or not eligible for withdrawal"""
    code = "INELIGIBLE_COMMISSIONS"


class CommissionsLockedError(IneligibleCommissionsError):
    """One or more commissions are already in an active withdrawal request"""
    status_code = 409
    code = "COMMISSIONS_LOCKED"


class InsufficientBalanceError(LedgerServiceError):
    """Insufficient balance"""
    code = "INSUFFICIENT_BALANCE"


class MissingRegionError(LedgerServiceError):
    """Consultant has no region assigned"""
    code = "MISSING_REGION"


class AttributionExpiredError(LedgerServiceError):
    """Sales attribution has expired"""
    code = "ATTRIBUTION_EXPIRED"
