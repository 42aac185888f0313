from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from ledger.exceptions import InvalidAmountError, NotFoundError
from ledger.models import quantize
from ledger.storage import InMemoryStorage

from .models import PriceQuote


class PricingResolver(Protocol):
    def resolve(
        self,
        consultant_id: UUID,
        job_id: Optional[UUID] = None,
        subscription_id: Optional[UUID] = None,
        override_rate: Optional[Decimal] = None,
    ) -> PriceQuote:
        ...


class StoredPricingResolver:
    """
    Commission figure = payment recorded for the job or subscription × rate.

    The rate is the caller's override, else the consultant's configured
    default, else the platform default.
    """

    def __init__(self, storage: InMemoryStorage, default_rate: Decimal = Decimal("0.10"), currency: str = "USD"):
        self.storage = storage
        self.default_rate = default_rate
        self.currency = currency

    def resolve(
        self,
        consultant_id: UUID,
        job_id: Optional[UUID] = None,
        subscription_id: Optional[UUID] = None,
        override_rate: Optional[Decimal] = None,
    ) -> PriceQuote:
        if job_id is not None:
            payment = self.storage.job_payments.get(job_id)
            if payment is None:
                raise NotFoundError(f"No payment recorded for job {job_id}")
        elif subscription_id is not None:
            payment = self.storage.subscription_payments.get(subscription_id)
            if payment is None:
                raise NotFoundError(f"No payment recorded for subscription {subscription_id}")
        else:
            raise InvalidAmountError("Amount is required when no job or subscription is given")

        rate = self.rate_for(consultant_id, override_rate)
        return PriceQuote(amount=quantize(payment * rate), rate=rate, currency=self.currency)

    def rate_for(self, consultant_id: UUID, override_rate: Optional[Decimal] = None) -> Decimal:
        if override_rate is not None:
            return Decimal(str(override_rate))
        consultant = self.storage.consultants.get(consultant_id) or {}
        rate = consultant.get("default_commission_rate")
        return self.default_rate if rate is None else rate
