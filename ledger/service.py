import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .exceptions import (
    ForbiddenError,
    InsufficientBalanceError,
    InvalidAmountError,
    NotFoundError,
)
from .models import (
    AccountBalance,
    AccountStatus,
    Direction,
    EarningsSummary,
    LedgerAudit,
    LedgerStats,
    OwnerType,
    ReferenceType,
    TransactionHistoryResponse,
    TransactionStatus,
    TransactionType,
    VirtualAccount,
    VirtualTransaction,
    quantize,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
RECENT_EARNINGS_DAYS = 30


class LedgerService:
    """
    Owns virtual account balances. A balance only ever changes by appending a
    ``VirtualTransaction`` whose ``balance_after`` is computed from the
    balance read inside the same store transaction.

    Accounts are created by the first credit or debit for an owner; read
    paths report an empty account without creating one.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None, currency: str = "USD"):
        self.storage = storage or InMemoryStorage()
        self.currency = currency

    def get_or_create_account(self, owner_type: OwnerType, owner_id: UUID) -> VirtualAccount:
        with self.storage.transaction():
            return VirtualAccount(**self._get_or_create_account_data(owner_type, owner_id))

    def get_account(self, account_id: UUID) -> VirtualAccount:
        with self.storage.read():
            return VirtualAccount(**self._get_account_data(account_id))

    def find_account(self, owner_type: OwnerType, owner_id: UUID) -> Optional[VirtualAccount]:
        with self.storage.read():
            account = self._find_account_data(owner_type, owner_id)
            return VirtualAccount(**account) if account else None

    def credit(
        self,
        account_id: UUID,
        amount: Decimal,
        type: TransactionType,
        reference_type: Optional[ReferenceType] = None,
        reference_id: Optional[UUID] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VirtualTransaction:
        return self._append(
            account_id, amount, Direction.CREDIT, type,
            reference_type, reference_id, description, created_by,
        )

    def debit(
        self,
        account_id: UUID,
        amount: Decimal,
        type: TransactionType,
        reference_type: Optional[ReferenceType] = None,
        reference_id: Optional[UUID] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> VirtualTransaction:
        return self._append(
            account_id, amount, Direction.DEBIT, type,
            reference_type, reference_id, description, created_by,
        )

    def credit_owner(self, owner_type: OwnerType, owner_id: UUID, amount: Decimal,
                     type: TransactionType, **kwargs) -> VirtualTransaction:
        with self.storage.transaction():
            account = self._get_or_create_account_data(owner_type, owner_id)
            return self.credit(account["id"], amount, type, **kwargs)

    def debit_owner(self, owner_type: OwnerType, owner_id: UUID, amount: Decimal,
                    type: TransactionType, **kwargs) -> VirtualTransaction:
        with self.storage.transaction():
            account = self._get_or_create_account_data(owner_type, owner_id)
            return self.debit(account["id"], amount, type, **kwargs)

    def get_balance(self, owner_type: OwnerType, owner_id: UUID) -> AccountBalance:
        with self.storage.read():
            account = self._find_account_data(owner_type, owner_id)
            if account is None:
                return AccountBalance(
                    account_id=None,
                    owner_type=owner_type,
                    owner_id=owner_id,
                    balance=ZERO,
                    total_credits=ZERO,
                    total_debits=ZERO,
                    currency=self.currency,
                    status=AccountStatus.ACTIVE,
                    total_entries=0,
                )

            entries = self._account_entries(account["id"])
            last_entry = entries[-1] if entries else None
            return AccountBalance(
                account_id=account["id"],
                owner_type=account["owner_type"],
                owner_id=account["owner_id"],
                balance=account["balance"],
                total_credits=account["total_credits"],
                total_debits=account["total_debits"],
                currency=account["currency"],
                status=account["status"],
                total_entries=len(entries),
                last_transaction_at=last_entry["created_at"] if last_entry else None,
            )

    def get_transactions(
        self,
        owner_type: OwnerType,
        owner_id: UUID,
        limit: int = 50,
        offset: int = 0,
        type: Optional[TransactionType] = None,
    ) -> TransactionHistoryResponse:
        with self.storage.read():
            account = self._find_account_data(owner_type, owner_id)
            if account is None:
                return TransactionHistoryResponse(
                    account_id=None, transactions=[], total_count=0,
                    limit=limit, offset=offset, current_balance=ZERO,
                )
            entries = [
                VirtualTransaction(**e) for e in self._account_entries(account["id"])
                if type is None or e["type"] == type
            ]
            account_id, balance = account["id"], account["balance"]
        entries.reverse()

        return TransactionHistoryResponse(
            account_id=account_id,
            transactions=entries[offset:offset + limit],
            total_count=len(entries),
            limit=limit,
            offset=offset,
            current_balance=balance,
        )

    def get_earnings(self, owner_type: OwnerType, owner_id: UUID, now: Optional[datetime] = None) -> EarningsSummary:
        """Completed credits to the owner's account, in total and over the last 30 days."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=RECENT_EARNINGS_DAYS)

        with self.storage.read():
            account = self._find_account_data(owner_type, owner_id)
            credits = [] if account is None else [
                e for e in self._account_entries(account["id"])
                if e["direction"] == Direction.CREDIT and e["status"] == TransactionStatus.COMPLETED
            ]
            balance = account["balance"] if account else ZERO

        return EarningsSummary(
            owner_type=owner_type,
            owner_id=owner_id,
            total_earnings=sum((e["amount"] for e in credits), ZERO),
            recent_earnings=sum((e["amount"] for e in credits if e["created_at"] > since), ZERO),
            period_days=RECENT_EARNINGS_DAYS,
            transaction_count=len(credits),
            current_balance=balance,
            currency=self.currency,
        )

    def get_stats(self) -> LedgerStats:
        with self.storage.read():
            accounts = list(self.storage.accounts.values())

            return LedgerStats(
                total_accounts=len(accounts),
                active_accounts=sum(1 for a in accounts if a["status"] == AccountStatus.ACTIVE),
                total_balance=sum((a["balance"] for a in accounts), ZERO),
                total_credits=sum((a["total_credits"] for a in accounts), ZERO),
                total_debits=sum((a["total_debits"] for a in accounts), ZERO),
                currency=self.currency,
            )

    def find_transaction(
        self,
        reference_type: ReferenceType,
        reference_id: UUID,
        direction: Optional[Direction] = None,
    ) -> Optional[VirtualTransaction]:
        with self.storage.read():
            matches = [
                e for e in self.storage.transactions.values()
                if e["reference_type"] == reference_type
                and e["reference_id"] == reference_id
                and (direction is None or e["direction"] == direction)
            ]
        if not matches:
            return None
        return VirtualTransaction(**min(matches, key=lambda e: e["sequence"]))

    def replay(self, account_id: UUID) -> LedgerAudit:
        """Rebuild the balance from zero and compare it with every stored snapshot."""
        with self.storage.read():
            account = dict(self._get_account_data(account_id))
            entries = self._account_entries(account_id)

        running = ZERO
        credits = ZERO
        debits = ZERO
        mismatched = []

        for entry in entries:
            if entry["direction"] == Direction.CREDIT:
                running += entry["amount"]
                credits += entry["amount"]
            else:
                running -= entry["amount"]
                debits += entry["amount"]
            if running != entry["balance_after"]:
                mismatched.append(entry["id"])

        consistent = (
            not mismatched
            and running == account["balance"]
            and credits == account["total_credits"]
            and debits == account["total_debits"]
        )
        if not consistent:
            logger.error("Ledger replay mismatch for account %s", account_id)

        return LedgerAudit(
            account_id=account_id,
            transaction_count=len(entries),
            replayed_balance=running,
            stored_balance=account["balance"],
            replayed_credits=credits,
            replayed_debits=debits,
            mismatched_transaction_ids=mismatched,
            is_consistent=consistent,
        )

    def freeze_account(self, owner_type: OwnerType, owner_id: UUID) -> VirtualAccount:
        return self._set_status(owner_type, owner_id, AccountStatus.FROZEN)

    def unfreeze_account(self, owner_type: OwnerType, owner_id: UUID) -> VirtualAccount:
        return self._set_status(owner_type, owner_id, AccountStatus.ACTIVE)

    def verify_account(self, owner_type: OwnerType, owner_id: UUID) -> Optional[VirtualAccount]:
        """Fail if the owner's account is frozen. An owner with no account yet passes."""
        account = self.find_account(owner_type, owner_id)
        if account is not None and not account.is_active:
            raise ForbiddenError("Wallet account is not active")
        return account

    def _append(
        self,
        account_id: UUID,
        amount: Decimal,
        direction: Direction,
        type: TransactionType,
        reference_type: Optional[ReferenceType],
        reference_id: Optional[UUID],
        description: Optional[str],
        created_by: Optional[str],
    ) -> VirtualTransaction:
        if amount is None or quantize(amount) <= 0:
            raise InvalidAmountError("Amount must be positive")
        amount = quantize(amount)

        with self.storage.transaction():
            account = self._get_account_data(account_id)

            if direction == Direction.DEBIT:
                if account["balance"] < amount:
                    raise InsufficientBalanceError(
                        f"Insufficient balance: {account['balance']} available, {amount} requested"
                    )
                new_balance = account["balance"] - amount
            else:
                new_balance = account["balance"] + amount

            now = datetime.now(timezone.utc)
            entry_data = {
                "id": uuid4(),
                "account_id": account_id,
                "sequence": self.storage.next_sequence(),
                "type": TransactionType(type),
                "amount": amount,
                "direction": direction,
                "balance_after": new_balance,
                "status": TransactionStatus.COMPLETED,
                "reference_type": reference_type,
                "reference_id": reference_id,
                "description": description,
                "created_by": created_by,
                "created_at": now,
            }
            transaction = VirtualTransaction(**entry_data)

            self.storage.transactions[entry_data["id"]] = entry_data
            account["balance"] = new_balance
            if direction == Direction.CREDIT:
                account["total_credits"] += amount
            else:
                account["total_debits"] += amount
            account["updated_at"] = now

        logger.info(
            "Ledger %s %s on account %s (%s), balance_after=%s",
            direction.value, amount, account_id, transaction.type.value, new_balance,
        )
        return transaction

    def _find_account_data(self, owner_type: OwnerType, owner_id: UUID) -> Optional[dict]:
        account_id = self.storage.account_index.get((OwnerType(owner_type).value, owner_id))
        if account_id is None:
            return None
        return self.storage.accounts.get(account_id)

    def _get_or_create_account_data(self, owner_type: OwnerType, owner_id: UUID) -> dict:
        owner_type = OwnerType(owner_type)
        account = self._find_account_data(owner_type, owner_id)
        if account is not None:
            return account

        now = datetime.now(timezone.utc)
        account_data = {
            "id": uuid4(),
            "owner_type": owner_type,
            "owner_id": owner_id,
            "balance": ZERO,
            "total_credits": ZERO,
            "total_debits": ZERO,
            "status": AccountStatus.ACTIVE,
            "currency": self.currency,
            "created_at": now,
            "updated_at": now,
        }
        self.storage.accounts[account_data["id"]] = account_data
        self.storage.account_index[(owner_type.value, owner_id)] = account_data["id"]
        logger.info("Created %s virtual account for %s", owner_type.value, owner_id)
        return account_data

    def _get_account_data(self, account_id: UUID) -> dict:
        account = self.storage.accounts.get(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def _account_entries(self, account_id: UUID) -> list[dict]:
        entries = [e for e in self.storage.transactions.values() if e["account_id"] == account_id]
        entries.sort(key=lambda e: e["sequence"])
        return entries

    def _set_status(self, owner_type: OwnerType, owner_id: UUID, status: AccountStatus) -> VirtualAccount:
        with self.storage.transaction():
            account = self._find_account_data(owner_type, owner_id)
            if account is None:
                raise NotFoundError(f"No {OwnerType(owner_type).value} account for {owner_id}")
            account["status"] = status
            account["updated_at"] = datetime.now(timezone.utc)
            logger.info("Account %s set to %s", account["id"], status.value)
            return VirtualAccount(**account)
