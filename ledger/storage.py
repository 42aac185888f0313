import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

logger = logging.getLogger(__name__)

DEMO_REGION_ID = UUID("aaaaaaaa-0000-0000-0000-000000000001")
DEMO_CONSULTANT_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
DEMO_SALES_AGENT_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
DEMO_COMPANY_ID = UUID("77777777-7777-7777-7777-777777777777")
DEMO_JOB_ID = UUID("11111111-1111-1111-1111-111111111111")
DEMO_SUBSCRIPTION_ID = UUID("22222222-2222-2222-2222-222222222222")

_MISSING = object()


class Table(dict):
    """
    A store table that records undo information while a transaction is open.

    Inserts, replacements and deletes are journaled. A row fetched by key
    inside a transaction is copied once before the caller can modify it, so
    rows must be fetched with ``get`` or ``[]`` (not through ``values()``)
    before they are changed.
    """

    def __init__(self, storage: "InMemoryStorage"):
        super().__init__()
        self._storage = storage

    def __getitem__(self, key):
        row = super().__getitem__(key)
        self._storage._capture(row)
        return row

    def get(self, key, default=None):
        row = super().get(key, _MISSING)
        if row is _MISSING:
            return default
        self._storage._capture(row)
        return row

    def __setitem__(self, key, value):
        self._storage._journal_write(self, key, super().get(key, _MISSING))
        super().__setitem__(key, value)

    def __delitem__(self, key):
        self._storage._journal_write(self, key, super().__getitem__(key))
        super().__delitem__(key)

    def pop(self, key, *default):
        if key in self:
            self._storage._journal_write(self, key, super().__getitem__(key))
        return super().pop(key, *default)


class InMemoryStorage:
    """
    Dict-backed store for accounts, transactions, commissions and withdrawals.

    Every mutation goes through ``transaction()``: the store lock is held for
    the whole unit and, if the block raises, the unit's journal is replayed
    backwards so callers see either the full effect or none of it. Nested
    ``transaction()`` calls on the same thread join the outer unit. Reads that
    scan a table take ``read()`` so they never iterate a table mid-insert.
    """

    def __init__(self, seed: bool = False):
        self.accounts: Table = Table(self)
        self.account_index: Table = Table(self)
        self.transactions: Table = Table(self)
        self.commissions: Table = Table(self)
        self.withdrawals: Table = Table(self)
        self.consultants: Table = Table(self)
        self.companies: Table = Table(self)
        self.job_payments: Table = Table(self)
        self.subscription_payments: Table = Table(self)
        self._sequence = 0
        self._lock = threading.RLock()
        self._local = threading.local()
        if seed:
            self._seed_data()

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            if self._in_transaction():
                yield self
                return

            self._local.journal = []
            self._local.captured = set()
            sequence = self._sequence
            try:
                yield self
            except BaseException:
                self._rollback(sequence)
                raise
            finally:
                self._local.journal = None
                self._local.captured = None

    @contextmanager
    def read(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            yield self

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def _in_transaction(self) -> bool:
        return getattr(self._local, "journal", None) is not None

    def _capture(self, row) -> None:
        if not isinstance(row, dict) or not self._in_transaction():
            return
        if id(row) in self._local.captured:
            return
        self._local.captured.add(id(row))
        self._local.journal.append(("row", row, dict(row)))

    def _journal_write(self, table: Table, key, previous) -> None:
        if self._in_transaction():
            self._local.journal.append(("key", table, key, previous))

    def _rollback(self, sequence: int) -> None:
        for entry in reversed(self._local.journal):
            if entry[0] == "row":
                _, row, saved = entry
                row.clear()
                row.update(saved)
            else:
                _, table, key, previous = entry
                if previous is _MISSING:
                    dict.pop(table, key, None)
                else:
                    dict.__setitem__(table, key, previous)
        self._sequence = sequence
        logger.debug("Store transaction rolled back (%d journal entries)", len(self._local.journal))

    # Directory records owned by the surrounding platform.

    def add_consultant(
        self,
        consultant_id: UUID,
        region_id: Optional[UUID] = None,
        default_commission_rate: Optional[Decimal] = None,
        role: str = "CONSULTANT",
    ) -> dict:
        with self.transaction():
            record = {
                "id": consultant_id,
                "region_id": region_id,
                "default_commission_rate": default_commission_rate,
                "role": role,
            }
            self.consultants[consultant_id] = record
            return record

    def add_company(
        self,
        company_id: UUID,
        region_id: Optional[UUID] = None,
        sales_agent_id: Optional[UUID] = None,
        attribution_locked: bool = False,
        attribution_locked_at: Optional[datetime] = None,
    ) -> dict:
        with self.transaction():
            record = {
                "id": company_id,
                "region_id": region_id,
                "sales_agent_id": sales_agent_id,
                "attribution_locked": attribution_locked,
                "attribution_locked_at": attribution_locked_at,
            }
            self.companies[company_id] = record
            return record

    def set_job_payment(self, job_id: UUID, amount: Decimal) -> None:
        with self.transaction():
            self.job_payments[job_id] = Decimal(str(amount))

    def set_subscription_payment(self, subscription_id: UUID, amount: Decimal) -> None:
        with self.transaction():
            self.subscription_payments[subscription_id] = Decimal(str(amount))

    def _seed_data(self):
        self.add_consultant(DEMO_CONSULTANT_ID, region_id=DEMO_REGION_ID)
        self.add_consultant(
            DEMO_SALES_AGENT_ID,
            region_id=DEMO_REGION_ID,
            default_commission_rate=Decimal("0.15"),
            role="SALES_AGENT",
        )
        self.add_company(DEMO_COMPANY_ID, region_id=DEMO_REGION_ID, sales_agent_id=DEMO_SALES_AGENT_ID)
        self.set_job_payment(DEMO_JOB_ID, Decimal("2000.00"))
        self.set_subscription_payment(DEMO_SUBSCRIPTION_ID, Decimal("990.00"))
        logger.info("Seeded demo directory data")
