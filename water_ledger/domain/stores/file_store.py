"""
File Ledger Store - the whole ledger in one JSON document

Customers, transactions and the price history share a single file, so one
write covers the transaction and the balance it moves. Every write is a
read-modify-write under an asyncio.Lock, committed by writing a temp file and
``os.replace``-ing it over the old one: readers see the old document or the new
one, never half of each.

One store instance per file is expected; the lock does not span processes.
"""
import asyncio
import json
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from water_ledger.core.exceptions import (
    ConflictError,
    CustomerNotFoundError,
    StoreUnavailableError,
    ValidationException,
)
from water_ledger.core.logging import get_logger, log_async_operation
from water_ledger.domain.clock import MonotonicClock
from water_ledger.domain.records import (
    ALL_CUSTOMERS,
    CustomerRecord,
    Cursor,
    LedgerSnapshot,
    Page,
    PriceSnapshot,
    TransactionRecord,
    TransactionType,
    new_record_id,
    page_from_overfetch,
)
from water_ledger.domain.services.membership_id_service import generate_membership_id
from water_ledger.domain.stores.base import (
    INITIAL_BALANCE_NOTE,
    PREFIX_RANGE_END,
    LedgerStore,
    apply_to_balance,
    check_initial_balance,
    check_prices,
    check_transaction_shape,
    clean_name,
    clean_notes,
    default_prices,
    membership_lookup_key,
)

logger = get_logger(__name__)

FORMAT_VERSION = "1.0"


@dataclass
class _LedgerDocument:
    customers: dict[str, CustomerRecord] = field(default_factory=dict)
    transactions: dict[str, TransactionRecord] = field(default_factory=dict)
    price_history: list[PriceSnapshot] = field(default_factory=list)

    def membership_taken(self, membership_id: str) -> bool:
        return any(c.membership_id == membership_id for c in self.customers.values())

    def to_json(self) -> dict:
        return {
            "version": FORMAT_VERSION,
            "customers": {
                cid: c.model_dump(mode="json") for cid, c in self.customers.items()
            },
            "transactions": {
                tid: t.model_dump(mode="json") for tid, t in self.transactions.items()
            },
            "price_history": [p.model_dump(mode="json") for p in self.price_history],
        }

    @classmethod
    def from_json(cls, payload: dict) -> "_LedgerDocument":
        return cls(
            customers={
                cid: CustomerRecord.model_validate(raw)
                for cid, raw in payload.get("customers", {}).items()
            },
            transactions={
                tid: TransactionRecord.model_validate(raw)
                for tid, raw in payload.get("transactions", {}).items()
            },
            price_history=[
                PriceSnapshot.model_validate(raw) for raw in payload.get("price_history", [])
            ],
        )


def _newest_first(records: list, key) -> list:
    return sorted(records, key=key, reverse=True)


class FileLedgerStore(LedgerStore):
    """Ledger store persisted as a single JSON file"""

    backend_name = "file"

    def __init__(self, path: Path | str, clock: MonotonicClock | None = None) -> None:
        self.path = Path(path)
        self.clock = clock or MonotonicClock()
        self._lock = asyncio.Lock()
        self._clock_primed = False

    # ==================== file I/O ====================

    def _read_sync(self) -> _LedgerDocument:
        if not self.path.exists():
            return _LedgerDocument()
        with self.path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
        if not isinstance(payload, dict):
            raise ValueError("ledger file does not contain a JSON object")
        return _LedgerDocument.from_json(payload)

    def _write_sync(self, document: _LedgerDocument) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(document.to_json(), fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self.path)

    async def _load(self) -> _LedgerDocument:
        try:
            document = await asyncio.to_thread(self._read_sync)
        except (OSError, ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            raise StoreUnavailableError(
                self.backend_name,
                f"cannot read {self.path.name}",
                details={"error": type(e).__name__},
            ) from e

        if not self._clock_primed:
            self._prime_clock(document)
        return document

    async def _save(self, document: _LedgerDocument) -> None:
        try:
            await asyncio.to_thread(self._write_sync, document)
        except OSError as e:
            raise StoreUnavailableError(
                self.backend_name,
                f"cannot write {self.path.name}",
                details={"error": type(e).__name__},
            ) from e

    def _prime_clock(self, document: _LedgerDocument) -> None:
        """Continue after the newest stored timestamp, e.g. after a restart"""
        for transaction in document.transactions.values():
            self.clock.observe(transaction.created_at)
        for customer in document.customers.values():
            self.clock.observe(customer.last_transaction)
        for snapshot in document.price_history:
            self.clock.observe(snapshot.updated_at)
        self._clock_primed = True

    # ==================== customers ====================

    async def membership_id_exists(self, membership_id: str) -> bool:
        document = await self._load()
        return document.membership_taken(membership_id)

    @log_async_operation("create_customer")
    async def create_customer(self, name: str, initial_balance: Decimal) -> CustomerRecord:
        name = clean_name(name)
        initial_balance = check_initial_balance(initial_balance)

        async with self._lock:
            document = await self._load()

            async def taken(candidate: str) -> bool:
                return document.membership_taken(candidate)

            membership_id = await generate_membership_id(taken)
            now = self.clock.now()
            customer = CustomerRecord(
                id=new_record_id(),
                membership_id=membership_id,
                name=name,
                balance=initial_balance,
                last_transaction=now,
                created_at=now,
                version=1,
            )
            document.customers[customer.id] = customer

            if initial_balance > 0:
                entry = TransactionRecord(
                    id=new_record_id(),
                    customer_id=customer.id,
                    membership_id=membership_id,
                    customer_name=name,
                    type=TransactionType.FUND,
                    amount=initial_balance,
                    gallons=None,
                    customer_balance=initial_balance,
                    notes=INITIAL_BALANCE_NOTE,
                    created_at=now,
                )
                document.transactions[entry.id] = entry

            await self._save(document)

        logger.info(
            "Customer created",
            extra_data={
                "customer_id": customer.id,
                "membership_id": membership_id,
                "initial_balance": str(initial_balance),
            }
        )
        return customer

    async def get_customer(self, customer_id: str) -> CustomerRecord:
        document = await self._load()
        customer = document.customers.get(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    @log_async_operation("update_customer_profile")
    async def update_customer_profile(self, customer_id: str, name: str) -> CustomerRecord:
        name = clean_name(name)
        async with self._lock:
            document = await self._load()
            current = document.customers.get(customer_id)
            if current is None:
                raise CustomerNotFoundError(customer_id)
            updated = current.model_copy(update={"name": name, "version": current.version + 1})
            document.customers[customer_id] = updated
            await self._save(document)
        return updated

    async def list_customers(
        self, after: Optional[Cursor], limit: int
    ) -> Page[CustomerRecord]:
        document = await self._load()
        rows = _newest_first(
            list(document.customers.values()),
            key=lambda c: (c.last_transaction, c.id),
        )
        if after is not None:
            rows = [c for c in rows if (c.last_transaction, c.id) < (after.sort_key, after.id)]
        return page_from_overfetch(rows[:limit + 1], limit, Cursor.for_customer)

    async def search_customers(self, term: str, limit: int) -> list[CustomerRecord]:
        term = (term or "").strip()
        if not term:
            return []

        document = await self._load()
        upper = term + PREFIX_RANGE_END
        membership_key = membership_lookup_key(term)
        matches = [
            c for c in document.customers.values()
            if term <= c.name <= upper
            or (membership_key is not None and c.membership_id == membership_key)
        ]
        matches.sort(key=lambda c: (c.name, c.id))
        return matches[:limit]

    # ==================== transactions ====================

    @log_async_operation("append_transaction")
    async def append_transaction(
        self,
        customer_id: str,
        type: TransactionType,
        amount: Decimal,
        gallons: Optional[int] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> tuple[TransactionRecord, CustomerRecord]:
        amount = check_transaction_shape(type, amount, gallons)

        async with self._lock:
            document = await self._load()
            customer = document.customers.get(customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)
            if expected_version is not None and customer.version != expected_version:
                raise ConflictError(customer_id, expected_version, customer.version)

            new_balance = apply_to_balance(customer.balance, type, amount)
            now = self.clock.now()
            entry = TransactionRecord(
                id=new_record_id(),
                customer_id=customer.id,
                membership_id=customer.membership_id,
                customer_name=customer.name,
                type=type,
                amount=amount,
                gallons=gallons if type.is_purchase else None,
                customer_balance=new_balance,
                notes=clean_notes(notes),
                created_at=now,
            )
            updated = customer.model_copy(update={
                "balance": new_balance,
                "last_transaction": now,
                "version": customer.version + 1,
            })
            document.transactions[entry.id] = entry
            document.customers[customer_id] = updated
            await self._save(document)

        logger.info(
            "Transaction recorded",
            extra_data={
                "customer_id": customer_id,
                "transaction_id": entry.id,
                "type": type.value,
                "amount": str(amount),
                "balance_after": str(new_balance),
            }
        )
        return entry, updated

    async def list_transactions(
        self, customer_id: str, after: Optional[Cursor], limit: int
    ) -> Page[TransactionRecord]:
        document = await self._load()
        rows = [
            t for t in document.transactions.values()
            if customer_id == ALL_CUSTOMERS or t.customer_id == customer_id
        ]
        rows = _newest_first(rows, key=lambda t: (t.created_at, t.id))
        if after is not None:
            rows = [t for t in rows if (t.created_at, t.id) < (after.sort_key, after.id)]
        return page_from_overfetch(rows[:limit + 1], limit, Cursor.for_transaction)

    # ==================== prices ====================

    async def current_prices(self) -> PriceSnapshot:
        history = await self.price_history(limit=1)
        if not history:
            return default_prices(self.clock.now())
        return history[0]

    async def price_history(self, limit: int) -> list[PriceSnapshot]:
        document = await self._load()
        history = _newest_first(
            document.price_history, key=lambda p: (p.updated_at, p.id or "")
        )
        return history[:limit]

    @log_async_operation("record_price_change")
    async def record_price_change(
        self, regular_price: Decimal, alkaline_price: Decimal
    ) -> PriceSnapshot:
        regular, alkaline = check_prices(regular_price, alkaline_price)
        async with self._lock:
            document = await self._load()
            snapshot = PriceSnapshot(
                id=new_record_id(),
                regular_price=regular,
                alkaline_price=alkaline,
                updated_at=self.clock.now(),
            )
            document.price_history.append(snapshot)
            await self._save(document)

        logger.info(
            "Water prices updated",
            extra_data={"regular_price": str(regular), "alkaline_price": str(alkaline)}
        )
        return snapshot

    # ==================== backup ====================

    async def export_records(self) -> LedgerSnapshot:
        document = await self._load()
        return LedgerSnapshot(
            exported_at=self.clock.now(),
            customers=sorted(document.customers.values(), key=lambda c: (c.created_at, c.id)),
            transactions=sorted(
                document.transactions.values(), key=lambda t: (t.created_at, t.id)
            ),
            price_history=sorted(
                document.price_history, key=lambda p: (p.updated_at, p.id or "")
            ),
        )

    @log_async_operation("import_records")
    async def import_records(self, snapshot: LedgerSnapshot) -> None:
        async with self._lock:
            document = await self._load()

            for record in snapshot.customers:
                existing = document.customers.get(record.id)
                version = existing.version + 1 if existing else 1
                document.customers[record.id] = record.model_copy(update={"version": version})

            membership_ids = [c.membership_id for c in document.customers.values()]
            if len(membership_ids) != len(set(membership_ids)):
                raise ValidationException(
                    "Snapshot conflicts with existing records", field="snapshot"
                )

            for record in snapshot.transactions:
                document.transactions[record.id] = record

            by_id = {p.id: i for i, p in enumerate(document.price_history) if p.id}
            for record in snapshot.price_history:
                if record.id is None:
                    record = record.model_copy(update={"id": new_record_id()})
                if record.id in by_id:
                    document.price_history[by_id[record.id]] = record
                else:
                    document.price_history.append(record)

            self._prime_clock(document)
            await self._save(document)
