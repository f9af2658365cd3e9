"""
Backup Service - whole-ledger export and import

Snapshots are plain JSON documents (ISO-8601 timestamps, amounts as strings).
Import is an upsert by id: it re-checks the rules normal writes enforce
(whole cents, non-negative balances, membership ids padded to the configured
width), trusts the imported balances as-is, writes everything in one store
operation and then clears every cache.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from water_ledger.core.exceptions import CustomerNotFoundError, ValidationException
from water_ledger.core.logging import get_logger
from water_ledger.domain.clock import isoformat_utc
from water_ledger.domain.records import (
    CustomerRecord,
    LedgerSnapshot,
    PriceSnapshot,
    TransactionRecord,
)
from water_ledger.domain.services.cache import LedgerCache
from water_ledger.domain.stores.base import (
    LedgerStore,
    check_cents,
    check_prices,
    check_transaction_shape,
    clean_name,
    normalize_membership_id,
)

logger = get_logger(__name__)

SNAPSHOT_VERSION = "1.0"


class SnapshotSettings(BaseModel):
    current_prices: Optional[PriceSnapshot] = None
    price_history: list[PriceSnapshot] = Field(default_factory=list)


class SnapshotDocument(BaseModel):
    """Wire shape of an exported backup"""

    version: str
    exported_at: Optional[str] = None
    customers: list[CustomerRecord] = Field(default_factory=list)
    transactions: list[TransactionRecord] = Field(default_factory=list)
    settings: SnapshotSettings = Field(default_factory=SnapshotSettings)


class BackupService:
    """Export and import of the whole ledger"""

    def __init__(self, store: LedgerStore, cache: LedgerCache):
        self.store = store
        self.cache = cache

    async def export_snapshot(self) -> dict[str, Any]:
        records = await self.store.export_records()
        current = await self.store.current_prices()
        history = sorted(records.price_history, key=lambda p: p.updated_at, reverse=True)

        logger.info(
            "Ledger exported",
            extra_data={
                "customers": len(records.customers),
                "transactions": len(records.transactions),
                "price_snapshots": len(history),
            }
        )
        return {
            "version": SNAPSHOT_VERSION,
            "exported_at": isoformat_utc(records.exported_at) if records.exported_at else None,
            "customers": [c.model_dump(mode="json") for c in records.customers],
            "transactions": [t.model_dump(mode="json") for t in records.transactions],
            "settings": {
                "current_prices": current.model_dump(mode="json"),
                "price_history": [p.model_dump(mode="json") for p in history],
            },
        }

    @staticmethod
    def parse_snapshot(payload: Any) -> SnapshotDocument:
        if not isinstance(payload, dict):
            raise ValidationException("Snapshot must be a JSON object", field="snapshot")
        try:
            document = SnapshotDocument.model_validate(payload)
        except ValidationError as e:
            raise ValidationException(
                "Snapshot is malformed",
                field="snapshot",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        if document.version != SNAPSHOT_VERSION:
            raise ValidationException(
                f"Unsupported snapshot version: {document.version}", field="version"
            )
        return document

    @staticmethod
    def _normalize_customer(customer: CustomerRecord) -> CustomerRecord:
        balance = check_cents(customer.balance, "balance")
        if balance < 0:
            raise ValidationException(
                f"Customer {customer.id} has a negative balance", field="balance"
            )
        return customer.model_copy(update={
            "name": clean_name(customer.name),
            "membership_id": normalize_membership_id(customer.membership_id),
            "balance": balance,
        })

    @staticmethod
    def _normalize_transaction(transaction: TransactionRecord) -> TransactionRecord:
        amount = check_transaction_shape(
            transaction.type,
            check_cents(transaction.amount, "amount"),
            transaction.gallons,
        )
        customer_balance = check_cents(transaction.customer_balance, "customer_balance")
        if customer_balance < 0:
            raise ValidationException(
                f"Transaction {transaction.id} leaves a negative balance",
                field="customer_balance",
            )
        return transaction.model_copy(update={
            "membership_id": normalize_membership_id(transaction.membership_id),
            "amount": amount,
            "customer_balance": customer_balance,
        })

    @staticmethod
    def _normalize_prices(snapshot: PriceSnapshot) -> PriceSnapshot:
        regular, alkaline = check_prices(
            check_cents(snapshot.regular_price, "regular_price"),
            check_cents(snapshot.alkaline_price, "alkaline_price"),
        )
        return snapshot.model_copy(update={"regular_price": regular, "alkaline_price": alkaline})

    def _normalize(self, document: SnapshotDocument) -> SnapshotDocument:
        """Apply the per-record write rules; returns records in their stored form"""
        current = document.settings.current_prices
        return document.model_copy(update={
            "customers": [self._normalize_customer(c) for c in document.customers],
            "transactions": [self._normalize_transaction(t) for t in document.transactions],
            "settings": SnapshotSettings(
                current_prices=self._normalize_prices(current) if current else None,
                price_history=[
                    self._normalize_prices(p) for p in document.settings.price_history
                ],
            ),
        })

    async def _validate(self, document: SnapshotDocument) -> None:
        customer_ids: set[str] = set()
        membership_ids: set[str] = set()
        for customer in document.customers:
            if customer.id in customer_ids:
                raise ValidationException(
                    f"Duplicate customer id in snapshot: {customer.id}", field="customers"
                )
            if customer.membership_id in membership_ids:
                raise ValidationException(
                    f"Duplicate membership id in snapshot: {customer.membership_id}",
                    field="membership_id",
                )
            customer_ids.add(customer.id)
            membership_ids.add(customer.membership_id)
            await self._check_membership_owner(customer)

        transaction_ids: set[str] = set()
        for transaction in document.transactions:
            if transaction.id in transaction_ids:
                raise ValidationException(
                    f"Duplicate transaction id in snapshot: {transaction.id}",
                    field="transactions",
                )
            transaction_ids.add(transaction.id)

            if transaction.customer_id in customer_ids:
                continue
            try:
                await self.store.get_customer(transaction.customer_id)
            except CustomerNotFoundError as e:
                raise ValidationException(
                    f"Transaction {transaction.id} references unknown customer "
                    f"{transaction.customer_id}",
                    field="transactions",
                ) from e
            customer_ids.add(transaction.customer_id)

    async def _check_membership_owner(self, customer: CustomerRecord) -> None:
        """A membership id may only be re-imported onto the customer that owns it"""
        if not await self.store.membership_id_exists(customer.membership_id):
            return
        matches = await self.store.search_customers(customer.membership_id, limit=1000)
        for existing in matches:
            if existing.membership_id == customer.membership_id and existing.id != customer.id:
                raise ValidationException(
                    f"Membership id {customer.membership_id} belongs to another customer",
                    field="membership_id",
                )

    @staticmethod
    def _price_snapshots(document: SnapshotDocument) -> list[PriceSnapshot]:
        snapshots = list(document.settings.price_history)
        current = document.settings.current_prices
        # Exports carry the configured defaults (id None) when prices were never set
        if current is not None and current.id is not None:
            if all(p.id != current.id for p in snapshots):
                snapshots.append(current)
        return snapshots

    async def import_snapshot(self, payload: Any) -> dict[str, int]:
        document = self._normalize(self.parse_snapshot(payload))
        await self._validate(document)

        price_history = self._price_snapshots(document)
        await self.store.import_records(
            LedgerSnapshot(
                customers=document.customers,
                transactions=document.transactions,
                price_history=price_history,
            )
        )
        self.cache.clear()

        summary = {
            "customers": len(document.customers),
            "transactions": len(document.transactions),
            "price_snapshots": len(price_history),
        }
        logger.info("Ledger imported", extra_data=summary)
        return summary
