"""
SQL Ledger Store - async SQLAlchemy backend

Each write is one session commit: the new transaction row and the customer's
balance update land together or not at all. The customer row is read
``FOR UPDATE`` and versioned by the mapper, so a write racing another session
fails with ConflictError instead of silently overwriting the balance.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, or_, and_, func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from water_ledger.core.exceptions import (
    ConflictError,
    CustomerNotFoundError,
    ErrorCode,
    StoreUnavailableError,
    ValidationException,
)
from water_ledger.core.logging import get_logger, log_async_operation
from water_ledger.db.models.customer import Customer
from water_ledger.db.models.customer_transaction import CustomerTransaction
from water_ledger.db.models.water_price import WaterPrice
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

# Connection-level failures; anything else propagates as-is
_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError)


class SqlLedgerStore(LedgerStore):
    """Ledger store on top of an AsyncSession"""

    backend_name = "sql"

    def __init__(self, db: AsyncSession, clock: MonotonicClock | None = None):
        self.db = db
        self.clock = clock or MonotonicClock()

    # ==================== session helpers ====================

    async def _execute(self, statement):
        try:
            return await self.db.execute(statement)
        except _UNAVAILABLE_ERRORS as e:
            await self.db.rollback()
            raise StoreUnavailableError(self.backend_name, type(e).__name__) from e

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except _UNAVAILABLE_ERRORS as e:
            await self.db.rollback()
            raise StoreUnavailableError(self.backend_name, type(e).__name__) from e

    async def _load_customer(self, customer_id: str, for_update: bool = False) -> Customer:
        query = (
            select(Customer)
            .where(Customer.id == customer_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self._execute(query)
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    # ==================== customers ====================

    async def membership_id_exists(self, membership_id: str) -> bool:
        result = await self._execute(
            select(func.count()).select_from(Customer).where(
                Customer.membership_id == membership_id
            )
        )
        return result.scalar_one() > 0

    @log_async_operation("create_customer")
    async def create_customer(self, name: str, initial_balance: Decimal) -> CustomerRecord:
        name = clean_name(name)
        initial_balance = check_initial_balance(initial_balance)
        membership_id = await generate_membership_id(self.membership_id_exists)
        now = self.clock.now()

        customer = Customer(
            id=new_record_id(),
            membership_id=membership_id,
            name=name,
            balance=initial_balance,
            last_transaction=now,
            created_at=now,
        )
        self.db.add(customer)

        if initial_balance > 0:
            self.db.add(CustomerTransaction(
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
            ))

        try:
            await self._commit()
        except IntegrityError as e:
            # Unique membership id claimed by a concurrent writer between check and insert
            await self.db.rollback()
            raise ValidationException(
                "Membership id was taken concurrently, please retry",
                field="membership_id",
                error_code=ErrorCode.MEMBERSHIP_ID_TAKEN,
            ) from e

        logger.info(
            "Customer created",
            extra_data={
                "customer_id": customer.id,
                "membership_id": membership_id,
                "initial_balance": str(initial_balance),
            }
        )
        return CustomerRecord.model_validate(customer)

    async def get_customer(self, customer_id: str) -> CustomerRecord:
        customer = await self._load_customer(customer_id)
        return CustomerRecord.model_validate(customer)

    @log_async_operation("update_customer_profile")
    async def update_customer_profile(self, customer_id: str, name: str) -> CustomerRecord:
        name = clean_name(name)
        customer = await self._load_customer(customer_id, for_update=True)
        customer.name = name
        try:
            await self._commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictError(customer_id) from e
        return CustomerRecord.model_validate(customer)

    async def list_customers(
        self, after: Optional[Cursor], limit: int
    ) -> Page[CustomerRecord]:
        query = select(Customer).execution_options(populate_existing=True)
        if after is not None:
            query = query.where(or_(
                Customer.last_transaction < after.sort_key,
                and_(Customer.last_transaction == after.sort_key, Customer.id < after.id),
            ))
        query = query.order_by(
            Customer.last_transaction.desc(), Customer.id.desc()
        ).limit(limit + 1)

        result = await self._execute(query)
        rows = [CustomerRecord.model_validate(c) for c in result.scalars().all()]
        return page_from_overfetch(rows, limit, Cursor.for_customer)

    async def search_customers(self, term: str, limit: int) -> list[CustomerRecord]:
        term = (term or "").strip()
        if not term:
            return []

        name_in_range = and_(
            Customer.name >= term,
            Customer.name <= term + PREFIX_RANGE_END,
        )
        membership_key = membership_lookup_key(term)
        condition = (
            or_(Customer.membership_id == membership_key, name_in_range)
            if membership_key else name_in_range
        )
        result = await self._execute(
            select(Customer)
            .where(condition)
            .order_by(Customer.name, Customer.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [CustomerRecord.model_validate(c) for c in result.scalars().all()]

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
        customer = await self._load_customer(customer_id, for_update=True)

        if expected_version is not None and customer.version != expected_version:
            actual_version = customer.version
            await self.db.rollback()
            raise ConflictError(customer_id, expected_version, actual_version)

        new_balance = apply_to_balance(customer.balance, type, amount)
        now = self.clock.now()

        entry = CustomerTransaction(
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
        self.db.add(entry)

        customer.balance = new_balance
        customer.last_transaction = now

        try:
            await self._commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictError(customer_id, expected_version) from e

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
        return TransactionRecord.model_validate(entry), CustomerRecord.model_validate(customer)

    async def list_transactions(
        self, customer_id: str, after: Optional[Cursor], limit: int
    ) -> Page[TransactionRecord]:
        query = select(CustomerTransaction)
        if customer_id != ALL_CUSTOMERS:
            query = query.where(CustomerTransaction.customer_id == customer_id)
        if after is not None:
            query = query.where(or_(
                CustomerTransaction.created_at < after.sort_key,
                and_(
                    CustomerTransaction.created_at == after.sort_key,
                    CustomerTransaction.id < after.id,
                ),
            ))
        query = query.order_by(
            CustomerTransaction.created_at.desc(), CustomerTransaction.id.desc()
        ).limit(limit + 1)

        result = await self._execute(query)
        rows = [TransactionRecord.model_validate(t) for t in result.scalars().all()]
        return page_from_overfetch(rows, limit, Cursor.for_transaction)

    # ==================== prices ====================

    async def current_prices(self) -> PriceSnapshot:
        result = await self._execute(
            select(WaterPrice)
            .order_by(WaterPrice.updated_at.desc(), WaterPrice.id.desc())
            .limit(1)
        )
        latest = result.scalar_one_or_none()
        if latest is None:
            return default_prices(self.clock.now())
        return PriceSnapshot.model_validate(latest)

    async def price_history(self, limit: int) -> list[PriceSnapshot]:
        result = await self._execute(
            select(WaterPrice)
            .order_by(WaterPrice.updated_at.desc(), WaterPrice.id.desc())
            .limit(limit)
        )
        return [PriceSnapshot.model_validate(p) for p in result.scalars().all()]

    @log_async_operation("record_price_change")
    async def record_price_change(
        self, regular_price: Decimal, alkaline_price: Decimal
    ) -> PriceSnapshot:
        regular, alkaline = check_prices(regular_price, alkaline_price)
        snapshot = WaterPrice(
            id=new_record_id(),
            regular_price=regular,
            alkaline_price=alkaline,
            updated_at=self.clock.now(),
        )
        self.db.add(snapshot)
        await self._commit()

        logger.info(
            "Water prices updated",
            extra_data={"regular_price": str(regular), "alkaline_price": str(alkaline)}
        )
        return PriceSnapshot.model_validate(snapshot)

    # ==================== backup ====================

    async def export_records(self) -> LedgerSnapshot:
        customers = await self._execute(
            select(Customer)
            .order_by(Customer.created_at, Customer.id)
            .execution_options(populate_existing=True)
        )
        transactions = await self._execute(
            select(CustomerTransaction).order_by(
                CustomerTransaction.created_at, CustomerTransaction.id
            )
        )
        prices = await self._execute(
            select(WaterPrice).order_by(WaterPrice.updated_at, WaterPrice.id)
        )
        return LedgerSnapshot(
            exported_at=self.clock.now(),
            customers=[CustomerRecord.model_validate(c) for c in customers.scalars().all()],
            transactions=[
                TransactionRecord.model_validate(t) for t in transactions.scalars().all()
            ],
            price_history=[PriceSnapshot.model_validate(p) for p in prices.scalars().all()],
        )

    @log_async_operation("import_records")
    async def import_records(self, snapshot: LedgerSnapshot) -> None:
        for record in snapshot.transactions:
            self.clock.observe(record.created_at)
        for record in snapshot.customers:
            self.clock.observe(record.last_transaction)
        for record in snapshot.price_history:
            self.clock.observe(record.updated_at)

        try:
            await self._upsert_snapshot(snapshot)
            await self._commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationException(
                "Snapshot conflicts with existing records", field="snapshot"
            ) from e

    async def _upsert_snapshot(self, snapshot: LedgerSnapshot) -> None:
        # Versions are store-local; imported rows keep or start their own counter
        for record in snapshot.customers:
            row = await self.db.get(Customer, record.id)
            if row is None:
                row = Customer(id=record.id)
                self.db.add(row)
            row.membership_id = record.membership_id
            row.name = record.name
            row.balance = record.balance
            row.last_transaction = record.last_transaction
            row.created_at = record.created_at

        # Customers must exist before their transactions reference them
        await self.db.flush()

        for record in snapshot.transactions:
            row = await self.db.get(CustomerTransaction, record.id)
            if row is None:
                row = CustomerTransaction(id=record.id)
                self.db.add(row)
            for field, value in record.model_dump().items():
                setattr(row, field, value)

        for record in snapshot.price_history:
            row = await self.db.get(WaterPrice, record.id) if record.id else None
            if row is None:
                row = WaterPrice(id=record.id or new_record_id())
                self.db.add(row)
            row.regular_price = record.regular_price
            row.alkaline_price = record.alkaline_price
            row.updated_at = record.updated_at

        await self.db.flush()
