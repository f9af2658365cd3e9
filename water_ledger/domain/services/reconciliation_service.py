"""
Reconciliation Service - recompute balances from the transaction log

``balance`` is denormalized and trusted on read. This service replays a
customer's log oldest to newest and reports drift between the stored balance
and the replayed one, plus any transaction whose ``customer_balance`` does not
follow from its predecessor. It never writes.
"""
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from water_ledger.core.logging import get_logger
from water_ledger.domain.records import CustomerRecord
from water_ledger.domain.services.ledger_service import LedgerService

logger = get_logger(__name__)

ZERO = Decimal("0.00")


class ReconciliationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: str
    membership_id: str
    stored_balance: Decimal
    computed_balance: Decimal
    drift: Decimal
    transaction_count: int
    broken_links: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.drift == 0 and not self.broken_links


class ReconciliationService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    async def _reconcile(self, customer: CustomerRecord) -> ReconciliationReport:
        log = await self.ledger.transaction_log(customer.id)
        log.reverse()

        # Every customer starts at zero; an initial balance is logged as a fund entry
        computed = sum((t.signed_amount for t in log), ZERO)

        running = ZERO
        broken_links: list[str] = []
        for transaction in log:
            running += transaction.signed_amount
            if transaction.customer_balance != running:
                broken_links.append(transaction.id)
                running = transaction.customer_balance

        report = ReconciliationReport(
            customer_id=customer.id,
            membership_id=customer.membership_id,
            stored_balance=customer.balance,
            computed_balance=computed,
            drift=customer.balance - computed,
            transaction_count=len(log),
            broken_links=broken_links,
        )
        if not report.ok:
            logger.warning(
                "Balance drift detected",
                extra_data={
                    "customer_id": customer.id,
                    "stored_balance": str(report.stored_balance),
                    "computed_balance": str(report.computed_balance),
                    "broken_links": len(broken_links),
                }
            )
        return report

    async def reconcile_customer(self, customer_id: str) -> ReconciliationReport:
        customer = await self.ledger.get_customer(customer_id)
        return await self._reconcile(customer)

    async def reconcile_all(self) -> list[ReconciliationReport]:
        reports = [
            await self._reconcile(customer)
            for customer in await self.ledger.all_customers()
        ]
        logger.info(
            "Reconciliation finished",
            extra_data={
                "customers": len(reports),
                "drifted": sum(1 for r in reports if not r.ok),
            }
        )
        return reports
