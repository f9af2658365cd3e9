"""
Customer Transaction Model - Immutable Transaction History
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index, Enum as SQLEnum

from water_ledger.db.database import Base
from water_ledger.domain.clock import utc_now
from water_ledger.domain.records import TransactionType, new_record_id


class CustomerTransaction(Base):
    """Append-only log entry; rows are never updated or deleted"""

    __tablename__ = "customer_transactions"

    id = Column(String(32), primary_key=True, default=new_record_id)
    customer_id = Column(String(32), ForeignKey("customers.id"), nullable=False)

    # Denormalized for display without a join
    membership_id = Column(String(8), nullable=False)
    customer_name = Column(String(200), nullable=False)

    type = Column(
        SQLEnum(TransactionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    amount = Column(Numeric(10, 2), nullable=False)  # Always positive; direction comes from type
    gallons = Column(Integer, nullable=True)
    customer_balance = Column(Numeric(10, 2), nullable=False)  # Balance after this entry

    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_customer_transactions_customer_created", "customer_id", "created_at", "id"),
        Index("ix_customer_transactions_created_id", "created_at", "id"),
    )
