"""
Customer Model - Prepaid Balance
"""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index

from water_ledger.db.database import Base
from water_ledger.domain.clock import utc_now
from water_ledger.domain.records import new_record_id


class Customer(Base):
    """Current balance per customer (denormalized from customer_transactions)"""

    __tablename__ = "customers"

    id = Column(String(32), primary_key=True, default=new_record_id)
    membership_id = Column(String(8), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False, index=True)

    balance = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    last_transaction = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    # Bumped by the ORM on every UPDATE; a stale write raises StaleDataError
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_customers_last_transaction_id", "last_transaction", "id"),
    )
