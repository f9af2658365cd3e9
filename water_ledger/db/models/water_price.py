"""
Water Price Model - Append-only price history
"""
from sqlalchemy import Column, String, Numeric, DateTime

from water_ledger.db.database import Base
from water_ledger.domain.clock import utc_now
from water_ledger.domain.records import new_record_id


class WaterPrice(Base):
    """One price change; the row with the latest updated_at is current"""

    __tablename__ = "water_prices"

    id = Column(String(32), primary_key=True, default=new_record_id)
    regular_price = Column(Numeric(10, 2), nullable=False)
    alkaline_price = Column(Numeric(10, 2), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utc_now, index=True)
