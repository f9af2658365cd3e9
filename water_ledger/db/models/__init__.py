"""
Database Models
"""
from water_ledger.db.models.customer import Customer
from water_ledger.db.models.customer_transaction import CustomerTransaction
from water_ledger.db.models.water_price import WaterPrice

__all__ = [
    "Customer",
    "CustomerTransaction",
    "WaterPrice",
]
