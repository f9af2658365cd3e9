"""
Water Ledger - customer balances and purchase history for a water-delivery business
"""
__version__ = "1.0.0"
