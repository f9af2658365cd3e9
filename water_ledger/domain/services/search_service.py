"""
In-memory search over already fetched customers and transactions.

The store handles the indexed prefix search; these matchers filter a page the
caller already holds. A single-character query only matches names by prefix,
otherwise one letter would match nearly every customer.
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from water_ledger.domain.records import CustomerRecord, TransactionRecord


def format_money(value: Decimal) -> str:
    return f"{value:.2f}"


def format_display_datetime(value: datetime) -> str:
    """``M/D/YYYY HH:MM``"""
    return f"{value.month}/{value.day}/{value.year} {value:%H:%M}"


def _date_variants(value: datetime) -> list[str]:
    return [
        f"{value.month}/{value.day}/{value.year}",
        value.strftime("%m-%d-%Y"),
        value.strftime("%H:%M"),
        format_display_datetime(value),
    ]


def normalize_query(query: str | None) -> str:
    return (query or "").strip().lower()


def _name_matches(name: str, query: str) -> bool:
    name = name.lower()
    if len(query) == 1:
        return name.startswith(query)
    return query in name


def matches_customer(customer: CustomerRecord, query: str | None) -> bool:
    query = normalize_query(query)
    if not query:
        return True

    return (
        _name_matches(customer.name, query)
        or query in customer.membership_id
        or query in format_money(customer.balance)
        or query in format_display_datetime(customer.last_transaction)
    )


def matches_transaction(transaction: TransactionRecord, query: str | None) -> bool:
    query = normalize_query(query)
    if not query:
        return True

    amount = format_money(transaction.amount)
    candidates = [
        transaction.membership_id,
        f"#{transaction.membership_id}",
        amount,
        f"${amount}",
        transaction.type.value,
    ]
    if transaction.gallons is not None:
        candidates.append(str(transaction.gallons))
    candidates.extend(_date_variants(transaction.created_at))

    if _name_matches(transaction.customer_name, query):
        return True
    return any(query in candidate.lower() for candidate in candidates)


def filter_customers(
    customers: Iterable[CustomerRecord], query: str | None
) -> list[CustomerRecord]:
    return [c for c in customers if matches_customer(c, query)]


def filter_transactions(
    transactions: Iterable[TransactionRecord], query: str | None
) -> list[TransactionRecord]:
    return [t for t in transactions if matches_transaction(t, query)]
