"""
Tests for LedgerCache
"""
import pytest

from water_ledger.domain.services.cache import (
    CUSTOMERS,
    CUSTOMER_SEARCH,
    PRICES,
    TRANSACTIONS,
    CachedPage,
    LedgerCache,
)


@pytest.mark.unit
def test_put_then_get():
    cache = LedgerCache()
    cache.put(CUSTOMERS, "all|20", 1, ["a", "b"], None, True)

    entry = cache.get(CUSTOMERS, "all|20", 1)

    assert entry == CachedPage(items=("a", "b"), cursor=None, has_more=True)
    assert cache.get(CUSTOMERS, "all|20", 2) is None
    assert cache.get(TRANSACTIONS, "all|20", 1) is None


@pytest.mark.unit
def test_entries_are_immutable_snapshots():
    cache = LedgerCache()
    items = ["a"]
    cache.put(CUSTOMERS, "k", 1, items, None, False)
    items.append("b")

    assert cache.get(CUSTOMERS, "k", 1).items == ("a",)


@pytest.mark.unit
def test_invalidate_drops_whole_entity_type():
    cache = LedgerCache()
    cache.put(CUSTOMERS, "k1", 1, [], None, False)
    cache.put(CUSTOMERS, "k2", 3, [], None, False)
    cache.put(PRICES, "current", 1, [], None, False)

    cache.invalidate(CUSTOMERS)

    assert cache.size(CUSTOMERS) == 0
    assert cache.size(PRICES) == 1


@pytest.mark.unit
def test_invalidate_key_keeps_other_keys():
    cache = LedgerCache()
    cache.put(TRANSACTIONS, "c1|20", 1, [], None, True)
    cache.put(TRANSACTIONS, "c1|20", 2, [], None, False)
    cache.put(TRANSACTIONS, "c2|20", 1, [], None, False)

    cache.invalidate_key(TRANSACTIONS, "c1|20")

    assert cache.get(TRANSACTIONS, "c1|20", 1) is None
    assert cache.get(TRANSACTIONS, "c2|20", 1) is not None


@pytest.mark.unit
def test_clear():
    cache = LedgerCache()
    for entity in (CUSTOMERS, CUSTOMER_SEARCH, TRANSACTIONS, PRICES):
        cache.put(entity, "k", 1, [], None, False)

    cache.clear()

    assert cache.size() == 0


@pytest.mark.unit
def test_malformed_entry_is_a_miss():
    cache = LedgerCache()
    cache._entries[CUSTOMERS][("k", 1)] = {"items": ["a"]}

    assert cache.get(CUSTOMERS, "k", 1) is None
    assert cache.size(CUSTOMERS) == 0


@pytest.mark.unit
def test_unknown_entity_type():
    with pytest.raises(ValueError):
        LedgerCache().get("invoices", "k", 1)


@pytest.mark.unit
def test_instances_are_independent():
    first, second = LedgerCache(), LedgerCache()
    first.put(CUSTOMERS, "k", 1, ["a"], None, False)
    assert second.get(CUSTOMERS, "k", 1) is None
