"""
Tests for batch learning from imported transactions.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from smartpaste.models.learning import ImportedTransaction
from smartpaste.models.transaction import TransactionType
from smartpaste.services.csv_learning import (
    batch_learn_from_transactions,
    csv_learned_vendors,
    dominant_classifications,
    group_by_vendor,
    normalize_vendor_key,
)
from smartpaste.services.keyword_bank import KeywordBank
from smartpaste.services.vendor_fallback import VendorFallbackStore
from smartpaste.utils.storage import InMemoryStore


def row(vendor, category='Shopping', subcategory='Groceries', txn_type=TransactionType.EXPENSE, title=None):
    return ImportedTransaction(vendor=vendor, title=title, type=txn_type, category=category, subcategory=subcategory)


@pytest.fixture
def stores():
    kv = InMemoryStore()
    return VendorFallbackStore(kv), KeywordBank(kv)


class TestVendorKeys:

    def test_normalization(self):
        assert normalize_vendor_key("Panda Hyper-Market #12") == "pandahypermarket12"
        assert normalize_vendor_key("  بنده  ") == "بنده"
        assert normalize_vendor_key(None) == ""
        assert len(normalize_vendor_key("x" * 80)) == 50

    def test_title_used_when_vendor_missing(self):
        groups = group_by_vendor([row(None, title="Panda"), row("PANDA")])
        assert list(groups) == ["panda"]
        assert len(groups["panda"]) == 2


class TestDominantClassification:

    def test_single_samples_ignored(self):
        assert dominant_classifications(group_by_vendor([row("Panda")])) == []

    def test_most_frequent_wins(self):
        groups = group_by_vendor([
            row("Panda", 'Food & Dining', 'Restaurants'),
            row("Panda"),
            row("Panda"),
        ])
        (cls,) = dominant_classifications(groups)
        assert (cls.category, cls.subcategory, cls.count) == ('Shopping', 'Groceries', 2)

    def test_tie_keeps_first_seen(self):
        groups = group_by_vendor([row("Panda"), row("Panda", 'Food & Dining', 'Restaurants')])
        (cls,) = dominant_classifications(groups)
        assert cls.category == 'Shopping'


class TestBatchLearn:
    """Vendor fallbacks and keyword mappings from a batch of rows."""

    def test_learns_vendor_and_keyword(self, stores):
        vendors, keywords = stores
        result = batch_learn_from_transactions([row("Panda"), row("Panda"), row("Jarir")], vendors, keywords)

        assert result.vendors_learned == 1
        assert result.keywords_learned == 1
        assert result.conflicts == []

        entry = vendors.get("panda")
        assert entry.source == 'csv-import'
        assert entry.sample_count == 2
        assert {m.field: m.value for m in keywords.get("panda").mappings} == {
            'category': 'Shopping',
            'subcategory': 'Groceries',
        }
        assert [name for name, _ in csv_learned_vendors(vendors)] == ["panda"]

    def test_empty_batch(self, stores):
        vendors, keywords = stores
        result = batch_learn_from_transactions([], vendors, keywords)
        assert (result.vendors_learned, result.keywords_learned, result.conflicts) == (0, 0, [])

    def test_rerun_reports_existing_mapping(self, stores):
        vendors, keywords = stores
        rows = [row("Panda"), row("Panda")]
        batch_learn_from_transactions(rows, vendors, keywords)
        result = batch_learn_from_transactions(rows, vendors, keywords)

        assert result.vendors_learned == 0
        assert result.keywords_learned == 0
        assert result.conflicts == ["panda: kept existing higher-confidence mapping"]

    def test_more_samples_replace_weaker_entry(self, stores):
        vendors, keywords = stores
        batch_learn_from_transactions([row("Panda"), row("Panda")], vendors, keywords)
        result = batch_learn_from_transactions([row("Panda", 'Household', 'Supplies')] * 5, vendors, keywords)

        assert result.vendors_learned == 1
        assert vendors.get("panda").category == 'Household'
        assert vendors.get("panda").confidence == 0.9

    def test_user_entries_untouched(self, stores):
        vendors, keywords = stores
        vendors.set_user_vendor("panda", TransactionType.EXPENSE, 'Household', 'Supplies')

        result = batch_learn_from_transactions([row("Panda")] * 3, vendors, keywords)

        assert result.vendors_learned == 0
        assert result.keywords_learned == 0
        assert result.conflicts == ["panda: kept user-defined mapping"]
        assert vendors.get("panda").category == 'Household'
        assert keywords.get("panda") is None
