"""
Tests for category/type inference and the stores behind it.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import json
import pytest

from smartpaste.models.learning import FieldMapping
from smartpaste.models.transaction import TransactionType
from smartpaste.services.inference import (
    CategoryInferencer,
    CategorySource,
    default_category_for,
    extract_vendor_name,
    static_category_for,
)
from smartpaste.services.keyword_bank import KEYWORD_BANK_KEY, KeywordBank
from smartpaste.services.type_keywords import TypeKeywordStore
from smartpaste.services.vendor_fallback import VENDOR_FALLBACK_KEY, VendorFallbackStore
from smartpaste.services.message_filter import TYPE_KEYWORDS_KEY
from smartpaste.utils.storage import InMemoryStore


@pytest.fixture
def kv():
    return InMemoryStore()


@pytest.fixture
def inferencer(kv):
    return CategoryInferencer(KeywordBank(kv), VendorFallbackStore(kv), TypeKeywordStore(kv))


class TestCategoryChain:
    """keyword bank → vendor fallback → static table → type default."""

    def test_static_first_match_in_table_order(self):
        assert static_category_for("Starbucks Mall Cafe") == ('Food & Dining', 'Coffee Shops')

    def test_static_no_match(self):
        assert static_category_for("Zzz Holdings") is None
        assert static_category_for("") is None

    def test_defaults_by_type(self):
        assert default_category_for(TransactionType.INCOME) == ('Income', 'Other Income')
        assert default_category_for('expense') == ('Miscellaneous', 'Other Expenses')
        assert default_category_for(TransactionType.TRANSFER) == ('Miscellaneous', 'Other Expenses')
        assert default_category_for('bogus') == ('Miscellaneous', 'Other Expenses')

    def test_keyword_bank_wins(self, inferencer):
        inferencer.keyword_bank.save_mapping('jarir', [
            FieldMapping(field='category', value='Shopping'),
            FieldMapping(field='subcategory', value='Books'),
        ])
        category, source = inferencer.find_category_with_source("Jarir Bookstore", TransactionType.EXPENSE)
        assert category == {'category': 'Shopping', 'subcategory': 'Books'}
        assert source == CategorySource.KEYWORD

    def test_vendor_fallback_fuzzy(self, inferencer):
        inferencer.vendor_fallbacks.learn('Starbucks', TransactionType.EXPENSE, 'Food & Dining', 'Cafe Treats')
        category, source = inferencer.find_category_with_source("Starbuck", TransactionType.EXPENSE)
        assert category == {'category': 'Food & Dining', 'subcategory': 'Cafe Treats'}
        assert source == CategorySource.VENDOR_FALLBACK

    def test_vendor_fallback_type_mismatch_skipped(self, inferencer):
        inferencer.vendor_fallbacks.learn('Uber', TransactionType.INCOME, 'Income', 'Side Jobs')
        category, source = inferencer.find_category_with_source("Uber", TransactionType.EXPENSE)
        assert category == {'category': 'Transportation', 'subcategory': 'Ride Sharing'}
        assert source == CategorySource.STATIC

    def test_type_default(self, inferencer):
        category, source = inferencer.find_category_with_source("Zzz Holdings", TransactionType.INCOME)
        assert category == {'category': 'Income', 'subcategory': 'Other Income'}
        assert source == CategorySource.DEFAULT

    def test_deterministic(self, inferencer):
        first = inferencer.find_category_for_vendor("Panda Retail", 'expense')
        second = inferencer.find_category_for_vendor("Panda Retail", 'expense')
        assert first == second == {'category': 'Shopping', 'subcategory': 'Groceries'}


class TestVendorName:

    def test_anchored_vendor(self):
        assert extract_vendor_name("Spent 50 SAR at Starbucks, on 2024-05-01") == "Starbucks"

    def test_salary_without_vendor(self):
        assert extract_vendor_name("Salary of SAR 9,000 credited") == "Company"

    def test_nothing_found(self):
        assert extract_vendor_name("SAR 50") == ""


class TestTypeInference:
    """Longest matching keyword wins; Latin keywords match whole words."""

    def test_expense(self, inferencer):
        assert inferencer.infer_type("Spent 50 SAR at Starbucks") == TransactionType.EXPENSE

    def test_longer_keyword_wins(self, inferencer):
        assert inferencer.infer_type("Received from Ahmed Ali SAR 500") == TransactionType.TRANSFER
        assert inferencer.infer_type("Received SAR 500") == TransactionType.INCOME

    def test_pos_does_not_hit_deposit(self, inferencer):
        assert inferencer.infer_type("Deposit of SAR 500") == TransactionType.INCOME

    def test_arabic_substring(self, inferencer):
        assert inferencer.infer_type("عملية شراء بمبلغ 50 ريال") == TransactionType.EXPENSE

    def test_unknown(self, inferencer):
        assert inferencer.infer_type("hello there") is None

    def test_add_and_remove(self, kv):
        store = TypeKeywordStore(kv)
        store.add("Refund", TransactionType.INCOME)
        assert TypeKeywordStore(kv).infer_type("refund of SAR 20") == TransactionType.INCOME
        assert store.remove("refund") is True
        assert store.remove("refund") is False

    def test_object_shape_and_string_list(self):
        typed = TypeKeywordStore(InMemoryStore({TYPE_KEYWORDS_KEY: json.dumps({"income": ["payout"]})}))
        assert typed.keywords_for(TransactionType.INCOME) == ["payout"]

        untyped = TypeKeywordStore(InMemoryStore({TYPE_KEYWORDS_KEY: json.dumps(["payout"])}))
        assert "spent" in untyped.keywords_for(TransactionType.EXPENSE)


class TestVendorFallbackStore:
    """Automatic learning never overrides user-approved entries."""

    def test_repeat_observations_raise_confidence(self, kv):
        store = VendorFallbackStore(kv)
        for _ in range(3):
            store.learn('Panda', TransactionType.EXPENSE, 'Shopping', 'Groceries')

        entry = store.get('Panda')
        assert entry.sample_count == 3
        assert entry.confidence == 0.7

    def test_low_confidence_entry_replaced(self, kv):
        store = VendorFallbackStore(kv)
        store.learn('Panda', TransactionType.EXPENSE, 'Shopping', 'Groceries')
        assert store.learn('Panda', TransactionType.EXPENSE, 'Food & Dining', 'Restaurants') is True
        assert store.get('Panda').category == 'Food & Dining'

    def test_established_entry_kept(self, kv):
        store = VendorFallbackStore(kv)
        for _ in range(3):
            store.learn('Panda', TransactionType.EXPENSE, 'Shopping', 'Groceries')
        assert store.learn('Panda', TransactionType.EXPENSE, 'Food & Dining', 'Restaurants') is False
        assert store.get('Panda').category == 'Shopping'

    def test_user_entry_frozen(self, kv):
        store = VendorFallbackStore(kv)
        store.set_user_vendor('Panda', TransactionType.EXPENSE, 'Household', 'Supplies')

        assert store.learn('Panda', TransactionType.EXPENSE, 'Shopping', 'Groceries') is False
        conflicts = []
        assert store.merge_batch('Panda', TransactionType.EXPENSE, 'Shopping', 'Groceries', 10, conflicts) is False
        assert conflicts == ["Panda: kept user-defined mapping"]
        assert store.get('Panda').category == 'Household'
        assert store.get('Panda').user is True

    def test_user_edit_requires_name(self, kv):
        with pytest.raises(ValueError):
            VendorFallbackStore(kv).set_user_vendor('  ', TransactionType.EXPENSE, 'Shopping')

    def test_substring_match(self, kv):
        store = VendorFallbackStore(kv)
        store.learn('Jarir', TransactionType.EXPENSE, 'Shopping', 'Books')
        name, _ = store.find_closest_match("JARIR BOOKSTORE RIYADH BRANCH")
        assert name == 'Jarir'

    def test_legacy_keys_read(self):
        raw = {"Panda": {"type": "expense", "category": "Shopping", "subcategory": "Groceries", "sampleCount": 4}}
        store = VendorFallbackStore(InMemoryStore({VENDOR_FALLBACK_KEY: json.dumps(raw)}))
        assert store.get('Panda').sample_count == 4
        assert store.get('Panda').confidence == 0.5


class TestKeywordBank:

    def test_save_merges_mappings(self, kv):
        bank = KeywordBank(kv)
        bank.save_mapping('Jarir', [FieldMapping(field='category', value='Shopping')])
        entry = bank.save_mapping('jarir', [
            FieldMapping(field='category', value='Education'),
            FieldMapping(field='subcategory', value='Books'),
        ])

        assert entry.keyword == 'jarir'
        assert {m.field: m.value for m in entry.mappings} == {'category': 'Education', 'subcategory': 'Books'}
        assert entry.mapping_count == 2
        assert len(bank.all()) == 1

    def test_unsupported_field_rejected(self, kv):
        with pytest.raises(ValueError):
            KeywordBank(kv).save_mapping('jarir', [FieldMapping(field='date', value='today')])

    def test_sender_context(self, kv):
        bank = KeywordBank(kv)
        bank.save_mapping('transfer', [FieldMapping(field='type', value='transfer')], sender_context='alrajhi')

        assert bank.resolve_fields("Transfer of SAR 50", sender_hint="AlRajhi Bank") == {'type': 'transfer'}
        assert bank.resolve_fields("Transfer of SAR 50", sender_hint="SNB") == {}
        assert bank.resolve_fields("Transfer of SAR 50") == {}

    def test_type_context(self, kv):
        bank = KeywordBank(kv)
        bank.save_mapping('stc', [FieldMapping(field='category', value='Utilities')], transaction_type_context='expense')

        assert bank.resolve_fields("stc pay", txn_type=TransactionType.EXPENSE) == {'category': 'Utilities'}
        assert bank.resolve_fields("stc pay", txn_type=TransactionType.INCOME) == {}

    def test_first_entry_wins_per_field(self, kv):
        bank = KeywordBank(kv)
        bank.save_mapping('jarir', [FieldMapping(field='category', value='Shopping')])
        bank.save_mapping('bookstore', [
            FieldMapping(field='category', value='Education'),
            FieldMapping(field='subcategory', value='Books'),
        ])
        resolved = bank.resolve_fields("Paid at Jarir Bookstore")
        assert resolved == {'category': 'Shopping', 'subcategory': 'Books'}

    def test_learned_mappings_never_replace(self, kv):
        bank = KeywordBank(kv)
        bank.save_mapping('panda', [FieldMapping(field='category', value='Household')])
        added = bank.add_learned_mappings('panda', [
            FieldMapping(field='category', value='Shopping'),
            FieldMapping(field='subcategory', value='Groceries'),
        ], 3)

        assert added == 1
        assert {m.field: m.value for m in bank.get('panda').mappings} == {
            'category': 'Household',
            'subcategory': 'Groceries',
        }

    def test_delete_and_search(self, kv):
        bank = KeywordBank(kv)
        bank.save_mapping('jarir', [FieldMapping(field='category', value='Shopping')])
        bank.save_mapping('jarir books', [FieldMapping(field='category', value='Education')])
        bank.save_mapping('jarir books', [FieldMapping(field='subcategory', value='Books')])

        assert [e.keyword for e in bank.search('JARIR')] == ['jarir books', 'jarir']
        assert bank.delete('Jarir') is True
        assert bank.delete('jarir') is False
        assert [e.keyword for e in bank.all()] == ['jarir books']

    def test_legacy_field_names_and_blank_values(self):
        raw = [{"keyword": "jarir", "mappings": [
            {"field": "fromAccount", "value": "1234"},
            {"field": "category", "value": "  "},
        ]}]
        bank = KeywordBank(InMemoryStore({KEYWORD_BANK_KEY: json.dumps(raw)}))
        assert [(m.field, m.value) for m in bank.get('jarir').mappings] == [('account', '1234')]
