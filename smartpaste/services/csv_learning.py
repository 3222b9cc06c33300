"""
Batch learning from imported (CSV) transactions.

Rows are grouped by a normalized vendor key. Every vendor seen at least twice
gets its dominant (type, category, subcategory) written to the vendor fallback
store and the keyword bank.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from smartpaste.models.learning import FieldMapping, ImportedTransaction, LearningResult, VendorFallbackData
from smartpaste.models.transaction import TransactionType
from smartpaste.services.keyword_bank import KeywordBank
from smartpaste.services.vendor_fallback import VendorFallbackStore

logger = logging.getLogger(__name__)

MIN_SAMPLES = 2
MAX_VENDOR_KEY_LENGTH = 50
CSV_SOURCE = 'csv-import'

_VENDOR_KEY_STRIP = re.compile(r'[^a-z0-9\u0600-\u06FF]')


@dataclass
class VendorClassification:
    vendor: str
    type: TransactionType
    category: str
    subcategory: str
    count: int


def normalize_vendor_key(name: Optional[str]) -> str:
    """Lower-cased, only ASCII letters/digits and Arabic letters, max 50 chars."""
    if not name:
        return ''
    return _VENDOR_KEY_STRIP.sub('', name.strip().lower())[:MAX_VENDOR_KEY_LENGTH]


def group_by_vendor(transactions: List[ImportedTransaction]) -> Dict[str, List[ImportedTransaction]]:
    groups: Dict[str, List[ImportedTransaction]] = {}
    for txn in transactions:
        key = normalize_vendor_key(txn.vendor or txn.title)
        if key:
            groups.setdefault(key, []).append(txn)
    return groups


def dominant_classifications(groups: Dict[str, List[ImportedTransaction]]) -> List[VendorClassification]:
    """
    Most frequent (type, category, subcategory) per vendor with enough samples.

    Ties go to the combination seen first.
    """
    classifications = []
    for vendor, txns in groups.items():
        if len(txns) < MIN_SAMPLES:
            continue

        combos: Counter = Counter(
            (txn.type, txn.category, txn.subcategory or '') for txn in txns
        )
        # Counter keeps first-seen order, and max() returns the first maximum
        (txn_type, category, subcategory), count = max(combos.items(), key=lambda item: item[1])
        classifications.append(VendorClassification(
            vendor=vendor,
            type=txn_type,
            category=category,
            subcategory=subcategory,
            count=count,
        ))
    return classifications


def batch_learn_from_transactions(
    transactions: List[ImportedTransaction],
    vendors: VendorFallbackStore,
    keyword_bank: KeywordBank
) -> LearningResult:
    """
    Learn vendor classifications from a batch of imported transactions.

    User-approved and equal-or-higher-confidence vendor entries are kept and
    reported in `conflicts`. Vendors with a user-approved entry get no keyword
    mapping either.
    """
    result = LearningResult()
    if not transactions:
        return result

    classifications = dominant_classifications(group_by_vendor(transactions))

    for cls in classifications:
        if vendors.merge_batch(cls.vendor, cls.type, cls.category, cls.subcategory, cls.count, result.conflicts):
            result.vendors_learned += 1

    for cls in classifications:
        existing = vendors.get(cls.vendor)
        if existing is not None and existing.user:
            continue
        mappings = [FieldMapping(field='category', value=cls.category)]
        if cls.subcategory:
            mappings.append(FieldMapping(field='subcategory', value=cls.subcategory))
        result.keywords_learned += keyword_bank.add_learned_mappings(cls.vendor, mappings, cls.count)

    logger.info("Learned from import", extra={
        "transactions": len(transactions),
        "vendors_learned": result.vendors_learned,
        "keywords_learned": result.keywords_learned,
        "conflicts": len(result.conflicts)
    })
    return result


def csv_learned_vendors(vendors: VendorFallbackStore) -> List[Tuple[str, VendorFallbackData]]:
    """Vendor entries that came from a CSV import."""
    return [(name, data) for name, data in vendors.all().items() if data.source == CSV_SOURCE]
