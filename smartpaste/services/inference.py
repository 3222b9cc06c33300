"""
Category / vendor inference.

Fallback chain for a vendor's category, highest priority first:
1. keyword bank (user rules, substring of the vendor name)
2. vendor fallback store (fuzzy, then substring); entry type must agree
3. static keyword table (insertion order, first match wins)
4. type default
"""

import logging
from enum import Enum
from typing import Dict, Optional, Tuple

from smartpaste.models.transaction import TransactionType
from smartpaste.services.extractors import extract_vendor_candidates
from smartpaste.services.keyword_bank import KeywordBank
from smartpaste.services.type_keywords import TypeKeywordStore
from smartpaste.services.vendor_fallback import VendorFallbackStore
from smartpaste.utils.scoring import select_best_candidate

logger = logging.getLogger(__name__)

# keyword → (category, subcategory); order matters, first match wins
VENDOR_CATEGORY_MAP: Dict[str, Tuple[str, str]] = {
    # Food & Dining
    'restaurant': ('Food & Dining', 'Restaurants'),
    'cafe': ('Food & Dining', 'Coffee Shops'),
    'starbucks': ('Food & Dining', 'Coffee Shops'),
    'mcdonald': ('Food & Dining', 'Fast Food'),
    'kfc': ('Food & Dining', 'Fast Food'),
    'pizza': ('Food & Dining', 'Fast Food'),

    # Shopping
    'amazon': ('Shopping', 'Online Shopping'),
    'ikea': ('Shopping', 'Home Goods'),
    'market': ('Shopping', 'Groceries'),
    'grocery': ('Shopping', 'Groceries'),
    'supermarket': ('Shopping', 'Groceries'),
    'panda': ('Shopping', 'Groceries'),
    'tamimi': ('Shopping', 'Groceries'),
    'danube': ('Shopping', 'Groceries'),
    'carrefour': ('Shopping', 'Groceries'),
    'lulu': ('Shopping', 'Groceries'),
    'mall': ('Shopping', 'Retail'),

    # Transportation
    'uber': ('Transportation', 'Ride Sharing'),
    'careem': ('Transportation', 'Ride Sharing'),
    'taxi': ('Transportation', 'Taxi'),
    'gas': ('Transportation', 'Fuel'),
    'petrol': ('Transportation', 'Fuel'),
    'fuel': ('Transportation', 'Fuel'),
    'aldrees': ('Transportation', 'Fuel'),

    # Utilities
    'electric': ('Utilities', 'Electricity'),
    'water': ('Utilities', 'Water'),
    'internet': ('Utilities', 'Internet'),
    'phone': ('Utilities', 'Phone'),
    'mobile': ('Utilities', 'Phone'),
    'stc': ('Utilities', 'Phone'),
    'zain': ('Utilities', 'Phone'),
    'mobily': ('Utilities', 'Phone'),

    # Entertainment
    'netflix': ('Entertainment', 'Streaming Services'),
    'spotify': ('Entertainment', 'Streaming Services'),
    'cinema': ('Entertainment', 'Movies'),
    'theater': ('Entertainment', 'Movies'),

    # Health
    'pharmacy': ('Health', 'Pharmacy'),
    'doctor': ('Health', 'Doctor'),
    'hospital': ('Health', 'Hospital'),
    'clinic': ('Health', 'Doctor'),
    'medical': ('Health', 'Medical Services'),
}

DEFAULT_CATEGORIES: Dict[TransactionType, Tuple[str, str]] = {
    TransactionType.INCOME: ('Income', 'Other Income'),
    TransactionType.EXPENSE: ('Miscellaneous', 'Other Expenses'),
}

SALARY_KEYWORDS = ('salary', 'راتب')
SALARY_VENDOR = 'Company'


class CategorySource(str, Enum):
    KEYWORD = "keyword"
    VENDOR_FALLBACK = "vendor_fallback"
    STATIC = "static"
    DEFAULT = "default"


def static_category_for(vendor_name: str) -> Optional[Tuple[str, str]]:
    normalized = (vendor_name or '').strip().lower()
    if not normalized:
        return None
    for keyword, category_info in VENDOR_CATEGORY_MAP.items():
        if keyword in normalized:
            return category_info
    return None


def default_category_for(txn_type) -> Tuple[str, str]:
    """Type default; transfer and unknown types get the expense default."""
    try:
        return DEFAULT_CATEGORIES.get(TransactionType(txn_type), DEFAULT_CATEGORIES[TransactionType.EXPENSE])
    except ValueError:
        return DEFAULT_CATEGORIES[TransactionType.EXPENSE]


def extract_vendor_name(text: str) -> str:
    """
    Display vendor for a message.

    Uses the best-scoring vendor candidate; salary messages without a vendor
    span yield "Company"; otherwise "".
    """
    best = select_best_candidate(extract_vendor_candidates(text or ''))
    if best is not None:
        return best[0].value

    lowered = (text or '').lower()
    if any(keyword in lowered for keyword in SALARY_KEYWORDS):
        return SALARY_VENDOR

    logger.debug("No valid vendor found", extra={"text_length": len(text or '')})
    return ""


class CategoryInferencer:
    """Resolve categories and types from the learning stores."""

    def __init__(
        self,
        keyword_bank: KeywordBank,
        vendor_fallbacks: VendorFallbackStore,
        type_keywords: TypeKeywordStore
    ):
        self.keyword_bank = keyword_bank
        self.vendor_fallbacks = vendor_fallbacks
        self.type_keywords = type_keywords

    def find_category_with_source(self, vendor_name: str, txn_type) -> Tuple[Dict[str, str], CategorySource]:
        """
        Walk the fallback chain and report which tier answered.

        Returns:
            ({"category": ..., "subcategory": ...}, source)
        """
        type_value = getattr(txn_type, 'value', txn_type)

        mapped = self.keyword_bank.category_for_vendor(vendor_name)
        if mapped:
            return mapped, CategorySource.KEYWORD

        fallback = self.vendor_fallbacks.find_closest_match(vendor_name)
        if fallback is not None:
            _, data = fallback
            if not type_value or data.type.value == str(type_value).lower():
                return {'category': data.category, 'subcategory': data.subcategory}, CategorySource.VENDOR_FALLBACK

        static = static_category_for(vendor_name)
        if static:
            return {'category': static[0], 'subcategory': static[1]}, CategorySource.STATIC

        category, subcategory = default_category_for(type_value)
        return {'category': category, 'subcategory': subcategory}, CategorySource.DEFAULT

    def find_category_for_vendor(self, vendor_name: str, txn_type) -> Dict[str, str]:
        """Deterministic given unchanged stores."""
        category_info, _ = self.find_category_with_source(vendor_name, txn_type)
        return category_info

    def infer_type(self, text: str) -> Optional[TransactionType]:
        return self.type_keywords.infer_type(text or '')
