"""
Gate that decides whether text is a financial-transaction message at all.

A message passes only when ALL three hold:
1. a financial keyword is present (configured list, else the built-in list)
2. a currency+amount pattern matches
3. a date-like substring matches

No single signal is enough; this is a conjunction, not a score.
"""

import json
import logging
import re
from typing import Any, Iterable, List, Optional

from smartpaste.utils.storage import KeyValueStore
from smartpaste.utils.text import compact_lower, fold_digits

logger = logging.getLogger(__name__)

TYPE_KEYWORDS_KEY = 'xpensia_type_keywords'

FALLBACK_KEYWORDS = [
    # Arabic
    'مبلغ', 'حوالة', 'رصيد', 'بطاقة', 'شراء', 'تحويل', 'دفع', 'إيداع',
    # English
    'spent', 'purchase', 'paid', 'payment', 'deposit', 'withdrawal', 'transfer',
    'credited', 'debited', 'salary', 'received', 'pos',
]

_CURRENCY_TOKEN = r'(?:SAR|USD|EGP|AED|BHD|EUR|GBP|JPY|INR|CNY|CAD|AUD|ر\.?\s?س|ريال|جنيه\s?مصري|جنيه)'
_AMOUNT = r'(?:\d{1,3},)*\d{1,3}(?:[.,]\d{0,2})?|\d+(?:\.\d{0,2})?'

CURRENCY_AMOUNT_PATTERN = re.compile(
    rf'(?:{_CURRENCY_TOKEN}[\s:]?(?:{_AMOUNT})|(?:{_AMOUNT})[\s:]?{_CURRENCY_TOKEN})',
    re.IGNORECASE
)

_MONTH = r'(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)'

DATE_PATTERN = re.compile(
    r'(?:' + '|'.join([
        r'\d{1,2}[/\-.]\d{1,2}[/\-.]\d{1,4}',
        r'\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}',
        rf'\d{{1,2}}-{_MONTH}-\d{{2,4}}',
        rf'\d{{1,2}}\s+{_MONTH}[a-z]*\s+\d{{4}}',
        rf'{_MONTH}[a-z]*\s+\d{{1,2}},?\s+\d{{4}}',
        r'\d{2}[01]\d{3}',
        r'\d{8}',
    ]) + r')(?:\s+\d{1,2}:\d{2}(?::\d{2})?)?',
    re.IGNORECASE
)


def keywords_from_stored(value: Any) -> List[str]:
    """
    Pull keyword strings out of a stored type-keyword value.

    Accepted shapes: ["kw", ...], [{"keyword": "kw", "type": ...}, ...] and
    {"expense": ["kw", ...], ...}. Anything else yields an empty list.
    """
    keywords: List[str] = []
    if isinstance(value, list):
        for item in value:
            if isinstance(item, str):
                keywords.append(item)
            elif isinstance(item, dict) and isinstance(item.get('keyword'), str):
                keywords.append(item['keyword'])
    elif isinstance(value, dict):
        for items in value.values():
            if isinstance(items, list):
                keywords.extend(item for item in items if isinstance(item, str))
    return [kw for kw in keywords if kw.strip()]


def is_financial_transaction_message(text: str, keywords: Optional[Iterable[str]] = None) -> bool:
    """
    Pure predicate over text and a keyword list.

    Args:
        text: Raw message
        keywords: Configured financial keywords; empty or None uses FALLBACK_KEYWORDS

    Returns:
        True only when keyword, currency+amount and date checks all pass
    """
    if not isinstance(text, str) or not text.strip():
        return False

    financial_keywords = [kw for kw in (keywords or []) if isinstance(kw, str) and kw.strip()]
    if not financial_keywords:
        financial_keywords = FALLBACK_KEYWORDS

    normalized_text = compact_lower(text)
    keyword_match = any(compact_lower(kw) in normalized_text for kw in financial_keywords)
    if not keyword_match:
        return False

    folded = fold_digits(text)
    if not CURRENCY_AMOUNT_PATTERN.search(folded):
        return False

    return DATE_PATTERN.search(folded) is not None


class MessageFilter:
    """Message filter bound to the stored keyword configuration."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def configured_keywords(self) -> List[str]:
        raw = self.kv.get(TYPE_KEYWORDS_KEY)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Failed to parse stored type keywords", extra={
                "storage_key": TYPE_KEYWORDS_KEY
            })
            return []

        keywords = keywords_from_stored(parsed)
        if not keywords:
            logger.debug("Invalid type keywords format, using fallback list", extra={
                "storage_key": TYPE_KEYWORDS_KEY
            })
        return keywords

    def is_financial(self, text: str) -> bool:
        return is_financial_transaction_message(text, self.configured_keywords())
