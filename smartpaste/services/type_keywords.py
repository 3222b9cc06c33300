"""
Transaction-type keyword store (expense / income / transfer).
"""

import logging
import re
from typing import Any, Dict, List, Optional

from smartpaste.models.learning import TypeKeyword
from smartpaste.models.transaction import TransactionType
from smartpaste.services.message_filter import TYPE_KEYWORDS_KEY
from smartpaste.utils.storage import JsonBackedStore

logger = logging.getLogger(__name__)

DEFAULT_TYPE_KEYWORDS: Dict[TransactionType, List[str]] = {
    TransactionType.EXPENSE: [
        'purchase', 'pos', 'mada', 'spent', 'paid', 'atm withdrawal', 'fuel', 'food', 'market',
        'شراء', 'خصم', 'بطاقة',
    ],
    TransactionType.INCOME: [
        'salary', 'deposit', 'credited', 'received', 'bonus', 'commission', 'incentive',
        'حوالة واردة', 'دفعة',
    ],
    TransactionType.TRANSFER: [
        'transfer', 'sent', 'received from', 'sent to', 'bank to bank', 'wallet', 'iban',
        'تحويل', 'نقل', 'ارسال',
    ],
}

_TYPE_VALUES = {t.value for t in TransactionType}


def default_type_keywords() -> List[TypeKeyword]:
    return [
        TypeKeyword(keyword=keyword, type=txn_type)
        for txn_type, keywords in DEFAULT_TYPE_KEYWORDS.items()
        for keyword in keywords
    ]


def _keyword_in_text(keyword: str, text: str) -> bool:
    """
    Whole-word match for Latin keywords ("pos" must not hit "deposit");
    substring match for Arabic, where prefixes attach to the word.
    """
    if keyword.isascii():
        pattern = rf'(?<![^\W\d_]){re.escape(keyword)}(?![^\W\d_])'
        return re.search(pattern, text) is not None
    return keyword in text


class TypeKeywordStore(JsonBackedStore):
    """
    Keyword → transaction type list.

    Persisted as [{"keyword": ..., "type": ...}]. The object shape
    {"expense": [...], ...} is read too. Plain string lists carry no type, so a
    value without any typed keyword falls back to the defaults.
    """

    storage_key = TYPE_KEYWORDS_KEY

    def _empty(self) -> List[TypeKeyword]:
        return default_type_keywords()

    def _decode(self, raw: Any) -> List[TypeKeyword]:
        keywords: List[TypeKeyword] = []
        if isinstance(raw, dict):
            for txn_type, items in raw.items():
                if txn_type not in _TYPE_VALUES or not isinstance(items, list):
                    continue
                keywords.extend(
                    TypeKeyword(keyword=item, type=txn_type) for item in items if isinstance(item, str)
                )
        elif isinstance(raw, list):
            keywords.extend(
                TypeKeyword(**item) for item in raw if isinstance(item, dict) and 'type' in item
            )
        else:
            raise TypeError(f"Unexpected type keyword value: {type(raw).__name__}")

        return keywords or default_type_keywords()

    def _encode(self) -> List[Dict[str, str]]:
        return [item.model_dump(mode='json') for item in self.data]

    def all(self) -> List[TypeKeyword]:
        return list(self.data)

    def keywords_for(self, txn_type: TransactionType) -> List[str]:
        return [item.keyword for item in self.data if item.type == txn_type]

    def add(self, keyword: str, txn_type: TransactionType) -> TypeKeyword:
        """Add (or retype) a keyword. Keywords are stored lower-cased."""
        normalized = keyword.strip().lower()
        if not normalized:
            raise ValueError("Keyword must not be empty")

        self.data[:] = [item for item in self.data if item.keyword != normalized]
        entry = TypeKeyword(keyword=normalized, type=txn_type)
        self.data.append(entry)
        self.save()
        logger.info("Type keyword saved", extra={"keyword": normalized, "type": txn_type.value})
        return entry

    def remove(self, keyword: str) -> bool:
        normalized = keyword.strip().lower()
        before = len(self.data)
        self.data[:] = [item for item in self.data if item.keyword != normalized]
        if len(self.data) == before:
            return False
        self.save()
        return True

    def infer_type(self, text: str) -> Optional[TransactionType]:
        """
        Infer the transaction type from keywords in the text.

        The longest matching keyword wins so that "received from" (transfer)
        beats "received" (income). Equal lengths keep list order.
        """
        lowered = text.lower()
        best: Optional[TypeKeyword] = None
        for item in self.data:
            keyword = item.keyword.lower()
            if not keyword or not _keyword_in_text(keyword, lowered):
                continue
            if best is None or len(keyword) > len(best.keyword):
                best = item
        return best.type if best else None
