"""
Vendor fallback store: vendor name → {type, category, subcategory}.

Entries come from CSV imports, from confirmed transactions and from the user.
Entries marked `user: true` are frozen for automatic learning: only an explicit
user edit or delete changes them.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from rapidfuzz import fuzz

from smartpaste.models.learning import VendorFallbackData
from smartpaste.models.transaction import TransactionType
from smartpaste.utils.dates import now_iso
from smartpaste.utils.storage import JsonBackedStore
from smartpaste.utils.text import soft_normalize

logger = logging.getLogger(__name__)

VENDOR_FALLBACK_KEY = 'xpensia_vendor_fallbacks'

FUZZY_MATCH_THRESHOLD = 0.7

# An automatically learned classification can be replaced by a different one
# only while its confidence is at or below this value
REPLACEABLE_CONFIDENCE = 0.5

# camelCase keys written by older clients
_LEGACY_KEYS = {'sampleCount': 'sample_count', 'learnedAt': 'learned_at'}


def confidence_for_samples(sample_count: int) -> float:
    """0.9 for 5+ samples, 0.7 for 3+, else 0.5."""
    if sample_count >= 5:
        return 0.9
    if sample_count >= 3:
        return 0.7
    return 0.5


class VendorFallbackStore(JsonBackedStore):
    """Persisted vendor → classification map (insertion order is kept)."""

    storage_key = VENDOR_FALLBACK_KEY

    def _empty(self) -> Dict[str, VendorFallbackData]:
        return {}

    def _decode(self, raw: Any) -> Dict[str, VendorFallbackData]:
        if not isinstance(raw, dict):
            raise TypeError(f"Vendor fallbacks must be an object, got {type(raw).__name__}")

        vendors = {}
        for name, data in raw.items():
            data = {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}
            data.setdefault('confidence', 0.5)
            vendors[name] = VendorFallbackData(**data)
        return vendors

    def _encode(self) -> Dict[str, Any]:
        return {name: data.model_dump(mode='json') for name, data in self.data.items()}

    def all(self) -> Dict[str, VendorFallbackData]:
        return dict(self.data)

    def get(self, vendor_name: str) -> Optional[VendorFallbackData]:
        return self.data.get(vendor_name)

    def vendor_names(self) -> List[str]:
        return list(self.data.keys())

    def set_user_vendor(
        self,
        vendor_name: str,
        txn_type: TransactionType,
        category: str,
        subcategory: str = ""
    ) -> VendorFallbackData:
        """Explicit user edit: always written, and marked user-approved."""
        name = vendor_name.strip()
        if not name:
            raise ValueError("Vendor name must not be empty")

        existing = self.data.get(name)
        entry = VendorFallbackData(
            type=txn_type,
            category=category,
            subcategory=subcategory,
            confidence=1.0,
            sample_count=existing.sample_count if existing else 1,
            user=True,
            source='user',
            learned_at=now_iso(),
        )
        self.data[name] = entry
        self.save()
        logger.info("User vendor mapping saved", extra={"vendor": name, "category": category})
        return entry

    def delete(self, vendor_name: str) -> bool:
        if vendor_name not in self.data:
            return False
        del self.data[vendor_name]
        self.save()
        return True

    def learn(
        self,
        vendor_name: str,
        txn_type: TransactionType,
        category: str,
        subcategory: str = "",
        source: str = 'confirmed'
    ) -> bool:
        """
        Record one automatic observation of a vendor's classification.

        - user-approved entries are never touched
        - the same classification again: sample_count + 1, confidence recomputed
        - a different classification replaces the entry only while its
          confidence is <= REPLACEABLE_CONFIDENCE

        Returns:
            True if the store changed
        """
        name = (vendor_name or '').strip()
        if not name or not category:
            return False

        existing = self.data.get(name)
        if existing is not None and existing.user:
            logger.debug("Skipping user-approved vendor", extra={"vendor": name})
            return False

        if existing is not None:
            same = (
                existing.type == txn_type
                and existing.category == category
                and (existing.subcategory or '') == (subcategory or '')
            )
            if same:
                existing.sample_count += 1
                existing.confidence = confidence_for_samples(existing.sample_count)
                existing.learned_at = now_iso()
                self.save()
                return True
            if existing.confidence > REPLACEABLE_CONFIDENCE:
                logger.debug("Keeping established vendor mapping", extra={
                    "vendor": name,
                    "confidence": existing.confidence
                })
                return False

        self.data[name] = VendorFallbackData(
            type=txn_type,
            category=category,
            subcategory=subcategory or '',
            confidence=confidence_for_samples(1),
            sample_count=1,
            source=source,
            learned_at=now_iso(),
        )
        self.save()
        return True

    def merge_batch(
        self,
        vendor_name: str,
        txn_type: TransactionType,
        category: str,
        subcategory: str,
        sample_count: int,
        conflicts: List[str]
    ) -> bool:
        """
        Write a batch-learned classification unless a user-approved or
        equal/higher-confidence entry already exists (reported in `conflicts`).
        """
        confidence = confidence_for_samples(sample_count)
        existing = self.data.get(vendor_name)
        if existing is not None:
            if existing.user:
                conflicts.append(f"{vendor_name}: kept user-defined mapping")
                return False
            if existing.confidence >= confidence:
                conflicts.append(f"{vendor_name}: kept existing higher-confidence mapping")
                return False

        self.data[vendor_name] = VendorFallbackData(
            type=txn_type,
            category=category,
            subcategory=subcategory or '',
            confidence=confidence,
            sample_count=sample_count,
            source='csv-import',
            learned_at=now_iso(),
        )
        self.save()
        return True

    def find_closest_match(self, vendor_name: str) -> Optional[Tuple[str, VendorFallbackData]]:
        """
        Fuzzy match (similarity >= 0.7) first, then substring match.

        Returns:
            (stored vendor name, data) or None
        """
        query = soft_normalize(vendor_name or '')
        if not query or not self.data:
            return None

        best_name: Optional[str] = None
        best_score = 0.0
        for name in self.data:
            score = fuzz.ratio(query, soft_normalize(name)) / 100.0
            if score > best_score:
                best_name, best_score = name, score

        if best_name is not None and best_score >= FUZZY_MATCH_THRESHOLD:
            logger.debug("Fuzzy matched vendor", extra={
                "vendor": vendor_name,
                "matched": best_name,
                "score": round(best_score, 3)
            })
            return best_name, self.data[best_name]

        for name, data in self.data.items():
            key = soft_normalize(name)
            if key and key in query:
                logger.debug("Substring matched vendor", extra={"vendor": vendor_name, "matched": name})
                return name, data

        return None
