"""
Keyword bank: explicit user-authored keyword → field value rules.

These are the highest-priority source during draft assembly. A keyword fires
when it appears (case-insensitive substring) in the message or the vendor name,
and, if the entry carries a sender or transaction-type context, only when that
context matches too.
"""

import logging
from typing import Any, Dict, List, Optional

from smartpaste.models.learning import FieldMapping, KeywordMapping
from smartpaste.utils.dates import now_iso
from smartpaste.utils.storage import JsonBackedStore

logger = logging.getLogger(__name__)

KEYWORD_BANK_KEY = 'xpensia_keyword_bank'

MAPPABLE_FIELDS = ('type', 'category', 'subcategory', 'vendor', 'account', 'currency')

# Older stored entries use the form field names
_FIELD_ALIASES = {'fromAccount': 'account', 'from_account': 'account'}


class KeywordBank(JsonBackedStore):
    """Persisted list of KeywordMapping entries (bank order is priority order)."""

    storage_key = KEYWORD_BANK_KEY

    def _empty(self) -> List[KeywordMapping]:
        return []

    def _decode(self, raw: Any) -> List[KeywordMapping]:
        if not isinstance(raw, list):
            raise TypeError(f"Keyword bank must be a list, got {type(raw).__name__}")

        entries = []
        for item in raw:
            item = dict(item)
            item['mappings'] = [
                {'field': _FIELD_ALIASES.get(m.get('field'), m.get('field')), 'value': m.get('value')}
                for m in item.get('mappings', [])
                if isinstance(m, dict) and isinstance(m.get('value'), str) and m.get('value').strip()
            ]
            entries.append(KeywordMapping(**item))
        return entries

    def _encode(self) -> List[Dict[str, Any]]:
        return [entry.model_dump(mode='json') for entry in self.data]

    def all(self) -> List[KeywordMapping]:
        return list(self.data)

    def get(self, keyword: str) -> Optional[KeywordMapping]:
        lowered = keyword.strip().lower()
        for entry in self.data:
            if entry.keyword.lower() == lowered:
                return entry
        return None

    def save_mapping(
        self,
        keyword: str,
        mappings: List[FieldMapping],
        sender_context: Optional[str] = None,
        transaction_type_context: Optional[str] = None,
        keyword_type: Optional[str] = None
    ) -> KeywordMapping:
        """
        Create or update a keyword entry.

        Mappings for the same field replace the previous value; other fields
        are kept. `mapping_count` counts how many times the entry was saved.
        """
        normalized = keyword.strip().lower()
        if not normalized:
            raise ValueError("Keyword must not be empty")

        for mapping in mappings:
            if mapping.field not in MAPPABLE_FIELDS:
                raise ValueError(f"Unsupported mapping field: {mapping.field}")

        entry = self.get(normalized)
        if entry is None:
            entry = KeywordMapping(keyword=normalized)
            self.data.append(entry)

        merged = {m.field: m.value for m in entry.mappings}
        merged.update({m.field: m.value.strip() for m in mappings if m.value and m.value.strip()})
        entry.mappings = [FieldMapping(field=f, value=v) for f, v in merged.items()]

        if sender_context is not None:
            entry.sender_context = sender_context or None
        if transaction_type_context is not None:
            entry.transaction_type_context = transaction_type_context or None
        if keyword_type is not None:
            entry.type = keyword_type

        entry.mapping_count += 1
        entry.last_updated = now_iso()
        self.save()

        logger.info("Keyword mapping saved", extra={
            "keyword": normalized,
            "fields": list(merged.keys())
        })
        return entry

    def add_learned_mappings(self, keyword: str, mappings: List[FieldMapping], sample_count: int) -> int:
        """
        Merge batch-learned mappings without replacing any existing field value.

        Returns:
            1 for a new keyword, else the number of fields added
        """
        normalized = keyword.strip().lower()
        if not normalized:
            return 0

        added = 0
        entry = self.get(normalized)
        if entry is None:
            entry = KeywordMapping(keyword=normalized, type='csv-import', mappings=list(mappings))
            self.data.append(entry)
            added = 1
        else:
            mapped_fields = {m.field for m in entry.mappings}
            for mapping in mappings:
                if mapping.field not in mapped_fields:
                    entry.mappings.append(mapping)
                    added += 1

        entry.mapping_count += sample_count
        entry.last_updated = now_iso()
        self.save()
        return added

    def delete(self, keyword: str) -> bool:
        """Delete a keyword entry (case-insensitive)."""
        lowered = keyword.strip().lower()
        before = len(self.data)
        self.data[:] = [entry for entry in self.data if entry.keyword.lower() != lowered]
        if len(self.data) == before:
            return False
        self.save()
        return True

    def search(self, term: str) -> List[KeywordMapping]:
        """Entries whose keyword contains `term`, most-used first."""
        lowered = term.lower()
        found = [entry for entry in self.data if lowered in entry.keyword.lower()]
        return sorted(found, key=lambda entry: entry.mapping_count, reverse=True)

    def find_matches(
        self,
        text: str,
        sender_hint: Optional[str] = None,
        txn_type: Optional[str] = None
    ) -> List[KeywordMapping]:
        """Entries that fire for the text under the given context, in bank order."""
        lowered = (text or '').lower()
        matches = []
        for entry in self.data:
            keyword = entry.keyword.lower()
            if not keyword or keyword not in lowered:
                continue
            if entry.sender_context:
                if not sender_hint or entry.sender_context.lower() not in sender_hint.lower():
                    continue
            if entry.transaction_type_context and txn_type:
                if entry.transaction_type_context.lower() != str(getattr(txn_type, 'value', txn_type)).lower():
                    continue
            matches.append(entry)
        return matches

    def resolve_fields(
        self,
        text: str,
        sender_hint: Optional[str] = None,
        txn_type: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Field values from matching keyword rules. The first entry (bank order)
        that maps a field wins for that field.
        """
        resolved: Dict[str, str] = {}
        for entry in self.find_matches(text, sender_hint, txn_type):
            for mapping in entry.mappings:
                resolved.setdefault(mapping.field, mapping.value)
        return resolved

    def category_for_vendor(self, vendor_name: str) -> Optional[Dict[str, str]]:
        """First keyword contained in the vendor name that maps a category."""
        lowered = (vendor_name or '').lower()
        if not lowered:
            return None
        for entry in self.data:
            if not entry.keyword or entry.keyword.lower() not in lowered:
                continue
            mapped = {m.field: m.value for m in entry.mappings}
            if 'category' in mapped:
                return {'category': mapped['category'], 'subcategory': mapped.get('subcategory', '')}
        return None
