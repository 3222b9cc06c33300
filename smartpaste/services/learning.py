"""
Learned entries, engine configuration and the matcher.

A learned entry records which tokens of a confirmed message carried which
field. The matcher scores every entry against a new message's tokens:

    confidence = matched_fields / total_fields + sender_bonus

The score is not clamped; display code clamps it.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from smartpaste.config import settings
from smartpaste.models.learning import EngineConfig, EngineConfigUpdate, LearnedEntry, MatchResult
from smartpaste.utils.dates import now_iso
from smartpaste.utils.scoring import match_confidence
from smartpaste.utils.storage import JsonBackedStore

logger = logging.getLogger(__name__)

LEARNED_ENTRIES_KEY = 'xpensia_learned_entries'
LEARNING_CONFIG_KEY = 'xpensia_learning_config'

SENDER_HINT_BONUS = 0.1

# camelCase keys written by older clients
_LEGACY_CONFIG_KEYS = {
    'saveAutomatically': 'save_automatically',
    'minConfidenceThreshold': 'min_confidence_threshold',
    'maxEntries': 'max_entries',
}


def default_config() -> EngineConfig:
    return EngineConfig(max_entries=settings.MAX_LEARNED_ENTRIES)


class EngineConfigStore(JsonBackedStore):
    """Persisted EngineConfig; stored values are merged over the defaults."""

    storage_key = LEARNING_CONFIG_KEY

    def _empty(self) -> EngineConfig:
        return default_config()

    def _decode(self, raw: Any) -> EngineConfig:
        if not isinstance(raw, dict):
            raise TypeError(f"Engine config must be an object, got {type(raw).__name__}")
        stored = {_LEGACY_CONFIG_KEYS.get(key, key): value for key, value in raw.items()}
        return EngineConfig(**{**default_config().model_dump(), **stored})

    def _encode(self) -> Dict[str, Any]:
        return self.data.model_dump(mode='json')

    def get(self) -> EngineConfig:
        return self.data.model_copy()

    def update(self, changes: EngineConfigUpdate) -> EngineConfig:
        """Apply a partial update; the merged result is validated as a whole."""
        merged = {**self.data.model_dump(), **changes.model_dump(exclude_none=True)}
        self._data = EngineConfig(**merged)
        self.save()
        logger.info("Engine config updated", extra={"config": self._data.model_dump()})
        return self.get()


def score_entry(entry: LearnedEntry, message_tokens: Set[str], sender_hint: Optional[str] = None) -> MatchResult:
    """Score one learned entry against a tokenized message."""
    fields = {name: tokens for name, tokens in entry.field_token_map.items() if tokens}

    matched_fields = 0
    overlap = 0
    for tokens in fields.values():
        hits = sum(1 for t in tokens if t.token in message_tokens)
        overlap += hits
        if hits:
            matched_fields += 1

    bonus = 0.0
    if sender_hint and entry.sender_hint and sender_hint.lower() in entry.sender_hint.lower():
        bonus = SENDER_HINT_BONUS

    return MatchResult(
        entry=entry,
        confidence=match_confidence(matched_fields, len(fields), bonus),
        matched_fields=matched_fields,
        token_overlap_count=overlap,
    )


class LearnedEntryStore(JsonBackedStore):
    """
    Learned entries, most recently learned first.

    One entry per template id: re-learning a structure replaces its entry and
    moves it to the front.
    """

    storage_key = LEARNED_ENTRIES_KEY

    def _empty(self) -> List[LearnedEntry]:
        return []

    def _decode(self, raw: Any) -> List[LearnedEntry]:
        if not isinstance(raw, list):
            raise TypeError(f"Learned entries must be a list, got {type(raw).__name__}")
        return [LearnedEntry(**item) for item in raw]

    def _encode(self) -> List[Dict[str, Any]]:
        return [entry.model_dump(mode='json') for entry in self.data]

    def all(self) -> List[LearnedEntry]:
        return list(self.data)

    def get(self, entry_id: str) -> Optional[LearnedEntry]:
        for entry in self.data:
            if entry.id == entry_id:
                return entry
        return None

    def get_by_template(self, template_id: str) -> Optional[LearnedEntry]:
        for entry in self.data:
            if entry.template_id == template_id:
                return entry
        return None

    def register(self, entry: LearnedEntry, max_entries: int) -> LearnedEntry:
        """
        Insert or replace the entry for its template id, then evict the least
        recently used entries above `max_entries`.
        """
        existing = self.get_by_template(entry.template_id)
        if existing is not None:
            entry.id = existing.id
            entry.created_at = existing.created_at
            self.data.remove(existing)

        self.data.insert(0, entry)

        while len(self.data) > max_entries:
            oldest = min(self.data, key=lambda e: e.last_used_at)
            self.data.remove(oldest)
            logger.debug("Evicted learned entry", extra={"entry_id": oldest.id})

        self.save()
        return entry

    def touch(self, entry_id: str) -> None:
        """Mark an entry as used by a parse."""
        entry = self.get(entry_id)
        if entry is None:
            return
        entry.last_used_at = now_iso()
        self.save()

    def clear(self) -> None:
        self.data.clear()
        self.save()
        logger.info("Learned entries cleared")

    def find_best_match(
        self,
        message_tokens: List[str],
        sender_hint: Optional[str],
        threshold: float
    ) -> MatchResult:
        """
        Highest-confidence entry. Ties keep the earlier entry in store order.

        Returns:
            MatchResult; `entry` is only set when the threshold is met
        """
        token_set = set(message_tokens)
        best: Optional[MatchResult] = None
        for entry in self.data:
            result = score_entry(entry, token_set, sender_hint)
            if best is None or result.confidence > best.confidence:
                best = result

        if best is None or best.confidence <= 0:
            return MatchResult()

        if best.confidence >= threshold:
            best.matched = True
            logger.debug("Learned entry matched", extra={
                "entry_id": best.entry.id,
                "confidence": round(best.confidence, 3)
            })
            return best

        return MatchResult(
            confidence=best.confidence,
            matched_fields=best.matched_fields,
            token_overlap_count=best.token_overlap_count,
        )
