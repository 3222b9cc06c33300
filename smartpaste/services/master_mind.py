"""
MasterMind: global token → field memory.

Every confirmed transaction registers the tokens that carried each field.
Counts only grow; positions keep the five most recent sightings. The map is
consulted during extraction scoring (see `field_for`).
"""

import logging
from typing import Any, Dict, List, Optional

from smartpaste.models.learning import MasterTokenEntry, TokenContext, TokenPosition
from smartpaste.utils.dates import now_iso
from smartpaste.utils.storage import JsonBackedStore

logger = logging.getLogger(__name__)

MASTER_MIND_KEY = 'xpensia_master_mind_map'

MAX_POSITIONS = 5


class MasterMind(JsonBackedStore):

    storage_key = MASTER_MIND_KEY

    def _empty(self) -> Dict[str, MasterTokenEntry]:
        return {}

    def _decode(self, raw: Any) -> Dict[str, MasterTokenEntry]:
        if not isinstance(raw, dict):
            raise TypeError(f"Token map must be an object, got {type(raw).__name__}")
        return {token.lower(): MasterTokenEntry(**entry) for token, entry in raw.items()}

    def _encode(self) -> Dict[str, Any]:
        return {token: entry.model_dump(mode='json') for token, entry in self.data.items()}

    def _touch(
        self,
        token: str,
        field: str,
        category: Optional[str],
        subcategory: Optional[str]
    ) -> Optional[MasterTokenEntry]:
        key = (token or '').strip().lower()
        if not key or not field:
            return None

        entry = self.data.get(key)
        if entry is None:
            # The first registration fixes the field and classification
            entry = MasterTokenEntry(
                field=field,
                last_used=now_iso(),
                category=category,
                subcategory=subcategory,
            )
            self.data[key] = entry
        else:
            entry.count += 1
            entry.last_used = now_iso()
        return entry

    def register_token(
        self,
        token: str,
        field: str,
        category: Optional[str] = None,
        subcategory: Optional[str] = None
    ) -> Optional[MasterTokenEntry]:
        entry = self._touch(token, field, category, subcategory)
        if entry is not None:
            self.save()
        return entry

    def register_token_with_position(
        self,
        token: str,
        field: str,
        position: int,
        context: Optional[Dict[str, List[str]]] = None,
        category: Optional[str] = None,
        subcategory: Optional[str] = None
    ) -> Optional[MasterTokenEntry]:
        """Like `register_token`, and remembers where the token was seen."""
        entry = self._touch(token, field, category, subcategory)
        if entry is None:
            return None

        entry.positions.append(TokenPosition(
            value=position,
            context=TokenContext(**context) if context else None,
        ))
        if len(entry.positions) > MAX_POSITIONS:
            del entry.positions[:-MAX_POSITIONS]

        self.save()
        return entry

    def get(self, token: str) -> Optional[MasterTokenEntry]:
        return self.data.get((token or '').strip().lower())

    def get_map(self) -> Dict[str, MasterTokenEntry]:
        return dict(self.data)

    def field_for(self, token: str) -> Optional[str]:
        entry = self.get(token)
        return entry.field if entry else None

    def clear(self) -> None:
        self.data.clear()
        self.save()
        logger.info("Token map cleared")
