"""
SmartPaste engine facade.

Wires the learning stores to one KeyValueStore and exposes the parse / learn /
confirm cycle. Stores are created once per engine and loaded lazily.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from smartpaste.config import settings
from smartpaste.models.learning import (
    EngineConfig,
    EngineConfigUpdate,
    ImportedTransaction,
    LearnedEntry,
    LearningResult,
    MatchResult,
)
from smartpaste.models.results import BatchImportResult, ImportedMessage, ParseResult, ParsingStatus
from smartpaste.models.transaction import (
    ConfirmedTransaction,
    PositionedToken,
    Provenance,
    TransactionDraft,
)
from smartpaste.services import extractors
from smartpaste.services.assembler import DraftAssembler
from smartpaste.services.csv_learning import batch_learn_from_transactions
from smartpaste.services.inference import CategoryInferencer, extract_vendor_name
from smartpaste.services.keyword_bank import KeywordBank
from smartpaste.services.learning import EngineConfigStore, LearnedEntryStore
from smartpaste.services.master_mind import MasterMind
from smartpaste.services.message_filter import MessageFilter
from smartpaste.services.template_bank import TemplateBank, fingerprint
from smartpaste.services.type_keywords import TypeKeywordStore
from smartpaste.services.vendor_fallback import VendorFallbackStore
from smartpaste.utils.dates import now_iso
from smartpaste.utils.scoring import select_best_candidate
from smartpaste.utils.storage import KeyValueStore

logger = logging.getLogger(__name__)

SUCCESS_CONFIDENCE = 0.8
PARTIAL_CONFIDENCE = 0.4

# Confirmed fields compared to decide whether a learned match was accepted
ACCEPTANCE_FIELDS = ('type', 'category', 'subcategory', 'vendor', 'currency')


def parsing_status_for(confidence: float) -> ParsingStatus:
    if confidence >= SUCCESS_CONFIDENCE:
        return ParsingStatus.SUCCESS
    if confidence >= PARTIAL_CONFIDENCE:
        return ParsingStatus.PARTIAL
    return ParsingStatus.FAILED


class SmartPasteEngine:
    """Parse financial messages and learn from user confirmations."""

    def __init__(self, kv: KeyValueStore, default_currency: str = settings.DEFAULT_CURRENCY):
        self.kv = kv
        self.config_store = EngineConfigStore(kv)
        self.entries = LearnedEntryStore(kv)
        self.master_mind = MasterMind(kv)
        self.templates = TemplateBank(kv)
        self.vendors = VendorFallbackStore(kv)
        self.keywords = KeywordBank(kv)
        self.type_keywords = TypeKeywordStore(kv)
        self.message_filter = MessageFilter(kv)
        self.inferencer = CategoryInferencer(self.keywords, self.vendors, self.type_keywords)
        self.assembler = DraftAssembler(self.keywords, self.master_mind, self.inferencer, default_currency)

    # Config

    def get_config(self) -> EngineConfig:
        return self.config_store.get()

    def save_config(self, changes: EngineConfigUpdate) -> EngineConfig:
        return self.config_store.update(changes)

    # Parsing

    def is_financial(self, raw_text: str) -> bool:
        return self.message_filter.is_financial(raw_text)

    def find_best_match(self, raw_text: str, sender_hint: Optional[str] = None) -> MatchResult:
        config = self.config_store.get()
        if not config.enabled or not raw_text:
            return MatchResult()
        return self.entries.find_best_match(
            extractors.tokenize(raw_text),
            sender_hint,
            config.min_confidence_threshold,
        )

    def parse_with_details(self, raw_text: str, sender_hint: Optional[str] = None) -> Optional[ParseResult]:
        """
        Parse one message into a draft plus confidence and provenance.

        Records template usage; records a template fallback when no field came
        from a learned entry.

        Returns:
            ParseResult, or None when the message is not a financial transaction
        """
        if not raw_text or not self.is_financial(raw_text):
            logger.debug("Message rejected by filter", extra={"text_length": len(raw_text or '')})
            return None

        match = self.find_best_match(raw_text, sender_hint)
        assembled = self.assembler.assemble(raw_text, match, sender_hint)

        template = self.templates.record_usage(raw_text)
        used_learned = Provenance.LEARNED in assembled.provenance.values()
        if used_learned:
            self.entries.touch(match.entry.id)
        else:
            self.templates.record_fallback(template.id)

        result = ParseResult(
            draft=assembled.draft,
            account=assembled.account,
            confidence=assembled.confidence,
            parsing_status=parsing_status_for(assembled.confidence),
            provenance=assembled.provenance,
            match=match,
            template_id=template.id,
        )

        logger.info("Message parsed", extra={
            "template_id": template.id[:12],
            "matched": match.matched,
            "confidence": result.confidence,
            "status": result.parsing_status.value
        })
        return result

    def parse(self, raw_text: str, sender_hint: Optional[str] = None) -> Optional[TransactionDraft]:
        result = self.parse_with_details(raw_text, sender_hint)
        return result.draft if result else None

    def import_messages(self, messages: List[str], sender_hint: Optional[str] = None) -> BatchImportResult:
        """Parse messages one at a time; each is filtered independently."""
        items: List[ImportedMessage] = []
        for index, message in enumerate(messages):
            result = self.parse_with_details(message, sender_hint)
            if result is None:
                items.append(ImportedMessage(index=index, skipped=True, reason="not a financial transaction"))
            else:
                items.append(ImportedMessage(index=index, result=result))

        parsed = sum(1 for item in items if not item.skipped)
        logger.info("Batch import complete", extra={"total": len(items), "parsed": parsed})
        return BatchImportResult(total=len(items), parsed=parsed, skipped=len(items) - parsed, items=items)

    def infer_fields_from_text(self, raw_text: str) -> Optional[Dict[str, Any]]:
        """
        Heuristic-only field guesses (no learned entries, no defaults).

        Returns:
            Dict of the fields found, or None if nothing was found
        """
        if not raw_text or not raw_text.strip():
            return None

        inferred: Dict[str, Any] = {}
        for field_name, candidates in extractors.extract_candidates(raw_text).items():
            best = select_best_candidate(candidates)
            if best is not None:
                inferred[field_name] = best[0].value

        if 'vendor' not in inferred:
            vendor = extract_vendor_name(raw_text)
            if vendor:
                inferred['vendor'] = vendor

        txn_type = self.inferencer.infer_type(raw_text)
        if txn_type is not None:
            inferred['type'] = txn_type

        if 'vendor' in inferred:
            category = self.inferencer.find_category_for_vendor(inferred['vendor'], txn_type)
            inferred.update(category)

        return inferred or None

    # Learning

    def _positioned(self, values: List[str], tokens: List[str]) -> List[PositionedToken]:
        positioned = []
        for value in values:
            token = value.strip().lower()
            if not token:
                continue
            position = tokens.index(token) if token in tokens else -1
            positioned.append(PositionedToken(
                token=token,
                position=position,
                context_before=tokens[max(0, position - extractors.CONTEXT_WINDOW):position] if position >= 0 else None,
                context_after=tokens[position + 1:position + 1 + extractors.CONTEXT_WINDOW] if position >= 0 else None,
            ))
        return positioned

    def build_field_token_map(
        self,
        raw_text: str,
        confirmed: ConfirmedTransaction
    ) -> Dict[str, List[PositionedToken]]:
        """Tokens that carried each confirmed field. Fields without tokens are omitted."""
        tokens = extractors.tokenize(raw_text)

        amount_tokens = extractors.extract_amount_tokens(raw_text)
        if confirmed.amount is not None:
            exact = [t for t in amount_tokens if extractors.amount_equals(t.token, confirmed.amount)]
            amount_tokens = exact or amount_tokens

        if confirmed.vendor:
            vendor_tokens = [
                t for t in self._positioned(extractors.tokenize(confirmed.vendor), tokens)
                if t.position >= 0
            ]
        else:
            vendor_tokens = []
        vendor_tokens = vendor_tokens or extractors.extract_vendor_tokens(raw_text)

        field_token_map = {
            'amount': amount_tokens,
            'currency': extractors.extract_currency_tokens(raw_text),
            'vendor': vendor_tokens,
            'account': extractors.extract_account_tokens(raw_text),
            'date': extractors.to_positioned_tokens(extractors.extract_date_candidates(raw_text), tokens),
        }
        return {name: found for name, found in field_token_map.items() if found}

    def learn(
        self,
        raw_text: str,
        confirmed: ConfirmedTransaction,
        sender_hint: Optional[str] = None,
        field_token_map_override: Optional[Dict[str, List[str]]] = None
    ) -> Optional[LearnedEntry]:
        """
        Remember which tokens of a confirmed message carried which field.

        Updates the learned entries, the token map, the template bank and the
        vendor fallback store.
        """
        config = self.config_store.get()
        if not config.enabled or not raw_text or not raw_text.strip():
            return None

        tokens = extractors.tokenize(raw_text)
        if field_token_map_override is not None:
            field_token_map = {
                name: self._positioned(values, tokens)
                for name, values in field_token_map_override.items()
            }
            field_token_map = {name: found for name, found in field_token_map.items() if found}
        else:
            field_token_map = self.build_field_token_map(raw_text, confirmed)

        _, template_id = fingerprint(raw_text)
        timestamp = now_iso()
        entry = LearnedEntry(
            id=uuid.uuid4().hex,
            template_id=template_id,
            field_token_map=field_token_map,
            confirmed_fields=confirmed.model_dump(mode='json', exclude_none=True),
            sender_hint=sender_hint or None,
            raw_message_sample=raw_text,
            created_at=timestamp,
            last_used_at=timestamp,
        )
        entry = self.entries.register(entry, config.max_entries)

        self.templates.save_template(raw_text, list(field_token_map.keys()), raw_sample=raw_text)

        for field_name, positioned in field_token_map.items():
            for token in positioned:
                category = confirmed.category if field_name == 'vendor' else None
                subcategory = confirmed.subcategory if field_name == 'vendor' else None
                self.master_mind.register_token_with_position(
                    token.token,
                    field_name,
                    token.position,
                    context={'before': token.context_before or [], 'after': token.context_after or []},
                    category=category,
                    subcategory=subcategory,
                )

        if confirmed.vendor and confirmed.category and confirmed.type:
            self.vendors.learn(confirmed.vendor, confirmed.type, confirmed.category, confirmed.subcategory or '')

        logger.info("Learned from confirmed transaction", extra={
            "entry_id": entry.id,
            "template_id": template_id[:12],
            "fields": list(field_token_map.keys())
        })
        return entry

    def _accepted_unchanged(self, entry: LearnedEntry, confirmed: ConfirmedTransaction) -> bool:
        submitted = confirmed.model_dump(mode='json', exclude_none=True)
        for name in ACCEPTANCE_FIELDS:
            if name in entry.confirmed_fields and name in submitted:
                if str(entry.confirmed_fields[name]).strip().lower() != str(submitted[name]).strip().lower():
                    return False
        return True

    def confirm(
        self,
        raw_text: str,
        confirmed: ConfirmedTransaction,
        sender_hint: Optional[str] = None
    ) -> None:
        """
        User accepted (possibly corrected) a draft.

        A matched learned entry accepted unchanged counts as a template success;
        a corrected one as a fallback. Learning runs when `save_automatically` is on.
        """
        if not raw_text or not raw_text.strip():
            return

        match = self.find_best_match(raw_text, sender_hint)
        if match.matched:
            _, template_id = fingerprint(raw_text)
            if self._accepted_unchanged(match.entry, confirmed):
                self.templates.record_success(template_id)
            else:
                self.templates.record_fallback(template_id)

        if self.config_store.get().save_automatically:
            self.learn(raw_text, confirmed, sender_hint)

    def batch_learn(self, transactions: List[ImportedTransaction]) -> LearningResult:
        return batch_learn_from_transactions(transactions, self.vendors, self.keywords)

    # Pass-throughs

    def tokenize(self, raw_text: str) -> List[str]:
        return extractors.tokenize(raw_text)

    def extract_amount_tokens(self, raw_text: str) -> List[PositionedToken]:
        return extractors.extract_amount_tokens(raw_text)

    def extract_currency_tokens(self, raw_text: str) -> List[PositionedToken]:
        return extractors.extract_currency_tokens(raw_text)

    def extract_vendor_tokens(self, raw_text: str) -> List[PositionedToken]:
        return extractors.extract_vendor_tokens(raw_text)

    def extract_account_tokens(self, raw_text: str) -> List[PositionedToken]:
        return extractors.extract_account_tokens(raw_text)

    def extract_date_candidates(self, raw_text: str) -> List[str]:
        return [candidate.value for candidate in extractors.extract_date_candidates(raw_text)]
