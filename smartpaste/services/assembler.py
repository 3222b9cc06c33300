"""
Draft assembler: merges rule, learned, extracted and inferred values into one
fully populated TransactionDraft.

Every field is resolved by walking the same ordered list of named strategies
(rule > learned > extracted > inferred > default) and keeping the first value
found. The winning strategy is the field's provenance.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from smartpaste.config import settings
from smartpaste.models.learning import MatchResult
from smartpaste.models.transaction import Provenance, TransactionDraft, TransactionType
from smartpaste.services.extractors import CURRENCY_ALIASES, CURRENCY_CODES, extract_candidates, tokenize
from smartpaste.services.inference import (
    CategoryInferencer,
    CategorySource,
    default_category_for,
    extract_vendor_name,
)
from smartpaste.services.keyword_bank import KeywordBank
from smartpaste.services.master_mind import MasterMind
from smartpaste.utils.candidates import Candidate
from smartpaste.utils.dates import normalize_date, now_iso, to_iso_timestamp
from smartpaste.utils.money import parse_money
from smartpaste.utils.scoring import select_best_candidate, weighted_confidence

logger = logging.getLogger(__name__)

UNKNOWN_VENDOR = "Unknown Vendor"

# Resolution order: category inference needs vendor and type
FIELD_ORDER = ('amount', 'currency', 'account', 'date', 'vendor', 'type', 'category')

EXTRACTED_FIELDS = ('amount', 'currency', 'vendor', 'account', 'date')

CATEGORY_SOURCE_CONFIDENCE = {
    CategorySource.KEYWORD: 0.9,
    CategorySource.VENDOR_FALLBACK: 0.8,
    CategorySource.STATIC: 0.7,
}

RULE_CONFIDENCE = 1.0
INFERRED_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.0

# A value for a field and how sure the strategy is about it
Resolved = Tuple[Any, float]


@dataclass
class AssemblyContext:
    """Everything the strategies need for one message."""
    text: str
    tokens: List[str]
    candidates: Dict[str, List[Candidate]]
    match: MatchResult
    sender_hint: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    confidences: Dict[str, float] = field(default_factory=dict)
    provenance: Dict[str, Provenance] = field(default_factory=dict)
    rule_cache: Dict[Optional[str], Dict[str, str]] = field(default_factory=dict)

    @property
    def entry(self):
        return self.match.entry if self.match.matched else None


@dataclass
class AssembledDraft:
    draft: TransactionDraft
    account: Optional[str]
    confidence: float
    provenance: Dict[str, Provenance]
    field_confidence: Dict[str, float]


def _as_type(value) -> Optional[TransactionType]:
    try:
        return TransactionType(str(getattr(value, 'value', value)).lower())
    except ValueError:
        return None


def _as_currency(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    code = value.strip()
    if code.upper() in CURRENCY_CODES:
        return code.upper()
    return CURRENCY_ALIASES.get(code)


def _nonempty(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class DraftAssembler:
    """Resolve each draft field through the ordered strategies."""

    FIELD_WEIGHTS = {
        'amount': 0.30,
        'vendor': 0.20,
        'date': 0.15,
        'category': 0.15,
        'type': 0.10,
        'currency': 0.10,
    }

    def __init__(
        self,
        keyword_bank: KeywordBank,
        master_mind: MasterMind,
        inferencer: CategoryInferencer,
        default_currency: str = settings.DEFAULT_CURRENCY
    ):
        self.keyword_bank = keyword_bank
        self.master_mind = master_mind
        self.inferencer = inferencer
        self.default_currency = default_currency

        self.strategies: List[Tuple[Provenance, Callable[[str, AssemblyContext], Optional[Resolved]]]] = [
            (Provenance.RULE, self._from_rule),
            (Provenance.LEARNED, self._from_learned),
            (Provenance.EXTRACTED, self._from_extracted),
            (Provenance.INFERRED, self._from_inferred),
            (Provenance.DEFAULT, self._from_default),
        ]

    def assemble(self, text: str, match: MatchResult, sender_hint: Optional[str] = None) -> AssembledDraft:
        candidates = extract_candidates(text)
        self._apply_token_memory(candidates)

        ctx = AssemblyContext(
            text=text,
            tokens=tokenize(text),
            candidates=candidates,
            match=match,
            sender_hint=sender_hint,
        )

        for field_name in FIELD_ORDER:
            self._resolve(field_name, ctx)

        category, subcategory = ctx.values['category']
        draft = TransactionDraft(
            amount=ctx.values['amount'],
            currency=ctx.values['currency'],
            vendor=ctx.values['vendor'],
            date=ctx.values['date'],
            type=ctx.values['type'],
            category=category,
            subcategory=subcategory,
            description=text.strip()[:200],
        )

        provenance = dict(ctx.provenance)
        provenance['subcategory'] = provenance['category']
        if ctx.values.get('account') is None:
            provenance.pop('account', None)

        confidence = weighted_confidence(ctx.confidences, self.FIELD_WEIGHTS)

        logger.debug("Draft assembled", extra={
            "provenance": {name: tier.value for name, tier in provenance.items()},
            "confidence": confidence
        })

        return AssembledDraft(
            draft=draft,
            account=ctx.values.get('account'),
            confidence=confidence,
            provenance=provenance,
            field_confidence=dict(ctx.confidences),
        )

    def _apply_token_memory(self, candidates: Dict[str, List[Candidate]]) -> None:
        """Tag candidates with the field the token store remembers for their token."""
        for found in candidates.values():
            for candidate in found:
                if candidate.token:
                    candidate.learned_field = self.master_mind.field_for(candidate.token)

    def _resolve(self, field_name: str, ctx: AssemblyContext) -> None:
        for tier, strategy in self.strategies:
            resolved = strategy(field_name, ctx)
            if resolved is None:
                continue
            value, confidence = resolved
            ctx.values[field_name] = value
            ctx.confidences[field_name] = confidence
            ctx.provenance[field_name] = tier
            return

    def _rules_for(self, ctx: AssemblyContext, txn_type: Optional[TransactionType]) -> Dict[str, str]:
        key = txn_type.value if txn_type else None
        if key not in ctx.rule_cache:
            ctx.rule_cache[key] = self.keyword_bank.resolve_fields(ctx.text, ctx.sender_hint, key)
        return ctx.rule_cache[key]

    # Strategies. Each returns (value, confidence) or None.

    def _from_rule(self, field_name: str, ctx: AssemblyContext) -> Optional[Resolved]:
        if field_name == 'type':
            value = _as_type(self._rules_for(ctx, None).get('type'))
            return (value, RULE_CONFIDENCE) if value else None

        rules = self._rules_for(ctx, ctx.values.get('type'))
        if field_name == 'category':
            category = _nonempty(rules.get('category'))
            if not category:
                return None
            return (category, rules.get('subcategory', '')), RULE_CONFIDENCE
        if field_name == 'currency':
            value = _as_currency(rules.get('currency'))
            return (value, RULE_CONFIDENCE) if value else None
        if field_name in ('vendor', 'account'):
            value = _nonempty(rules.get(field_name))
            return (value, RULE_CONFIDENCE) if value else None
        return None

    def _learned_tokens_present(self, ctx: AssemblyContext, field_name: str) -> bool:
        """The entry's tokens for a field also occur in this message (or it has none)."""
        learned = ctx.entry.field_token_map.get(field_name) or []
        if not learned:
            return True
        present = set(ctx.tokens)
        return any(t.token in present for t in learned)

    def _token_at_learned_position(self, ctx: AssemblyContext, field_name: str, parse) -> Optional[Any]:
        for learned in ctx.entry.field_token_map.get(field_name) or []:
            if 0 <= learned.position < len(ctx.tokens):
                value = parse(ctx.tokens[learned.position])
                if value is not None:
                    return value
        return None

    def _from_learned(self, field_name: str, ctx: AssemblyContext) -> Optional[Resolved]:
        entry = ctx.entry
        if entry is None:
            return None

        confidence = min(1.0, ctx.match.confidence)
        confirmed = entry.confirmed_fields

        if field_name == 'amount':
            value = self._token_at_learned_position(ctx, 'amount', parse_money)
            return (value, confidence) if value is not None else None
        if field_name == 'date':
            parsed = self._token_at_learned_position(ctx, 'date', normalize_date)
            return (to_iso_timestamp(parsed), confidence) if parsed is not None else None
        if field_name == 'type':
            value = _as_type(confirmed.get('type'))
            return (value, confidence) if value else None
        if field_name == 'currency':
            value = _as_currency(confirmed.get('currency'))
            return (value, confidence) if value else None

        # Vendor-bound fields only carry over when the message names the same vendor
        if field_name in ('vendor', 'category', 'account'):
            token_field = 'vendor' if field_name == 'category' else field_name
            if not self._learned_tokens_present(ctx, token_field):
                return None
            if field_name == 'category':
                category = _nonempty(confirmed.get('category'))
                if not category:
                    return None
                return (category, confirmed.get('subcategory') or ''), confidence
            value = _nonempty(confirmed.get(field_name))
            return (value, confidence) if value else None
        return None

    def _from_extracted(self, field_name: str, ctx: AssemblyContext) -> Optional[Resolved]:
        if field_name not in EXTRACTED_FIELDS:
            return None
        best = select_best_candidate(ctx.candidates.get(field_name, []))
        if best is None:
            return None
        candidate, score = best
        return candidate.value, round(score, 4)

    def _from_inferred(self, field_name: str, ctx: AssemblyContext) -> Optional[Resolved]:
        if field_name == 'type':
            value = self.inferencer.infer_type(ctx.text)
            return (value, 0.7) if value else None
        if field_name == 'vendor':
            value = extract_vendor_name(ctx.text)
            return (value, INFERRED_CONFIDENCE) if value else None
        if field_name == 'currency' and ctx.provenance.get('amount') != Provenance.DEFAULT:
            return self.default_currency, INFERRED_CONFIDENCE
        if field_name == 'category':
            vendor = ctx.values.get('vendor')
            if not vendor or vendor == UNKNOWN_VENDOR:
                return None
            info, source = self.inferencer.find_category_with_source(vendor, ctx.values.get('type'))
            if source == CategorySource.DEFAULT:
                return None
            return (info['category'], info['subcategory']), CATEGORY_SOURCE_CONFIDENCE[source]
        return None

    def _from_default(self, field_name: str, ctx: AssemblyContext) -> Optional[Resolved]:
        if field_name == 'amount':
            return Decimal('0'), DEFAULT_CONFIDENCE
        if field_name == 'currency':
            return self.default_currency, DEFAULT_CONFIDENCE
        if field_name == 'vendor':
            return UNKNOWN_VENDOR, DEFAULT_CONFIDENCE
        if field_name == 'date':
            return now_iso(), DEFAULT_CONFIDENCE
        if field_name == 'type':
            return TransactionType.EXPENSE, DEFAULT_CONFIDENCE
        if field_name == 'category':
            return default_category_for(ctx.values.get('type')), DEFAULT_CONFIDENCE
        if field_name == 'account':
            return None, DEFAULT_CONFIDENCE
        return None
