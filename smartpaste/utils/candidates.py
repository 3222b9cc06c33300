"""
Candidate dataclasses for extraction scoring.

Each candidate represents a potential field value found in a message, along
with the tokens it covers and the metadata used for scoring and selection.
"""

from dataclasses import dataclass, field
import re
from decimal import Decimal
from typing import Any, List, Optional

# Words that mark an amount as something other than the transaction value
BLACKLIST_CONTEXT = [
    'balance', 'bal', 'available', 'avl', 'limit', 'outstanding',
    'رصيد', 'المتاح', 'الحد',
]

STRONG_AMOUNT_KEYWORDS = [
    'amount', 'amt', 'total', 'spent', 'paid', 'purchase', 'withdrawal', 'deposit',
    'مبلغ', 'بمبلغ', 'قيمة', 'شراء',
]


@dataclass
class Candidate:
    """Base class for extraction candidates."""
    field: str
    value: Any
    rule_name: str
    match_span: tuple[int, int]  # (start, end) character positions
    priority: int = 100  # Lower is better
    raw_text: str = ""
    positions: List[int] = field(default_factory=list)  # token indexes covered
    tokens: List[str] = field(default_factory=list)
    learned_field: Optional[str] = None  # field the token store associates with the first token

    @property
    def position(self) -> int:
        return self.positions[0] if self.positions else -1

    @property
    def token(self) -> str:
        return self.tokens[0] if self.tokens else ""


@dataclass
class AmountCandidate(Candidate):
    """
    Candidate for an extracted amount.

    Scoring factors:
    - priority: currency-adjacent < keyword-anchored < bare number
    - has_currency: a currency token sits right next to the number
    - has_strong_prefix: "amount", "spent", "مبلغ" within the preceding words
    - in_blacklist_context: preceded by "balance", "رصيد", etc. (penalty)
    """
    value: Decimal
    has_currency: bool = False
    has_strong_prefix: bool = False
    in_blacklist_context: bool = False


@dataclass
class CurrencyCandidate(Candidate):
    value: str  # ISO code
    is_explicit: bool = False  # ISO code written out, not a symbol or word
    context_count: int = 1


@dataclass
class VendorCandidate(Candidate):
    value: str
    is_title_case: bool = False
    word_count: int = 0


@dataclass
class AccountCandidate(Candidate):
    value: str  # digits only
    is_masked: bool = False


@dataclass
class DateCandidate(Candidate):
    value: str  # YYYY-MM-DDTHH:MM:SS.000Z
    has_time: bool = False


# Helper functions for creating candidates

def create_amount_candidate(
    value: Decimal,
    rule_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int,
    text: str,
    has_currency: bool = False
) -> AmountCandidate:
    """
    Create AmountCandidate with computed context flags.

    Args:
        value: Parsed amount
        rule_name: Name of the rule that matched
        match_span: Character span of the number itself
        raw_text: Original matched text
        priority: Rule priority
        text: Full text for context analysis
        has_currency: Whether the rule anchored on a currency token

    Returns:
        AmountCandidate with computed flags
    """
    start, _ = match_span
    # Blacklist terms only count when they immediately precede the number
    preceding = text[max(0, start - 25):start].lower()

    has_strong_prefix = any(kw in preceding for kw in STRONG_AMOUNT_KEYWORDS)
    in_blacklist_context = any(term in preceding for term in BLACKLIST_CONTEXT)

    return AmountCandidate(
        field='amount',
        value=value,
        rule_name=rule_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        has_currency=has_currency,
        has_strong_prefix=has_strong_prefix,
        in_blacklist_context=in_blacklist_context
    )


def create_currency_candidate(
    value: str,
    rule_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int,
    is_explicit: bool,
    text: str
) -> CurrencyCandidate:
    return CurrencyCandidate(
        field='currency',
        value=value,
        rule_name=rule_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        is_explicit=is_explicit,
        context_count=text.lower().count(raw_text.lower()) or 1
    )


def create_vendor_candidate(
    value: str,
    rule_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int
) -> VendorCandidate:
    """
    Create VendorCandidate with structural flags.

    Title case is only meaningful for Latin script; Arabic names never get the
    bonus and never get penalized for lacking it.
    """
    is_title_case = bool(value) and (value.istitle() or (value[0].isupper() and not value.isupper()))

    return VendorCandidate(
        field='vendor',
        value=value,
        rule_name=rule_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        is_title_case=is_title_case,
        word_count=len(value.split())
    )


def create_account_candidate(
    value: str,
    rule_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int
) -> AccountCandidate:
    return AccountCandidate(
        field='account',
        value=value,
        rule_name=rule_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        is_masked=bool(re.search(r'[*xX]{2,}', raw_text))
    )


def create_date_candidate(
    value: str,
    rule_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int
) -> DateCandidate:
    return DateCandidate(
        field='date',
        value=value,
        rule_name=rule_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        has_time=':' in raw_text
    )
