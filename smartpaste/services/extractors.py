"""
Tokenizer and field extractors for bank SMS / pasted transaction text.

Extraction is data-driven: every heuristic is an ExtractionRule in RULES, and
one evaluator runs them all. Each rule captures the field value in a named
group `value`; the evaluator parses the value, maps its character span onto
token positions and emits a scored-later candidate. Conflicting candidates are
not resolved here (see utils/scoring.py).
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from smartpaste.models.transaction import PositionedToken
from smartpaste.utils.candidates import (
    Candidate,
    AmountCandidate,
    CurrencyCandidate,
    VendorCandidate,
    AccountCandidate,
    DateCandidate,
    create_amount_candidate,
    create_currency_candidate,
    create_vendor_candidate,
    create_account_candidate,
    create_date_candidate,
)
from smartpaste.utils.dates import normalize_date, to_iso_timestamp
from smartpaste.utils.money import parse_money
from smartpaste.utils.text import fold_digits

logger = logging.getLogger(__name__)

CURRENCY_CODES = ('SAR', 'USD', 'EGP', 'AED', 'BHD', 'EUR', 'GBP', 'JPY', 'INR', 'CNY', 'CAD', 'AUD')

# Arabic currency words and symbols → ISO code
CURRENCY_ALIASES = {
    'ر.س': 'SAR',
    'رس': 'SAR',
    'ريال': 'SAR',
    'جنيه': 'EGP',
    'درهم': 'AED',
    '$': 'USD',
    '€': 'EUR',
    '£': 'GBP',
}

CONTEXT_WINDOW = 2

_CODE_ALT = '|'.join(CURRENCY_CODES)
_CURRENCY_WORD = r'(?:(?<![^\W\d_])ر\.?\s?س(?![^\W\d_])\.?|ريال|جنيه|درهم)'
_CURRENCY = rf'(?:(?<![A-Za-z])(?:{_CODE_ALT})(?![A-Za-z])|{_CURRENCY_WORD}|[$€£])'
_NUMBER = r'\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?'
_MONTHS = r'(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*'

# Tokens: masked accounts, grouped numbers, numbers/dates/times, words, symbols
_TOKEN_PATTERN = re.compile(
    r"[*]{2,}\d+"
    r"|\d{1,3}(?:,\d{3})+(?:\.\d+)?"
    r"|\d+(?:[.:/\-]\d+)*"
    r"|[^\W\d_]+(?:'[^\W\d_]+)*"
    r"|[$€£¥@]"
)

_TIME_PATTERN = re.compile(r'(?<!\d)\d{1,2}:\d{2}(?::\d{2})?(?!\d)')


class PositionStrategy(str, Enum):
    """Which tokens of a matched value become PositionedTokens."""
    FIRST = "first"  # the first token only
    SPAN = "span"  # every token of the value


@dataclass(frozen=True)
class ExtractionRule:
    """A named extraction regex. The value is always the `value` group."""
    field: str
    name: str
    pattern: str
    example: str
    position_strategy: PositionStrategy = PositionStrategy.FIRST
    priority: int = 10  # Lower is better
    flags: int = re.IGNORECASE
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))


_VENDOR_VALUE = r'(?P<value>(?:[^\n,،؛;:.\-]|(?<=[^\W\d_])[.\-](?=[^\W\d_]))+)'
_LETTER_BOUNDARY = r'(?<![^\W\d_])'

RULES: List[ExtractionRule] = [
    # Amounts
    ExtractionRule(
        field='amount',
        name='currency_before',
        pattern=rf'{_CURRENCY}\s*(?P<value>{_NUMBER})(?![\d/:\-])',
        example='SAR 1,234.50',
        priority=1,
    ),
    ExtractionRule(
        field='amount',
        name='currency_after',
        pattern=rf'(?<![\d.,/:\-])(?P<value>{_NUMBER})\s*{_CURRENCY}',
        example='50 SAR / ٥٠ ريال',
        priority=1,
    ),
    ExtractionRule(
        field='amount',
        name='keyword_anchor',
        pattern=rf'(?:amount|amt|total|spent|paid|purchase|withdrawal|deposit|مبلغ|بمبلغ|قيمة)\s*(?:of|:)?\s*(?P<value>{_NUMBER})(?![\d/:\-])',
        example='Amount: 75.00',
        priority=2,
    ),
    ExtractionRule(
        field='amount',
        name='bare_number',
        pattern=rf'(?<![\d.,/:\-*])(?P<value>{_NUMBER})(?![\d/:\-]|[.,]\d)',
        example='75.00',
        priority=5,
    ),

    # Currencies
    ExtractionRule(
        field='currency',
        name='iso_code',
        pattern=rf'(?<![A-Za-z])(?P<value>{_CODE_ALT})(?![A-Za-z])',
        example='SAR',
        priority=1,
    ),
    ExtractionRule(
        field='currency',
        name='arabic_word',
        pattern=rf'(?P<value>{_CURRENCY_WORD})',
        example='ريال',
        priority=2,
    ),
    ExtractionRule(
        field='currency',
        name='symbol',
        pattern=r'(?P<value>[$€£])',
        example='$',
        priority=3,
    ),

    # Vendors
    ExtractionRule(
        field='vendor',
        name='explicit_merchant',
        pattern=rf'{_LETTER_BOUNDARY}(?:paid to|purchased from|merchant|تم الدفع لـ|تم الشراء من|لدى)[:\s]+{_VENDOR_VALUE}',
        example='Paid to Jarir Bookstore',
        position_strategy=PositionStrategy.SPAN,
        priority=1,
    ),
    ExtractionRule(
        field='vendor',
        name='at_anchor',
        pattern=rf'(?:{_LETTER_BOUNDARY}(?:at|عند|من عند)[:\s]+|@\s*){_VENDOR_VALUE}',
        example='at Starbucks',
        position_strategy=PositionStrategy.SPAN,
        priority=2,
    ),
    ExtractionRule(
        field='vendor',
        name='from_anchor',
        pattern=rf'{_LETTER_BOUNDARY}(?:from|sent to|transferred to|من|في)[:\s]+{_VENDOR_VALUE}',
        example='from Ahmed Ali',
        position_strategy=PositionStrategy.SPAN,
        priority=3,
    ),

    # Accounts
    ExtractionRule(
        field='account',
        name='masked_number',
        pattern=r'[*xX•]{2,}(?P<value>\d{3,6})(?!\d)',
        example='**1234',
        priority=1,
    ),
    ExtractionRule(
        field='account',
        name='account_anchor',
        pattern=r'(?:account|acct|a/c|card|حساب|حسابك|بطاقة|بطاقتك)\s*(?:no\.?|number|ending(?:\s+(?:in|with))?|رقم|المنتهية\s*ب?)?\s*[:#]?\s*[*xX•]*(?P<value>\d{3,})(?!\d)',
        example='card ending 4321',
        priority=2,
    ),

    # Dates
    ExtractionRule(
        field='date',
        name='iso_date',
        pattern=r'(?<!\d)(?P<value>\d{4}[-/.]\d{1,2}[-/.]\d{1,2}(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?)(?!\d)',
        example='2024-05-01 14:30',
        priority=1,
    ),
    ExtractionRule(
        field='date',
        name='numeric_date',
        pattern=r'(?<![\d.])(?P<value>\d{1,2}[-/.]\d{1,2}[-/.](?:\d{4}|\d{2})(?:\s+\d{1,2}:\d{2})?)(?!\d)',
        example='01/05/24 10:15',
        priority=2,
    ),
    ExtractionRule(
        field='date',
        name='day_month_name',
        pattern=rf'(?<!\d)(?P<value>\d{{1,2}}[- ]{_MONTHS}[-, ]*\d{{2,4}}(?:\s+\d{{1,2}}:\d{{2}})?)(?!\d)',
        example='01-May-24',
        priority=2,
    ),
    ExtractionRule(
        field='date',
        name='month_name_day',
        pattern=rf'(?<![^\W\d_])(?P<value>{_MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}})(?!\d)',
        example='May 1, 2024',
        priority=2,
    ),
    ExtractionRule(
        field='date',
        name='compact_date',
        pattern=r'(?<![\d.,*])(?P<value>\d{8}|\d{2}[01]\d{3})(?![\d.,])',
        example='20240501',
        priority=5,
    ),
]

# Dates from these rules cover their digits; compact dates are too weak to
# hide a number from the amount rules
_STRONG_DATE_PRIORITY = 2

# Connectors after which a vendor span stops ("Starbucks on 2024-05-01")
_VENDOR_TAIL = re.compile(
    r'\s+(?:on|via|using|with|ref|reference|for|بتاريخ|يوم|في|رقم|بواسطة)(?![^\W\d_]).*$',
    re.IGNORECASE
)
# Account anchors end a vendor span only when account digits or a marker follow
# ("Jarir Bookstore card **1234"), so "Gift Card Shop" survives
_VENDOR_ACCOUNT_TAIL = re.compile(
    r'\s+(?:card|account|acct|a/c|حساب|حسابك|بطاقة|بطاقتك)\s*'
    r'(?:(?:no|number|ending|رقم|المنتهية)(?![^\W\d_])|[*•#:]|[xX]{2,}|\d).*$',
    re.IGNORECASE
)
_VENDOR_TRAILING_NUMBERS = re.compile(r'(?:\s+(?:\d{4,}|\d+[/.\-:]\d+\S*|[*xX]{2,}\d+))+$')
_VENDOR_TRAILING_MONEY = re.compile(rf'\s+{_CURRENCY}\s*[\d.,]*$', re.IGNORECASE)
_VENDOR_STOP_PREFIXES = (
    'your', 'account', 'acct', 'card', 'the account',
    'حساب', 'حسابك', 'بطاقة', 'بطاقتك', 'تاريخ', 'الساعة',
)
MAX_VENDOR_LENGTH = 60


def _scan_tokens(text: str) -> List[Tuple[str, int, int]]:
    """Tokens with their (start, end) character spans in `text`."""
    folded = fold_digits(text)
    scanned = []
    for match in _TOKEN_PATTERN.finditer(folded):
        raw = match.group(0)
        if raw.startswith('*'):
            token = raw.lstrip('*')
        elif raw[0].isdigit():
            token = raw.replace(',', '')
        else:
            token = raw.lower()
        scanned.append((token, match.start(), match.end()))
    return scanned


def tokenize(text: str) -> List[str]:
    """
    Split text into ordered, normalized tokens.

    - lower-cased, punctuation dropped (currency symbols and @ kept)
    - Arabic-Indic digits folded to ASCII
    - thousands commas removed from numbers ("1,234.50" → "1234.50")
    - masked account prefixes reduced to digits ("**1234" → "1234")
    - dates and times stay single tokens ("2024-05-01", "14:30")
    """
    if not text:
        return []
    return [token for token, _, _ in _scan_tokens(text)]


def clean_vendor_name(value: str) -> Optional[str]:
    """
    Strip connectors, dates, reference numbers and trailing punctuation.

    Returns:
        Cleaned vendor or None if what remains does not look like a name
    """
    vendor = re.sub(r'\s+', ' ', value).strip()
    vendor = re.sub(r'^(?:عند|لدى)\s+', '', vendor)
    vendor = _VENDOR_TAIL.sub('', vendor)
    vendor = _VENDOR_ACCOUNT_TAIL.sub('', vendor)
    vendor = _VENDOR_TRAILING_MONEY.sub('', vendor)
    vendor = _VENDOR_TRAILING_NUMBERS.sub('', vendor)
    vendor = vendor.strip(' \t.،,;:!-_*#"\'')

    if len(vendor) <= 2 or len(vendor) > MAX_VENDOR_LENGTH:
        return None
    if re.fullmatch(r'[\d\s.,/:\-*]+', vendor):
        return None
    if vendor.upper() in CURRENCY_CODES or vendor in CURRENCY_ALIASES:
        return None
    lowered = vendor.lower()
    if any(lowered == prefix or lowered.startswith(prefix + ' ') for prefix in _VENDOR_STOP_PREFIXES):
        return None

    return vendor


def _normalize_currency(value: str) -> Optional[str]:
    upper = value.upper()
    if upper in CURRENCY_CODES:
        return upper
    compact = re.sub(r'\s+', '', value)
    if compact in CURRENCY_ALIASES:
        return CURRENCY_ALIASES[compact]
    # ر.س. with a trailing dot
    return CURRENCY_ALIASES.get(compact.rstrip('.'))


def _normalize_date_value(value: str) -> Optional[str]:
    parsed = normalize_date(value)
    return to_iso_timestamp(parsed) if parsed else None


_VALUE_PARSERS: Dict[str, Callable[[str], object]] = {
    'amount': parse_money,
    'currency': _normalize_currency,
    'vendor': clean_vendor_name,
    'account': lambda value: value if value.isdigit() else None,
    'date': _normalize_date_value,
}


def _build_candidate(rule: ExtractionRule, value, span: Tuple[int, int], raw: str, text: str) -> Candidate:
    if rule.field == 'amount':
        return create_amount_candidate(value, rule.name, span, raw, rule.priority, text,
                                       has_currency=rule.name.startswith('currency'))
    if rule.field == 'currency':
        return create_currency_candidate(value, rule.name, span, raw, rule.priority,
                                         is_explicit=rule.name == 'iso_code', text=text)
    if rule.field == 'vendor':
        return create_vendor_candidate(value, rule.name, span, raw, rule.priority)
    if rule.field == 'account':
        return create_account_candidate(value, rule.name, span, raw, rule.priority)
    return create_date_candidate(value, rule.name, span, raw, rule.priority)


def _overlaps(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def _positions_for(scanned: List[Tuple[str, int, int]], span: Tuple[int, int]) -> List[int]:
    return [index for index, (_, start, end) in enumerate(scanned) if _overlaps((start, end), span)]


def _amount_exclusions(folded: str) -> List[Tuple[int, int]]:
    """Character spans that can never hold the transaction amount."""
    excluded = [
        candidate.match_span
        for candidate in run_rules('date', folded)
        if candidate.priority <= _STRONG_DATE_PRIORITY
    ]
    excluded.extend(m.span() for m in _TIME_PATTERN.finditer(folded))
    excluded.extend(candidate.match_span for candidate in run_rules('account', folded))
    return excluded


def run_rules(field_name: str, text: str) -> List[Candidate]:
    """
    Evaluate every rule for one field and return candidates in text order.

    When several rules capture the same value span (e.g. "purchased from X"
    and "from X"), only the highest-priority capture is kept.
    """
    if not text:
        return []

    folded = fold_digits(text)
    scanned = _scan_tokens(folded)
    excluded = _amount_exclusions(folded) if field_name == 'amount' else []
    parse_value = _VALUE_PARSERS[field_name]

    by_span: Dict[Tuple[int, int], Candidate] = {}
    for rule in RULES:
        if rule.field != field_name:
            continue
        for match in rule.compiled.finditer(folded):
            start, end = match.span('value')
            if any(_overlaps((start, end), span) for span in excluded):
                continue

            raw_value = match.group('value')
            value = parse_value(raw_value)
            if value is None or value == '':
                continue

            # Narrow the span to what survived cleaning
            if isinstance(value, str) and field_name == 'vendor':
                offset = raw_value.find(value)
                if offset >= 0:
                    start, end = start + offset, start + offset + len(value)

            span = (start, end)
            existing = by_span.get(span)
            if existing is not None and existing.priority <= rule.priority:
                continue

            candidate = _build_candidate(rule, value, span, match.group(0), folded)
            positions = _positions_for(scanned, span)
            if rule.position_strategy == PositionStrategy.FIRST:
                positions = positions[:1]
            candidate.positions = positions
            candidate.tokens = [scanned[p][0] for p in positions]
            by_span[span] = candidate

    return sorted(by_span.values(), key=lambda c: c.match_span[0])


def to_positioned_tokens(candidates: List[Candidate], tokens: List[str]) -> List[PositionedToken]:
    """Flatten candidates into PositionedTokens with a small context window."""
    positioned: List[PositionedToken] = []
    seen = set()
    for candidate in sorted(candidates, key=lambda c: (c.priority, c.match_span[0])):
        for position in candidate.positions:
            if position in seen:
                continue
            seen.add(position)
            positioned.append(PositionedToken(
                token=tokens[position],
                position=position,
                context_before=tokens[max(0, position - CONTEXT_WINDOW):position],
                context_after=tokens[position + 1:position + 1 + CONTEXT_WINDOW],
            ))
    return positioned


def extract_amount_candidates(text: str) -> List[AmountCandidate]:
    return run_rules('amount', text)


def extract_currency_candidates(text: str) -> List[CurrencyCandidate]:
    return run_rules('currency', text)


def extract_vendor_candidates(text: str) -> List[VendorCandidate]:
    return run_rules('vendor', text)


def extract_account_candidates(text: str) -> List[AccountCandidate]:
    return run_rules('account', text)


def extract_date_candidates(text: str) -> List[DateCandidate]:
    """Date candidates with ISO values; unparseable substrings yield nothing."""
    return run_rules('date', text)


def extract_amount_tokens(text: str) -> List[PositionedToken]:
    """Currency-adjacent and keyword-anchored numbers first, bare numbers last."""
    return to_positioned_tokens(extract_amount_candidates(text), tokenize(text))


def extract_currency_tokens(text: str) -> List[PositionedToken]:
    return to_positioned_tokens(extract_currency_candidates(text), tokenize(text))


def extract_vendor_tokens(text: str) -> List[PositionedToken]:
    return to_positioned_tokens(extract_vendor_candidates(text), tokenize(text))


def extract_account_tokens(text: str) -> List[PositionedToken]:
    return to_positioned_tokens(extract_account_candidates(text), tokenize(text))


def extract_candidates(text: str) -> Dict[str, List[Candidate]]:
    """Run every field's rules over the text."""
    candidates = {
        field_name: run_rules(field_name, text)
        for field_name in _VALUE_PARSERS
    }
    logger.debug("Extracted candidates", extra={
        "counts": {name: len(found) for name, found in candidates.items()}
    })
    return candidates


def amount_equals(token: str, amount: Decimal) -> bool:
    """True when a token parses to the given amount."""
    parsed = parse_money(token)
    return parsed is not None and parsed == amount
