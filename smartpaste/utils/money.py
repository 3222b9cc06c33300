"""
Shared money parsing utilities with multi-locale support.

Handles the number shapes that show up in bank SMS:
- US / Gulf: 1,234.56
- European: 1.234,56 or 1 234,56
- Arabic-Indic digits: ١٬٢٣٤٫٥٦
- Missing decimals: 1234 → 1234
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional
import re

from .text import fold_digits

# Upper bound for a single SMS transaction amount
MAX_AMOUNT = Decimal('100000000')


class MoneyFormat(Enum):
    """Separator layout detected in an amount string."""
    US = "US"  # 1,234.56
    EUROPEAN = "EUROPEAN"  # 1.234,56 or 1 234,56


def parse_money(amount_str: str) -> Optional[Decimal]:
    """
    Parse money string with multi-locale support.

    The separator layout is auto-detected. Negative amounts are rejected since
    a message amount is always reported unsigned.

    Args:
        amount_str: String containing amount (e.g., "SAR 1,234.56", "1.234,56 EUR")

    Returns:
        Decimal amount or None if parsing fails

    Examples:
        >>> parse_money("SAR 1,234.56")
        Decimal('1234.56')
        >>> parse_money("1.234,56")
        Decimal('1234.56')
        >>> parse_money("-12.34") is None
        True
    """
    if not amount_str or not isinstance(amount_str, str):
        return None

    cleaned = fold_digits(amount_str).strip()

    if cleaned.startswith('-'):
        return None

    # Strip currency symbols, ISO codes and Arabic currency words
    currency_pattern = r'[$£€¥]\s*|[A-Z]{3}\s*|ر\.?\s?س\.?|ريال|جنيه|درهم|دينار'
    cleaned = re.sub(currency_pattern, '', cleaned, flags=re.IGNORECASE)
    cleaned = cleaned.strip()

    if not cleaned or not re.fullmatch(r'[\d.,\s]+', cleaned):
        return None

    try:
        if _detect_money_format(cleaned) == MoneyFormat.EUROPEAN:
            result = _parse_european_format(cleaned)
        else:
            result = _parse_us_format(cleaned)

        if result is None or result > MAX_AMOUNT:
            return None

        return result

    except (InvalidOperation, ValueError, AttributeError):
        return None


def _detect_money_format(amount_str: str) -> MoneyFormat:
    """
    Auto-detect money format based on separator patterns.

    Heuristics:
    - If ends with ,XX (comma + 2 digits), assume European
    - If contains space as thousands separator, assume European
    - Otherwise assume US
    """
    if re.search(r',\d{2}$', amount_str):
        return MoneyFormat.EUROPEAN

    if ' ' in amount_str and '.' not in amount_str:
        return MoneyFormat.EUROPEAN

    if '.' in amount_str and ',' in amount_str:
        if amount_str.index('.') < amount_str.rindex(','):
            return MoneyFormat.EUROPEAN

    return MoneyFormat.US


def _parse_us_format(amount_str: str) -> Optional[Decimal]:
    """
    Parse US format: 1,234.56

    - Comma as thousands separator
    - Dot as decimal separator
    """
    cleaned = amount_str.replace(',', '').replace(' ', '')

    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None


def _parse_european_format(amount_str: str) -> Optional[Decimal]:
    """
    Parse European format: 1.234,56 or 1 234,56

    - Dot or space as thousands separator
    - Comma as decimal separator
    """
    cleaned = amount_str.replace('.', '').replace(' ', '')
    cleaned = cleaned.replace(',', '.')

    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None
