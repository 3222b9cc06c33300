"""
Text normalization helpers shared by the filter, extractors and template bank.
"""

import re
import unicodedata

_DIGIT_TABLE = str.maketrans({
    **{chr(0x0660 + i): str(i) for i in range(10)},  # Arabic-Indic
    **{chr(0x06F0 + i): str(i) for i in range(10)},  # Extended (Persian)
    '٫': '.',  # Arabic decimal separator
    '٬': ',',  # Arabic thousands separator
})

_SMART_PUNCTUATION = [
    (re.compile(r'[‘’]'), "'"),
    (re.compile(r'[“”]'), '"'),
    (re.compile(r'[–—]'), '-'),
]

_ZERO_WIDTH = re.compile(r'[​-‍﻿]')


def fold_digits(text: str) -> str:
    """Replace Arabic-Indic digits and separators with their ASCII forms."""
    return text.translate(_DIGIT_TABLE)


def compact_lower(text) -> str:
    """NFC, drop all whitespace, lower-case. Non-strings become ''."""
    if not isinstance(text, str):
        return ''
    return re.sub(r'\s+', '', unicodedata.normalize('NFC', text)).strip().lower()


def soft_normalize(text: str) -> str:
    """NFC, strip zero-width characters, lower-case (vendor name matching)."""
    return _ZERO_WIDTH.sub('', unicodedata.normalize('NFC', text)).strip().lower()


def normalize_punctuation(text: str) -> str:
    """Map smart quotes and dashes to ASCII and collapse whitespace."""
    for pattern, replacement in _SMART_PUNCTUATION:
        text = pattern.sub(replacement, text)
    return re.sub(r'\s+', ' ', text).strip()
