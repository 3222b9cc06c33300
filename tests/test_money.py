"""
Tests for multi-locale money parsing.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest

from smartpaste.utils.money import parse_money


class TestParseMoney:
    """Separator layout is detected from the string itself."""

    @pytest.mark.parametrize("raw, expected", [
        ("SAR 1,234.56", Decimal('1234.56')),
        ("1.234,56", Decimal('1234.56')),
        ("1 234,56", Decimal('1234.56')),
        ("١٬٢٣٤٫٥٦", Decimal('1234.56')),
        ("ريال 75", Decimal('75')),
        ("1234", Decimal('1234')),
    ])
    def test_locales(self, raw, expected):
        assert parse_money(raw) == expected

    @pytest.mark.parametrize("raw", ["", "-12.34", "abc", "12a", "200000000"])
    def test_rejected(self, raw):
        assert parse_money(raw) is None
