"""
Pydantic models for parsed transactions.
"""

from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from enum import Enum


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Provenance(str, Enum):
    """Which resolution tier produced a field value."""
    RULE = "rule"
    LEARNED = "learned"
    EXTRACTED = "extracted"
    INFERRED = "inferred"
    DEFAULT = "default"


class PositionedToken(BaseModel):
    """A token plus its index in `tokenize(text)`."""
    token: str
    position: int
    context_before: Optional[List[str]] = None
    context_after: Optional[List[str]] = None


class TransactionDraft(BaseModel):
    """Fully populated transaction proposed to the user."""
    amount: Decimal = Decimal('0')
    currency: str
    vendor: str
    date: str  # YYYY-MM-DDTHH:MM:SS.000Z
    type: TransactionType = TransactionType.EXPENSE
    category: str
    subcategory: str
    description: str = ""


class ConfirmedTransaction(BaseModel):
    """Transaction as confirmed (or corrected) by the user."""
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    vendor: Optional[str] = None
    account: Optional[str] = None
    date: Optional[str] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    person: Optional[str] = None
