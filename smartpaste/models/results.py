"""
Engine output models.
"""

from pydantic import BaseModel
from typing import Dict, List, Optional
from enum import Enum

from smartpaste.models.learning import MatchResult
from smartpaste.models.transaction import Provenance, TransactionDraft


class ParsingStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ParseResult(BaseModel):
    """Draft plus the metadata the UI shows next to it."""
    draft: TransactionDraft
    account: Optional[str] = None
    confidence: float
    parsing_status: ParsingStatus
    provenance: Dict[str, Provenance]
    match: MatchResult
    template_id: str


class ImportedMessage(BaseModel):
    index: int
    result: Optional[ParseResult] = None
    skipped: bool = False
    reason: Optional[str] = None


class BatchImportResult(BaseModel):
    total: int
    parsed: int
    skipped: int
    items: List[ImportedMessage] = []
