"""
Pydantic models for the learning stores.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from enum import Enum

from smartpaste.models.transaction import PositionedToken, TransactionType


class EngineConfig(BaseModel):
    """Persisted engine configuration (read and written as a unit)."""
    enabled: bool = True
    save_automatically: bool = True
    min_confidence_threshold: float = Field(default=0.75, ge=0.5, le=0.95)
    max_entries: int = Field(default=200, ge=1)


class EngineConfigUpdate(BaseModel):
    """Partial config update; unset fields keep their current value."""
    enabled: Optional[bool] = None
    save_automatically: Optional[bool] = None
    min_confidence_threshold: Optional[float] = Field(default=None, ge=0.5, le=0.95)
    max_entries: Optional[int] = Field(default=None, ge=1)


class LearnedEntry(BaseModel):
    """A confirmed message pattern: which tokens carried which field."""
    id: str
    template_id: str
    field_token_map: Dict[str, List[PositionedToken]]
    confirmed_fields: Dict[str, Any] = {}
    sender_hint: Optional[str] = None
    raw_message_sample: str
    created_at: str
    last_used_at: str


class MatchResult(BaseModel):
    """Best learned entry for a message and how well it matched."""
    entry: Optional[LearnedEntry] = None
    confidence: float = 0.0
    matched: bool = False
    matched_fields: int = 0
    token_overlap_count: int = 0


class TokenContext(BaseModel):
    before: List[str] = []
    after: List[str] = []


class TokenPosition(BaseModel):
    value: int
    context: Optional[TokenContext] = None


class MasterTokenEntry(BaseModel):
    """Global memory of one token: the field it signifies and how often."""
    field: str
    count: int = 1
    last_used: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    positions: List[TokenPosition] = []


class TemplateMeta(BaseModel):
    usage_count: int = 0
    success_count: int = 0
    fallback_count: int = 0
    created_at: str
    last_used_at: Optional[str] = None
    last_failure_at: Optional[str] = None


class SmartPasteTemplate(BaseModel):
    """Structural fingerprint of a message. Identity is the hash of `structure`."""
    id: str
    structure: str
    fields: List[str] = []
    raw_sample: str = ""
    meta: TemplateMeta


class TemplateStatus(str, Enum):
    CANDIDATE = "candidate"
    LEARNING = "learning"
    READY = "ready"
    DEPRECATED = "deprecated"


class TemplateConfidence(BaseModel):
    score: float  # 0-100
    status: TemplateStatus
    recommendation: str


class TemplateUsage(BaseModel):
    id: str
    name: str
    count: int


class FieldStat(BaseModel):
    field_name: str
    count: int
    coverage: float  # percent of templates that include this field
    avg_usage: float


class TemplateStats(BaseModel):
    """Health report over the template bank. Percentages are 0-100."""
    total_templates: int
    average_fields: float
    average_usage: float
    ready_templates: int
    total_success: int
    total_fallback: int
    efficiency: float
    fallback_rate: float
    learning_coverage: float
    stale_count: int
    most_used: List[TemplateUsage] = []
    newest_created_at: Optional[str] = None
    top_fields: List[FieldStat] = []
    status_breakdown: Dict[str, int] = {}


class VendorFallbackData(BaseModel):
    """Vendor → classification learned from imports or approved by the user."""
    type: TransactionType
    category: str
    subcategory: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    sample_count: int = 1
    user: bool = False
    source: Optional[str] = None
    learned_at: Optional[str] = None


class FieldMapping(BaseModel):
    field: str
    value: str


class KeywordMapping(BaseModel):
    """User-authored keyword rule; highest priority during resolution."""
    keyword: str
    mappings: List[FieldMapping] = []
    type: Optional[str] = None
    sender_context: Optional[str] = None
    transaction_type_context: Optional[str] = None
    mapping_count: int = 0
    last_updated: Optional[str] = None


class TypeKeyword(BaseModel):
    keyword: str
    type: TransactionType


class LearningResult(BaseModel):
    """Outcome of a CSV batch-learning run."""
    vendors_learned: int = 0
    keywords_learned: int = 0
    conflicts: List[str] = []


class ImportedTransaction(BaseModel):
    """One row of a CSV import, as far as batch learning needs it."""
    vendor: Optional[str] = None
    title: Optional[str] = None
    type: TransactionType
    category: str
    subcategory: Optional[str] = None
