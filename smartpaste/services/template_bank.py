"""
Template bank: structural fingerprints of messages and their usage counters.

Two messages that differ only in amounts, dates, currencies or the vendor name
share a structure, and therefore a template id (sha256 of the structure).
Templates are never deleted automatically; stale ones are only reported.
"""

import hashlib
import logging
import re
import unicodedata
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from smartpaste.config import settings
from smartpaste.models.learning import (
    FieldStat,
    SmartPasteTemplate,
    TemplateConfidence,
    TemplateMeta,
    TemplateStats,
    TemplateStatus,
    TemplateUsage,
)
from smartpaste.services.extractors import (
    extract_currency_candidates,
    extract_date_candidates,
    extract_vendor_candidates,
)
from smartpaste.utils.dates import now_iso, parse_iso, utc_now
from smartpaste.utils.scoring import safe_ratio, select_best_candidate
from smartpaste.utils.storage import JsonBackedStore
from smartpaste.utils.text import fold_digits, normalize_punctuation

logger = logging.getLogger(__name__)

TEMPLATE_BANK_KEY = 'xpensia_structure_templates'

VENDOR_PLACEHOLDER = '{{vendor}}'
DATE_PLACEHOLDER = '{{date}}'
CURRENCY_PLACEHOLDER = '{{currency}}'
AMOUNT_PLACEHOLDER = '{{amount}}'

_DIGIT_RUN = re.compile(r'\d+(?:[.,]\d+)*')

# Confidence thresholds (score is 0-100)
MIN_USAGE_FOR_EVALUATION = 3
READY_SCORE = 80
READY_MIN_USAGE = 5
LEARNING_SCORE = 50
RECENT_FAILURE_DAYS = 7
MAX_RECENCY_PENALTY = 10

STATS_RANGES = {'7d': 7, '30d': 30, '90d': 90}
MOST_USED_LIMIT = 10
TOP_FIELDS_LIMIT = 10


def normalize_message(message: str) -> str:
    """NFKD, ASCII punctuation, folded digits, collapsed whitespace."""
    text = unicodedata.normalize('NFKD', message or '')
    return normalize_punctuation(fold_digits(text))


def _placeholder_spans(text: str, vendor: Optional[str]) -> List[Tuple[int, int, str]]:
    spans: List[Tuple[int, int, str]] = []

    if vendor:
        for match in re.finditer(re.escape(vendor.strip()), text, re.IGNORECASE):
            spans.append((match.start(), match.end(), VENDOR_PLACEHOLDER))
    else:
        best = select_best_candidate(extract_vendor_candidates(text))
        if best is not None:
            start, end = best[0].match_span
            spans.append((start, end, VENDOR_PLACEHOLDER))

    spans.extend((*c.match_span, DATE_PLACEHOLDER) for c in extract_date_candidates(text))
    spans.extend((*c.match_span, CURRENCY_PLACEHOLDER) for c in extract_currency_candidates(text))
    return spans


def build_structure(message: str, vendor: Optional[str] = None) -> str:
    """
    Replace the variable parts of a message with placeholders.

    Vendor spans win over dates, dates over currencies; overlapping later spans
    are dropped. Remaining digit runs become {{amount}}.
    """
    text = normalize_message(message)

    accepted: List[Tuple[int, int, str]] = []
    for start, end, placeholder in _placeholder_spans(text, vendor):
        if start >= end:
            continue
        if any(start < a_end and a_start < end for a_start, a_end, _ in accepted):
            continue
        accepted.append((start, end, placeholder))

    for start, end, placeholder in sorted(accepted, reverse=True):
        text = text[:start] + placeholder + text[end:]

    return _DIGIT_RUN.sub(AMOUNT_PLACEHOLDER, text)


def fingerprint(message: str, vendor: Optional[str] = None) -> Tuple[str, str]:
    """
    Returns:
        (structure, template id)
    """
    structure = build_structure(message, vendor)
    template_id = hashlib.sha256(structure.encode('utf-8')).hexdigest()
    return structure, template_id


def _days_since(timestamp: Optional[str], now: datetime) -> Optional[float]:
    parsed = parse_iso(timestamp)
    if parsed is None:
        return None
    return (now - parsed).total_seconds() / 86400


def compute_template_confidence(
    template: SmartPasteTemplate,
    now: Optional[datetime] = None
) -> TemplateConfidence:
    """
    Score a template 0-100 from its success/fallback history.

    - fewer than 3 uses: 50, candidate
    - no recorded outcome yet: 50, candidate
    - otherwise success rate, minus up to 10 points for a failure in the last week
    - ready: score >= 80 with at least 5 uses; learning: >= 50; else deprecated
    """
    now = now or utc_now()
    meta = template.meta

    if meta.usage_count < MIN_USAGE_FOR_EVALUATION:
        remaining = MIN_USAGE_FOR_EVALUATION - meta.usage_count
        return TemplateConfidence(
            score=50,
            status=TemplateStatus.CANDIDATE,
            recommendation=f"Needs {remaining} more uses to evaluate"
        )

    outcomes = meta.success_count + meta.fallback_count
    if outcomes == 0:
        return TemplateConfidence(
            score=50,
            status=TemplateStatus.CANDIDATE,
            recommendation="No confirmed or failed parses recorded yet"
        )

    score = safe_ratio(meta.success_count, outcomes) * 100

    days = _days_since(meta.last_failure_at, now)
    if days is not None and days < RECENT_FAILURE_DAYS:
        score -= max(0.0, MAX_RECENCY_PENALTY - days)

    score = round(max(0.0, min(100.0, score)), 2)

    if score >= READY_SCORE and meta.usage_count >= READY_MIN_USAGE:
        return TemplateConfidence(
            score=score,
            status=TemplateStatus.READY,
            recommendation="Template is reliable and ready for auto-apply"
        )
    if score >= LEARNING_SCORE:
        return TemplateConfidence(
            score=score,
            status=TemplateStatus.LEARNING,
            recommendation="Template needs more successful uses or manual review"
        )
    return TemplateConfidence(
        score=score,
        status=TemplateStatus.DEPRECATED,
        recommendation="Template has too many failures, consider retraining"
    )


class TemplateBank(JsonBackedStore):
    """Persisted template id → SmartPasteTemplate map."""

    storage_key = TEMPLATE_BANK_KEY

    def _empty(self) -> Dict[str, SmartPasteTemplate]:
        return {}

    def _decode(self, raw: Any) -> Dict[str, SmartPasteTemplate]:
        if not isinstance(raw, dict):
            raise TypeError(f"Template bank must be an object, got {type(raw).__name__}")
        return {template_id: SmartPasteTemplate(**data) for template_id, data in raw.items()}

    def _encode(self) -> Dict[str, Any]:
        return {template_id: t.model_dump(mode='json') for template_id, t in self.data.items()}

    def all(self) -> List[SmartPasteTemplate]:
        return list(self.data.values())

    def get(self, template_id: str) -> Optional[SmartPasteTemplate]:
        return self.data.get(template_id)

    def _get_or_create(self, message: str, vendor: Optional[str] = None) -> SmartPasteTemplate:
        structure, template_id = fingerprint(message, vendor)
        template = self.data.get(template_id)
        if template is None:
            template = SmartPasteTemplate(
                id=template_id,
                structure=structure,
                raw_sample=message,
                meta=TemplateMeta(created_at=now_iso()),
            )
            self.data[template_id] = template
            logger.debug("New template", extra={"template_id": template_id[:12]})
        return template

    def record_usage(self, message: str, vendor: Optional[str] = None) -> SmartPasteTemplate:
        """Count one parse of a message with this structure (creates the template)."""
        template = self._get_or_create(message, vendor)
        template.meta.usage_count += 1
        template.meta.last_used_at = now_iso()
        self.save()
        return template

    def save_template(
        self,
        message: str,
        fields: List[str],
        raw_sample: Optional[str] = None,
        vendor: Optional[str] = None
    ) -> SmartPasteTemplate:
        """Create a template or merge new field names into it. Counters are untouched."""
        template = self._get_or_create(message, vendor)
        for name in fields:
            if name not in template.fields:
                template.fields.append(name)
        if raw_sample:
            template.raw_sample = raw_sample
        self.save()
        return template

    def record_success(self, template_id: str) -> bool:
        template = self.data.get(template_id)
        if template is None:
            return False
        template.meta.success_count += 1
        self.save()
        return True

    def record_fallback(self, template_id: str) -> bool:
        template = self.data.get(template_id)
        if template is None:
            return False
        template.meta.fallback_count += 1
        template.meta.last_failure_at = now_iso()
        self.save()
        return True

    def delete(self, template_id: str) -> bool:
        if template_id not in self.data:
            return False
        del self.data[template_id]
        self.save()
        logger.info("Template deleted", extra={"template_id": template_id[:12]})
        return True

    def _is_stale(self, template: SmartPasteTemplate, cutoff: datetime) -> bool:
        last_used = parse_iso(template.meta.last_used_at)
        return last_used is None or last_used < cutoff

    def get_stale_templates(
        self,
        days: int = settings.STALE_TEMPLATE_DAYS,
        now: Optional[datetime] = None
    ) -> List[SmartPasteTemplate]:
        """Templates not used within `days` (never used counts as stale)."""
        cutoff = (now or utc_now()) - timedelta(days=days)
        return [t for t in self.data.values() if self._is_stale(t, cutoff)]

    def most_used(
        self,
        limit: int = MOST_USED_LIMIT,
        stale_days: int = settings.STALE_TEMPLATE_DAYS,
        now: Optional[datetime] = None
    ) -> List[SmartPasteTemplate]:
        cutoff = (now or utc_now()) - timedelta(days=stale_days)
        active = [t for t in self.data.values() if not self._is_stale(t, cutoff)]
        return sorted(active, key=lambda t: t.meta.usage_count, reverse=True)[:limit]

    def stats(
        self,
        range_key: str = '30d',
        stale_days: int = settings.STALE_TEMPLATE_DAYS,
        now: Optional[datetime] = None
    ) -> TemplateStats:
        """
        Health report over non-stale templates.

        Templates used (or created) inside the range are reported; when none
        are, all non-stale templates are. Percentages are 0-100.
        """
        now = now or utc_now()
        stale_cutoff = now - timedelta(days=stale_days)
        stale = [t for t in self.data.values() if self._is_stale(t, stale_cutoff)]
        active = [t for t in self.data.values() if not self._is_stale(t, stale_cutoff)]

        since = now - timedelta(days=STATS_RANGES.get(range_key, 30))
        in_range = [
            t for t in active
            if (parse_iso(t.meta.last_used_at or t.meta.created_at) or datetime.min) >= since
        ]
        scoped = in_range or active

        total = len(scoped)
        total_success = sum(t.meta.success_count for t in scoped)
        total_fallback = sum(t.meta.fallback_count for t in scoped)
        total_usage = sum(t.meta.usage_count for t in scoped)
        outcomes = total_success + total_fallback

        field_counts: Counter = Counter()
        field_usage: Counter = Counter()
        for template in scoped:
            for name in template.fields:
                field_counts[name] += 1
                field_usage[name] += template.meta.usage_count

        top_fields = [
            FieldStat(
                field_name=name,
                count=count,
                coverage=round(safe_ratio(count, total) * 100, 2),
                avg_usage=round(safe_ratio(field_usage[name], count), 2),
            )
            for name, count in field_counts.most_common(TOP_FIELDS_LIMIT)
        ]

        most_used = sorted(scoped, key=lambda t: t.meta.usage_count, reverse=True)[:MOST_USED_LIMIT]
        breakdown: Counter = Counter(
            compute_template_confidence(t, now).status.value for t in scoped
        )
        created = [t.meta.created_at for t in scoped if t.meta.created_at]

        return TemplateStats(
            total_templates=total,
            average_fields=round(safe_ratio(sum(len(t.fields) for t in scoped), total), 2),
            average_usage=round(safe_ratio(total_usage, total), 2),
            ready_templates=sum(1 for t in scoped if t.meta.success_count > 0),
            total_success=total_success,
            total_fallback=total_fallback,
            efficiency=round(safe_ratio(total_success, outcomes) * 100, 2),
            fallback_rate=round(safe_ratio(total_fallback, outcomes) * 100, 2),
            learning_coverage=round(safe_ratio(sum(1 for t in scoped if t.fields), total) * 100, 2),
            stale_count=len(stale),
            most_used=[
                TemplateUsage(id=t.id, name=t.structure[:60], count=t.meta.usage_count)
                for t in most_used
            ],
            newest_created_at=max(created) if created else None,
            top_fields=top_fields,
            status_breakdown=dict(breakdown),
        )
