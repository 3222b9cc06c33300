"""
Tests for message fingerprints, template counters and template health.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import datetime, timedelta

from smartpaste.models.learning import SmartPasteTemplate, TemplateMeta, TemplateStatus
from smartpaste.services.template_bank import (
    TEMPLATE_BANK_KEY,
    TemplateBank,
    build_structure,
    compute_template_confidence,
    fingerprint,
)
from smartpaste.utils.dates import to_iso_timestamp, utc_now
from smartpaste.utils.storage import InMemoryStore

NOW = datetime(2024, 6, 1, 12, 0, 0)


def make_template(usage=0, success=0, fallback=0, last_failure=None, fields=None):
    return SmartPasteTemplate(
        id="t1",
        structure="Spent {{amount}} {{currency}} at {{vendor}}",
        fields=fields or [],
        meta=TemplateMeta(
            usage_count=usage,
            success_count=success,
            fallback_count=fallback,
            created_at=to_iso_timestamp(NOW - timedelta(days=30)),
            last_used_at=to_iso_timestamp(NOW),
            last_failure_at=to_iso_timestamp(last_failure) if last_failure else None,
        ),
    )


class TestFingerprint:
    """Messages differing only in variable parts share a template."""

    def test_structure_placeholders(self):
        structure = build_structure("Spent 50 SAR at Starbucks, on 2024-05-01")
        assert structure == "Spent {{amount}} {{currency}} at {{vendor}}, on {{date}}"

    def test_same_shape_same_id(self):
        _, first = fingerprint("Spent 50 SAR at Starbucks, on 2024-05-01")
        _, second = fingerprint("Spent 75.25 SAR at Dunkin Donuts, on 2024-06-11")
        assert first == second

    def test_different_shape_different_id(self):
        _, spent = fingerprint("Spent 50 SAR at Starbucks, on 2024-05-01")
        _, received = fingerprint("Received 50 SAR from Ahmed Ali, on 2024-05-01")
        assert spent != received

    def test_known_vendor_replaced_everywhere(self):
        structure = build_structure("Jarir: paid 20 USD at Jarir", vendor="Jarir")
        assert structure == "{{vendor}}: paid {{amount}} {{currency}} at {{vendor}}"

    def test_arabic_digits_become_amount(self):
        structure = build_structure("شراء بمبلغ ١٥٠ ريال")
        assert structure == "شراء بمبلغ {{amount}} {{currency}}"

    def test_id_is_sha256_hex(self):
        _, template_id = fingerprint("Spent 50 SAR at Starbucks")
        assert len(template_id) == 64
        int(template_id, 16)


class TestTemplateConfidence:
    """0-100 score and lifecycle status from the success/fallback history."""

    def test_too_few_uses(self):
        confidence = compute_template_confidence(make_template(usage=2), NOW)
        assert confidence.score == 50
        assert confidence.status == TemplateStatus.CANDIDATE
        assert confidence.recommendation == "Needs 1 more uses to evaluate"

    def test_no_outcomes_recorded(self):
        confidence = compute_template_confidence(make_template(usage=4), NOW)
        assert confidence.score == 50
        assert confidence.status == TemplateStatus.CANDIDATE

    def test_ready(self):
        confidence = compute_template_confidence(make_template(usage=10, success=9, fallback=1), NOW)
        assert confidence.score == 90
        assert confidence.status == TemplateStatus.READY

    def test_recent_failure_penalty(self):
        template = make_template(usage=10, success=9, fallback=1, last_failure=NOW - timedelta(days=2))
        confidence = compute_template_confidence(template, NOW)
        assert confidence.score == 82
        assert confidence.status == TemplateStatus.READY

    def test_old_failure_no_penalty(self):
        template = make_template(usage=10, success=9, fallback=1, last_failure=NOW - timedelta(days=30))
        assert compute_template_confidence(template, NOW).score == 90

    def test_learning_needs_more_uses(self):
        confidence = compute_template_confidence(make_template(usage=4, success=4), NOW)
        assert confidence.score == 100
        assert confidence.status == TemplateStatus.LEARNING

    def test_deprecated(self):
        confidence = compute_template_confidence(make_template(usage=10, success=2, fallback=8), NOW)
        assert confidence.score == 20
        assert confidence.status == TemplateStatus.DEPRECATED


class TestTemplateBank:
    """Counters, persistence and never-automatic deletion."""

    def test_record_usage_creates_and_counts(self):
        bank = TemplateBank(InMemoryStore())
        first = bank.record_usage("Spent 50 SAR at Starbucks, on 2024-05-01")
        second = bank.record_usage("Spent 75 SAR at Dunkin, on 2024-06-11")

        assert first.id == second.id
        assert bank.get(first.id).meta.usage_count == 2
        assert bank.get(first.id).meta.last_used_at is not None
        assert len(bank.all()) == 1

    def test_save_template_merges_fields_without_counting(self):
        bank = TemplateBank(InMemoryStore())
        message = "Spent 50 SAR at Starbucks, on 2024-05-01"
        bank.save_template(message, ['amount', 'vendor'])
        template = bank.save_template(message, ['vendor', 'date'])

        assert template.fields == ['amount', 'vendor', 'date']
        assert template.meta.usage_count == 0

    def test_success_and_fallback(self):
        bank = TemplateBank(InMemoryStore())
        template = bank.record_usage("Spent 50 SAR at Starbucks")

        assert bank.record_success(template.id) is True
        assert bank.record_fallback(template.id) is True
        assert bank.record_success("missing") is False

        meta = bank.get(template.id).meta
        assert meta.success_count == 1
        assert meta.fallback_count == 1
        assert meta.last_failure_at is not None

    def test_persisted_across_instances(self):
        kv = InMemoryStore()
        template = TemplateBank(kv).record_usage("Spent 50 SAR at Starbucks")

        reloaded = TemplateBank(kv)
        assert reloaded.get(template.id).meta.usage_count == 1

    def test_corrupt_value_starts_empty(self):
        bank = TemplateBank(InMemoryStore({TEMPLATE_BANK_KEY: "[1, 2]"}))
        assert bank.all() == []

    def test_stale_templates_reported_not_deleted(self):
        bank = TemplateBank(InMemoryStore())
        template = bank.record_usage("Spent 50 SAR at Starbucks")
        later = utc_now() + timedelta(days=100)

        stale = bank.get_stale_templates(days=90, now=later)
        assert [t.id for t in stale] == [template.id]
        assert bank.get(template.id) is not None
        assert bank.get_stale_templates(days=90) == []

    def test_delete(self):
        bank = TemplateBank(InMemoryStore())
        template = bank.record_usage("Spent 50 SAR at Starbucks")
        assert bank.delete(template.id) is True
        assert bank.delete(template.id) is False

    def test_most_used_order(self):
        bank = TemplateBank(InMemoryStore())
        bank.record_usage("Spent 50 SAR at Starbucks")
        busy = bank.record_usage("Received 10 USD from Ahmed Ali")
        bank.record_usage("Received 20 USD from Sara Saleh")

        assert bank.most_used()[0].id == busy.id


class TestTemplateStats:

    def test_empty_bank(self):
        stats = TemplateBank(InMemoryStore()).stats()
        assert stats.total_templates == 0
        assert stats.efficiency == 0
        assert stats.fallback_rate == 0
        assert stats.average_usage == 0
        assert stats.most_used == []

    def test_efficiency_and_fields(self):
        bank = TemplateBank(InMemoryStore())
        message = "Spent 50 SAR at Starbucks, on 2024-05-01"
        template = bank.record_usage(message)
        bank.save_template(message, ['amount', 'vendor'])
        for _ in range(3):
            bank.record_success(template.id)
        bank.record_fallback(template.id)

        stats = bank.stats('7d')
        assert stats.total_templates == 1
        assert stats.total_success == 3
        assert stats.total_fallback == 1
        assert stats.efficiency == 75.0
        assert stats.fallback_rate == 25.0
        assert stats.ready_templates == 1
        assert stats.learning_coverage == 100.0
        assert {f.field_name for f in stats.top_fields} == {'amount', 'vendor'}
        assert stats.most_used[0].id == template.id
        assert stats.status_breakdown == {'candidate': 1}
