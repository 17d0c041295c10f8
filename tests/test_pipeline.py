"""
Decision pipeline - recall, apply, decide, learn and the duplicate short-circuit.
"""

import pytest

from invoice_memory.core.config import MAX_CONFIDENCE
from invoice_memory.core.decay import isoformat
from invoice_memory.core.duplicates import DuplicateGuard
from invoice_memory.core.errors import RuleRegistrationError, UnknownPatternError
from invoice_memory.core.pipeline import (
    DecisionPipeline,
    build_reasoning,
    deduplicate,
    next_confidence,
    set_field_path,
)
from invoice_memory.core.rules import RuleRegistry, propose
from invoice_memory.core.schema import ProposedCorrection

SERVICE_DATE = "Leistungsdatum -> serviceDate"


def correction(field, confidence, memory_id="m"):
    return ProposedCorrection(field=field, from_value=None, to_value=f"{field}-{confidence}",
                              source_memory_id=memory_id, confidence=confidence)


class TestEndToEndScenarios:
    """The reference scenarios: cold start, auto-apply, escalation and learning."""

    def test_cold_start(self, pipeline, make_invoice):
        invoice = make_invoice(vendor="New Vendor Ltd", raw_text="Leistungsdatum: 01.02.2024")

        result = pipeline.process(invoice)

        assert result.proposed_corrections == []
        assert result.requires_human_review is False
        assert result.confidence_score == 0
        assert result.normalized_document == invoice.fields.model_dump(by_alias=True)
        assert "cold-start" in result.reasoning
        assert any("cold-start" in entry.details for entry in result.audit_trail)

    def test_auto_apply(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.9))
        invoice = make_invoice(raw_text="Rechnung\nLeistungsdatum: 01.02.2024")

        result = pipeline.process(invoice)

        assert result.normalized_document["serviceDate"] == "2024-02-01"
        assert result.requires_human_review is False
        assert result.confidence_score == 0.9
        assert "serviceDate" in result.reasoning
        assert "met the automation threshold" in result.reasoning

    def test_escalation_with_partial_auto_apply(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Parts AG", "VAT_INCLUSIVE_PRICING", 0.9))
        store.save_memory(make_memory("Parts AG", "CURRENCY_RECOVERY", 0.4))
        invoice = make_invoice(vendor="Parts AG", raw_text="Prices incl. VAT, total 2380 €",
                               currency=None, netTotal=2000.0, taxTotal=400.0, grossTotal=2380.0)

        result = pipeline.process(invoice)

        assert result.confidence_score == pytest.approx(0.65)
        assert result.requires_human_review is True
        assert result.normalized_document["taxTotal"] == 380.0
        assert result.normalized_document["currency"] is None
        assert "did not meet the automation threshold" in result.reasoning
        assert "taxTotal" in result.reasoning and "currency" in result.reasoning

    def test_approval_below_threshold_adds_fixed_step(self, pipeline, store, make_invoice, make_memory):
        saved = store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.5))
        invoice = make_invoice(raw_text="Leistungsdatum: 01.02.2024")

        result = pipeline.process(invoice, human_approved=True)

        updated = store.get_memory(saved.id)
        assert updated.confidence == pytest.approx(0.55)
        assert updated.approvals == 1
        assert result.memory_updates == [
            'Memory "Leistungsdatum -> serviceDate" updated: confidence 0.50 -> 0.55 (reinforced)'
        ]

    def test_rejection_applies_penalty(self, pipeline, store, make_invoice, make_memory):
        saved = store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.9))
        invoice = make_invoice(raw_text="Leistungsdatum: 01.02.2024")

        result = pipeline.process(invoice, human_approved=False)

        updated = store.get_memory(saved.id)
        assert updated.confidence == pytest.approx(0.6)
        assert updated.rejections == 1
        assert "(penalized)" in result.memory_updates[0]


class TestProcessInvariants:
    """Test properties that hold for every pipeline run."""

    def test_input_invoice_not_mutated(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Freight & Co", "FREIGHT_SKU_MAPPING", 0.9))
        invoice = make_invoice(vendor="Freight & Co", lineItems=[
            {"sku": None, "description": "Shipping", "qty": 1, "unitPrice": 10}
        ])
        before = invoice.model_dump()

        result = pipeline.process(invoice)

        assert result.normalized_document["lineItems"][0]["sku"] == "FREIGHT"
        assert invoice.model_dump() == before
        assert invoice.fields.line_items[0].sku is None

    def test_audit_trail_steps_in_order(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.9))
        invoice = make_invoice(raw_text="Leistungsdatum: 01.02.2024")

        result = pipeline.process(invoice, human_approved=True)

        steps = [entry.step for entry in result.audit_trail]
        order = ["recall", "apply", "decide", "learn"]
        assert steps == sorted(steps, key=order.index)
        assert set(steps) == set(order)
        assert all(entry.timestamp == isoformat(store.clock()) for entry in result.audit_trail)

    def test_recall_audit_reports_breakdown_and_high_confidence(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Parts AG", "VAT_INCLUSIVE_PRICING", 0.9))
        store.save_memory(make_memory("Parts AG", "VENDOR_PROFILE", 0.5, memory_type="vendor"))

        result = pipeline.process(make_invoice(vendor="Parts AG"))

        details = [e.details for e in result.audit_trail if e.step == "recall"]
        assert details[0] == 'Recalled 2 memories for vendor "Parts AG" (breakdown: {"correction": 1, "vendor": 1})'
        assert "Found 1 high-confidence memories eligible for auto-application" in details
        assert "Recalled memory patterns: VAT_INCLUSIVE_PRICING, VENDOR_PROFILE" in details

    def test_no_learning_without_verdict(self, pipeline, store, make_invoice, make_memory):
        saved = store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.5))

        result = pipeline.process(make_invoice(raw_text="Leistungsdatum: 01.02.2024"))

        assert result.memory_updates == []
        assert store.get_memory(saved.id).approvals == 0
        assert not any(entry.step == "learn" for entry in result.audit_trail)

    def test_decayed_memory_can_drop_below_threshold(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.85, days_ago=10))

        result = pipeline.process(make_invoice(raw_text="Leistungsdatum: 01.02.2024"))

        assert result.confidence_score == pytest.approx(0.75)
        assert result.requires_human_review is True
        assert result.normalized_document["serviceDate"] is None

    def test_output_contract_to_dict(self, pipeline, store, make_invoice, make_memory):
        store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.9, memory_id="mem-1"))

        data = pipeline.process(make_invoice(raw_text="Leistungsdatum: 01.02.2024")).to_dict()

        assert set(data) == {"normalizedDocument", "proposedCorrections", "requiresHumanReview",
                             "reasoning", "confidenceScore", "memoryUpdates", "auditTrail"}
        assert data["proposedCorrections"] == [{
            "field": "serviceDate", "from": None, "to": "2024-02-01",
            "sourceMemoryId": "mem-1", "confidence": 0.9
        }]


class TestDuplicateShortCircuit:
    """Test that near-duplicates return early without touching memory."""

    def test_resubmission_is_flagged(self, pipeline, store, make_invoice, make_memory):
        saved = store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.5))
        pipeline.process(make_invoice(invoice_id="INV-1", raw_text="Leistungsdatum: 01.02.2024"))

        result = pipeline.process(
            make_invoice(invoice_id="INV-1b", raw_text="Leistungsdatum: 01.02.2024", invoiceDate="2024-03-01"),
            human_approved=True
        )

        assert result.requires_human_review is True
        assert result.proposed_corrections == []
        assert result.confidence_score == 0
        assert result.memory_updates == []
        assert [entry.step for entry in result.audit_trail] == ["decide"]
        assert "duplicate" in result.reasoning
        assert store.get_memory(saved.id).approvals == 0

    def test_distant_dates_are_processed(self, pipeline, make_invoice):
        pipeline.process(make_invoice(invoice_id="INV-1"))

        result = pipeline.process(make_invoice(invoice_id="INV-2", invoiceDate="2024-03-02"))

        assert result.requires_human_review is False

    def test_duplicates_are_not_recorded(self, pipeline, make_invoice):
        pipeline.process(make_invoice(invoice_id="INV-1"))
        pipeline.process(make_invoice(invoice_id="INV-2"))

        assert len(pipeline.guard) == 1


class TestLearn:
    """Test the learn stage in isolation."""

    def test_each_pattern_updated_once_per_call(self, pipeline, store, make_invoice, make_memory):
        saved = store.save_memory(make_memory("Freight & Co", "FREIGHT_SKU_MAPPING", 0.5))
        invoice = make_invoice(vendor="Freight & Co", lineItems=[
            {"sku": None, "description": "Shipping", "qty": 1, "unitPrice": 10},
            {"sku": None, "description": "Freight", "qty": 1, "unitPrice": 20},
        ])

        result = pipeline.process(invoice, human_approved=True)

        assert len(result.proposed_corrections) == 2
        updated = store.get_memory(saved.id)
        assert updated.approvals == 1
        assert updated.confidence == pytest.approx(0.55)
        assert len(result.memory_updates) == 1

    def test_missing_memory_is_skipped(self, pipeline):
        updates, audit = pipeline.learn("Supplier GmbH", [correction("serviceDate", 0.9)], True)

        assert updates == []
        assert [entry.step for entry in audit] == ["learn"]

    def test_unknown_field_raises(self, pipeline):
        with pytest.raises(UnknownPatternError):
            pipeline.learn("Parts AG", [correction("poNumber", 0.9)], True)

    def test_learn_after_process_without_resubmitting(self, pipeline, store, make_invoice, make_memory):
        saved = store.save_memory(make_memory("Parts AG", "VAT_INCLUSIVE_PRICING", 0.9, approvals=3))
        invoice = make_invoice(vendor="Parts AG", raw_text="inkl", netTotal=100.0, grossTotal=119.0)

        result = pipeline.process(invoice)
        updates, _ = pipeline.learn(invoice.vendor, result.proposed_corrections, True)

        assert store.get_memory(saved.id).confidence == MAX_CONFIDENCE
        assert updates == ['Memory "VAT_INCLUSIVE_PRICING" updated: confidence 0.90 -> 0.95 (reinforced)']

    def test_unknown_field_leaves_every_memory_untouched(self, store, make_memory):
        """A field without a pattern fails the whole call before any write."""
        registry = RuleRegistry()
        registry.register("Acme", "GOOD", fields=["serviceDate"])(lambda invoice, memory: [])
        pipeline = DecisionPipeline(store, registry=registry, guard=DuplicateGuard())
        good = store.save_memory(make_memory("Acme", "GOOD", 0.5))

        with pytest.raises(UnknownPatternError):
            pipeline.learn("Acme", [correction("serviceDate", 0.5, good.id), correction("poNumber", 0.5)], True)

        unchanged = store.get_memory(good.id)
        assert unchanged.approvals == 0
        assert unchanged.confidence == 0.5

    def test_rule_emitting_undeclared_field_fails_before_learning(self, store, make_invoice, make_memory):
        registry = RuleRegistry()

        @registry.register("Acme", "GOOD", fields=["serviceDate"])
        def good_rule(invoice, memory):
            yield propose(memory, "serviceDate", None, "2024-02-01")

        @registry.register("Acme", "BAD", fields=["currency"])
        def bad_rule(invoice, memory):
            yield propose(memory, "poNumber", None, "PO-1")

        guard = DuplicateGuard()
        pipeline = DecisionPipeline(store, registry=registry, guard=guard)
        good = store.save_memory(make_memory("Acme", "GOOD", 0.5))
        store.save_memory(make_memory("Acme", "BAD", 0.5))

        with pytest.raises(RuleRegistrationError):
            pipeline.process(make_invoice(vendor="Acme"), human_approved=True)

        assert store.get_memory(good.id).approvals == 0
        assert len(guard) == 0


class TestNextConfidence:
    """Test the reinforcement / penalty curve."""

    def test_low_confidence_approval(self, make_memory):
        assert next_confidence(make_memory("v", "p", 0.5), True) == (pytest.approx(0.55), 1, 0)

    def test_proven_approval_uses_diminishing_rate(self, make_memory):
        confidence, approvals, _ = next_confidence(make_memory("v", "p", 0.8, approvals=9), True)

        assert approvals == 10
        assert confidence == pytest.approx(0.8 + 1 / 11)

    def test_approval_capped(self, make_memory):
        confidence, _, _ = next_confidence(make_memory("v", "p", 0.94, approvals=0), True)

        assert confidence == MAX_CONFIDENCE

    def test_rejection_floored_at_zero(self, make_memory):
        assert next_confidence(make_memory("v", "p", 0.2, rejections=4), False) == (0.0, 0, 5)

    @pytest.mark.parametrize("start", [0.0, 0.1, 0.5, 0.79, 0.8, 0.9, 0.95])
    def test_bounds_hold(self, make_memory, start):
        up, _, _ = next_confidence(make_memory("v", "p", start, approvals=2), True)
        down, _, _ = next_confidence(make_memory("v", "p", start), False)

        assert start <= up <= MAX_CONFIDENCE
        assert 0.0 <= down <= start


class TestDeduplicate:
    """Test per-field deduplication of candidate corrections."""

    def test_keeps_highest_per_field(self):
        candidates = [correction("a", 0.4, "m1"), correction("b", 0.7), correction("a", 0.9, "m2"),
                      correction("a", 0.6, "m3")]

        result = deduplicate(candidates)

        assert [(c.field, c.source_memory_id) for c in result] == [("a", "m2"), ("b", "m")]

    def test_ties_keep_first_seen(self):
        result = deduplicate([correction("a", 0.7, "first"), correction("a", 0.7, "second")])

        assert [c.source_memory_id for c in result] == ["first"]

    def test_at_most_one_per_field(self):
        candidates = [correction(f"f{i % 3}", i / 10) for i in range(10)]

        result = deduplicate(candidates)

        assert len({c.field for c in result}) == len(result) == 3
        for kept in result:
            assert kept.confidence == max(c.confidence for c in candidates if c.field == kept.field)


class TestHelpers:

    def test_set_field_path_top_level_and_indexed(self):
        fields = {"serviceDate": None, "lineItems": [{"sku": None}, {"sku": None}]}

        set_field_path(fields, "serviceDate", "2024-01-01")
        set_field_path(fields, "lineItems[1].sku", "FREIGHT")

        assert fields == {"serviceDate": "2024-01-01", "lineItems": [{"sku": None}, {"sku": "FREIGHT"}]}

    def test_set_field_path_rejects_garbage(self):
        with pytest.raises(ValueError):
            set_field_path({}, "line-items[x]", 1)

    def test_reasoning_templates(self, make_invoice):
        invoice = make_invoice(vendor="Parts AG")

        assert "cold-start" in build_reasoning(invoice, [], 0)
        assert "met the automation threshold" in build_reasoning(invoice, [correction("taxTotal", 0.8)], 0.8)
        assert "escalated for human review" in build_reasoning(invoice, [correction("taxTotal", 0.5)], 0.5)

    def test_custom_threshold(self, store, make_invoice, make_memory):
        store.save_memory(make_memory("Supplier GmbH", SERVICE_DATE, 0.6))
        pipeline = DecisionPipeline(store, threshold=0.5)

        result = pipeline.process(make_invoice(raw_text="Leistungsdatum: 01.02.2024"))

        assert result.requires_human_review is False
        assert result.normalized_document["serviceDate"] == "2024-02-01"
