"""
Decision pipeline - Recall -> Apply -> Decide -> Learn over vendor memories.

One call processes one invoice start to finish. The input invoice is never
mutated; high-confidence corrections are written into a deep copy of its
fields. Learning only runs when the caller supplies a verdict.
"""

import copy
import json
import re
import threading
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..api.schemas import Invoice
from .config import (
    AUTO_CORRECT_THRESHOLD,
    LOW_CONFIDENCE_LEARNING_RATE,
    MAX_CONFIDENCE,
    REJECTION_PENALTY,
)
from .dao import MemoryStore
from .decay import isoformat, utc_now
from .duplicates import DuplicateGuard
from .rules import RuleRegistry, default_registry
from .schema import AuditEntry, Memory, OutputContract, ProposedCorrection
from ..util.logging import logger

_PATH_PART = re.compile(r"^(\w+)(?:\[(\d+)\])?$")


def next_confidence(memory: Memory, approved: bool,
                    threshold: float = AUTO_CORRECT_THRESHOLD) -> Tuple[float, int, int]:
    """Confidence and counters after one verdict.

    Approval below the threshold moves by a small fixed step; once proven,
    each approval adds 1/(approvals+1). A rejection costs a flat penalty.
    """
    approvals = memory.approvals
    rejections = memory.rejections

    if approved:
        approvals += 1
        if memory.confidence < threshold:
            learning_rate = LOW_CONFIDENCE_LEARNING_RATE
        else:
            learning_rate = 1 / (approvals + 1)
        confidence = min(MAX_CONFIDENCE, memory.confidence + learning_rate)
    else:
        rejections += 1
        confidence = max(0.0, memory.confidence - REJECTION_PENALTY)

    return confidence, approvals, rejections


def deduplicate(corrections: List[ProposedCorrection]) -> List[ProposedCorrection]:
    """Keep the highest-confidence proposal per field; ties keep the first seen."""
    best: Dict[str, ProposedCorrection] = {}
    for correction in corrections:
        existing = best.get(correction.field)
        if existing is None or correction.confidence > existing.confidence:
            best[correction.field] = correction
    return list(best.values())


def set_field_path(fields: Dict[str, Any], path: str, value: Any) -> None:
    """Assign into nested fields by path, e.g. 'serviceDate' or 'lineItems[2].sku'."""
    parts = path.split(".")
    target: Any = fields
    for position, part in enumerate(parts):
        match = _PATH_PART.match(part)
        if not match:
            raise ValueError(f"Invalid field path: {path}")
        name, index = match.group(1), match.group(2)
        last = position == len(parts) - 1

        if index is None:
            if last:
                target[name] = value
            else:
                target = target.setdefault(name, {})
        else:
            items = target[name]
            if last:
                items[int(index)] = value
            else:
                target = items[int(index)]


def build_reasoning(invoice: Invoice, corrections: List[ProposedCorrection],
                    confidence: float, threshold: float = AUTO_CORRECT_THRESHOLD) -> str:
    if not corrections:
        return (
            f'No learned memory patterns were applicable for vendor "{invoice.vendor}". '
            "The invoice was processed without automated corrections, either due to "
            "cold-start conditions or insufficient historical confidence."
        )

    fields = ", ".join(c.field for c in corrections)

    if confidence >= threshold:
        return (
            f'Previously approved memory patterns for vendor "{invoice.vendor}" were applied '
            f"to field(s): {fields}. The aggregated confidence ({confidence:.2f}) met the "
            "automation threshold, so the corrections were applied without human review."
        )

    return (
        f'Memory-based suggestions for vendor "{invoice.vendor}" affect field(s): {fields}. '
        f"The aggregated confidence ({confidence:.2f}) did not meet the automation threshold "
        f"({threshold:.2f}), so the invoice was escalated for human review."
    )


class DecisionPipeline:
    """Orchestrates recall, apply, decide and learn for one invoice per call."""

    def __init__(self, store: MemoryStore, registry: RuleRegistry = None,
                 guard: DuplicateGuard = None, clock: Callable[[], datetime] = None,
                 threshold: float = AUTO_CORRECT_THRESHOLD):
        self.store = store
        self.registry = registry or default_registry
        self.guard = guard if guard is not None else DuplicateGuard()
        self.clock = clock or store.clock or utc_now
        self.threshold = threshold
        self._locks: Dict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def process(self, invoice: Invoice, human_approved: Optional[bool] = None) -> OutputContract:
        """Run the full pipeline and build the output contract."""
        audit: List[AuditEntry] = []

        if self.guard.is_potential_duplicate(invoice):
            return self._duplicate_result(invoice, audit)

        memories = self.recall(invoice, audit)
        corrections = self.apply(invoice, memories, audit)
        normalized, requires_review, confidence = self.decide(invoice, corrections, audit)

        memory_updates: List[str] = []
        if human_approved is not None:
            memory_updates, learn_entries = self.learn(invoice.vendor, corrections, human_approved)
            audit.extend(learn_entries)

        self.guard.record(invoice)

        return OutputContract(
            normalized_document=normalized,
            proposed_corrections=corrections,
            requires_human_review=requires_review,
            reasoning=build_reasoning(invoice, corrections, confidence, self.threshold),
            confidence_score=confidence,
            memory_updates=memory_updates,
            audit_trail=audit
        )

    # Stages

    def recall(self, invoice: Invoice, audit: List[AuditEntry]) -> List[Memory]:
        memories = self.store.memories_for_vendor(invoice.vendor)
        breakdown = dict(Counter(m.type for m in memories))

        self._audit(audit, "recall",
                    f'Recalled {len(memories)} memories for vendor "{invoice.vendor}" '
                    f"(breakdown: {json.dumps(breakdown)})")

        if not memories:
            self._audit(audit, "recall", "No prior memories found; operating in cold-start mode")

        high_confidence = [m for m in memories if m.confidence >= self.threshold]
        if high_confidence:
            self._audit(audit, "recall",
                        f"Found {len(high_confidence)} high-confidence memories eligible for auto-application")

        if memories:
            self._audit(audit, "recall",
                        f"Recalled memory patterns: {', '.join(m.pattern for m in memories)}")

        logger.log_pipeline_step("recall", invoice.invoice_id, {
            "memories": len(memories),
            "high_confidence": len(high_confidence)
        })
        return memories

    def apply(self, invoice: Invoice, memories: List[Memory],
              audit: List[AuditEntry]) -> List[ProposedCorrection]:
        candidates: List[ProposedCorrection] = []
        for memory in memories:
            candidates.extend(self.registry.match(invoice, memory))

        corrections = deduplicate(candidates)

        self._audit(audit, "apply",
                    f"Generated {len(candidates)} candidate corrections, "
                    f"{len(corrections)} after keeping the best per field")
        logger.log_pipeline_step("apply", invoice.invoice_id, {
            "candidates": len(candidates),
            "corrections": len(corrections)
        })
        return corrections

    def decide(self, invoice: Invoice, corrections: List[ProposedCorrection],
               audit: List[AuditEntry]) -> Tuple[Dict[str, Any], bool, float]:
        normalized = copy.deepcopy(invoice.fields.model_dump(by_alias=True))

        confidence = 0.0
        if corrections:
            confidence = sum(c.confidence for c in corrections) / len(corrections)

        applied = []
        for correction in corrections:
            if correction.confidence >= self.threshold:
                set_field_path(normalized, correction.field, correction.to_value)
                applied.append(correction.field)

        requires_review = bool(corrections) and confidence < self.threshold

        if not corrections:
            details = f"No corrections proposed (avg confidence {confidence:.2f})"
        elif requires_review:
            details = f"Human review required (avg confidence {confidence:.2f})"
        else:
            details = f"All corrections auto-applied (avg confidence {confidence:.2f})"
        self._audit(audit, "decide", details)

        logger.log_pipeline_step("decide", invoice.invoice_id, {
            "confidence": round(confidence, 4),
            "requires_review": requires_review,
            "applied_fields": applied
        })
        return normalized, requires_review, confidence

    def learn(self, vendor: str, corrections: List[ProposedCorrection],
              approved: bool) -> Tuple[List[str], List[AuditEntry]]:
        """Reinforce or penalize the memories behind the given corrections.

        Each pattern is updated at most once per call. Raises
        UnknownPatternError when a field has no registered pattern; in that
        case no memory is touched.
        """
        verb = "reinforced" if approved else "penalized"
        memory_updates: List[str] = []
        audit: List[AuditEntry] = []

        # Resolve all patterns before the first write
        patterns: List[str] = []
        for correction in corrections:
            pattern = self.registry.pattern_for_field(vendor, correction.field)
            if pattern not in patterns:
                patterns.append(pattern)

        for pattern in patterns:
            with self._lock_for(vendor, pattern):
                memory = self.store.memory_by_pattern(vendor, pattern)
                if memory is None:
                    logger.info(f'No live memory for pattern "{pattern}" of vendor "{vendor}"; skipping')
                    continue

                confidence, approvals, rejections = next_confidence(memory, approved, self.threshold)
                self.store.update_confidence_and_counters(memory.id, confidence, approvals, rejections)

            line = (f'Memory "{memory.pattern}" updated: confidence '
                    f"{memory.confidence:.2f} -> {confidence:.2f} ({verb})")
            memory_updates.append(line)
            self._audit(audit, "learn", line)
            logger.log_learning_update(memory.id, memory.pattern, memory.confidence, confidence, verb)

        self._audit(audit, "learn",
                    "Approval reinforced memory confidence" if approved
                    else "Rejection reduced memory confidence")
        return memory_updates, audit

    # Internals

    def _duplicate_result(self, invoice: Invoice, audit: List[AuditEntry]) -> OutputContract:
        self._audit(audit, "decide",
                    "Potential duplicate invoice detected (same vendor, invoice number and close dates)")
        logger.log_duplicate_detected(invoice.invoice_id, invoice.vendor, invoice.fields.invoice_number)

        return OutputContract(
            normalized_document=copy.deepcopy(invoice.fields.model_dump(by_alias=True)),
            proposed_corrections=[],
            requires_human_review=True,
            reasoning=(
                f'Invoice appears to be a potential duplicate for vendor "{invoice.vendor}". '
                "Human review required to prevent contradictory learning."
            ),
            confidence_score=0.0,
            memory_updates=[],
            audit_trail=audit
        )

    def _audit(self, audit: List[AuditEntry], step: str, details: str) -> None:
        audit.append(AuditEntry(step=step, timestamp=isoformat(self.clock()), details=details))

    def _lock_for(self, vendor: str, pattern: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[(vendor, pattern)]


_default_pipeline: Optional[DecisionPipeline] = None


def get_default_pipeline() -> DecisionPipeline:
    """Process-wide pipeline over the configured store."""
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = DecisionPipeline(MemoryStore())
    return _default_pipeline


def process_invoice(invoice: Invoice, human_approved: Optional[bool] = None) -> OutputContract:
    """Process one invoice with the default pipeline."""
    return get_default_pipeline().process(invoice, human_approved)
