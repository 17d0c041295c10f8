"""
Record types shared by the store, the rule set and the decision pipeline.
"""

from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, List

MEMORY_TYPES = ("vendor", "correction", "resolution")
PIPELINE_STEPS = ("recall", "apply", "decide", "learn")


@dataclass(frozen=True)
class Memory:
    """A vendor-and-pattern scoped belief about a correction pattern."""
    id: str
    type: str  # vendor, correction, resolution
    vendor: str
    pattern: str
    confidence: float
    approvals: int = 0
    rejections: int = 0
    last_updated: str = ""  # ISO-8601, UTC

    def with_confidence(self, confidence: float, last_updated: str) -> "Memory":
        return replace(self, confidence=confidence, last_updated=last_updated)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire representation."""
        return {
            "id": self.id,
            "type": self.type,
            "vendor": self.vendor,
            "pattern": self.pattern,
            "confidence": self.confidence,
            "approvals": self.approvals,
            "rejections": self.rejections,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_row(cls, row) -> "Memory":
        """Create from a sqlite3.Row of the memory table."""
        return cls(
            id=row["id"],
            type=row["type"],
            vendor=row["vendor"],
            pattern=row["pattern"],
            confidence=row["confidence"],
            approvals=row["approvals"],
            rejections=row["rejections"],
            last_updated=row["last_updated"],
        )


@dataclass(frozen=True)
class ProposedCorrection:
    field: str  # may be indexed, e.g. lineItems[2].sku
    from_value: Any
    to_value: Any
    source_memory_id: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "from": self.from_value,
            "to": self.to_value,
            "sourceMemoryId": self.source_memory_id,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class AuditEntry:
    step: str  # recall, apply, decide, learn
    timestamp: str
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OutputContract:
    """Externally observable result of one pipeline run."""
    normalized_document: Dict[str, Any]
    proposed_corrections: List[ProposedCorrection] = field(default_factory=list)
    requires_human_review: bool = False
    reasoning: str = ""
    confidence_score: float = 0.0
    memory_updates: List[str] = field(default_factory=list)
    audit_trail: List[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase output contract."""
        return {
            "normalizedDocument": self.normalized_document,
            "proposedCorrections": [c.to_dict() for c in self.proposed_corrections],
            "requiresHumanReview": self.requires_human_review,
            "reasoning": self.reasoning,
            "confidenceScore": self.confidence_score,
            "memoryUpdates": list(self.memory_updates),
            "auditTrail": [entry.to_dict() for entry in self.audit_trail],
        }
