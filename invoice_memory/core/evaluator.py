"""
Reference evaluator - ground-truth oracle for demo and offline runs.

The pipeline never calls this; drivers turn its verdict into the
human_approved flag passed to the learn stage.
"""

import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Union

from ..api.schemas import Invoice

APPROVED = "APPROVED"
REJECTED = "REJECTED"


@dataclass(frozen=True)
class EvaluationResult:
    status: str  # APPROVED, REJECTED
    reason: str

    @property
    def approved(self) -> bool:
        return self.status == APPROVED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReferenceEvaluator:
    """Approves an invoice iff every expected field matches the reference."""

    def __init__(self, reference: Dict[str, Dict[str, Any]]):
        self.reference = reference

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ReferenceEvaluator":
        with open(path, encoding="utf-8") as fh:
            return cls(json.load(fh))

    def has_reference(self, invoice_id: str) -> bool:
        return invoice_id in self.reference

    def evaluate(self, invoice: Invoice) -> EvaluationResult:
        expected = self.reference.get(invoice.invoice_id)
        if expected is None:
            return EvaluationResult(REJECTED, f"No reference record for invoice {invoice.invoice_id}")

        actual = invoice.fields.model_dump(by_alias=True)
        mismatches: List[str] = [
            name for name, value in expected.items()
            if not _same_value(actual.get(name), value)
        ]

        if mismatches:
            return EvaluationResult(REJECTED, f"Fields differ from reference: {', '.join(mismatches)}")
        return EvaluationResult(APPROVED, "All reference fields match")


def _same_value(actual, expected) -> bool:
    if isinstance(expected, float) or isinstance(actual, float):
        try:
            return round(float(actual), 2) == round(float(expected), 2)
        except (TypeError, ValueError):
            return False
    return actual == expected
