"""
Bootstrap loader - seeds correction memories from historical human corrections.

Input records look like:
    {"invoiceId": "INV-A-001", "vendor": "Supplier GmbH",
     "corrections": [{"field": "serviceDate", "from": null, "to": "2024-01-01",
                      "reason": "Leistungsdatum found in raw text"}],
     "finalDecision": "approved"}

Each (vendor, field) is resolved to a pattern through the rule registry and
saved through the store's merge path, so repeated corrections reinforce
one memory instead of creating duplicates.
"""

import json
import uuid
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from .config import BOOTSTRAP_CONFIDENCE
from .dao import MemoryStore
from .decay import isoformat
from .errors import UnknownPatternError
from .rules import RuleRegistry, default_registry
from .schema import Memory
from ..util.logging import logger


@dataclass
class BootstrapReport:
    records: int = 0
    inserted: int = 0
    merged: int = 0
    skipped: int = 0
    skipped_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def read_corrections(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read a JSON array of human correction records."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of correction records in {path}")
    return data


def load_human_corrections(source: Union[str, Path, Iterable[Dict[str, Any]]],
                           store: MemoryStore,
                           registry: RuleRegistry = None,
                           confidence: float = BOOTSTRAP_CONFIDENCE) -> BootstrapReport:
    """Seed memories from human corrections; returns what was inserted, merged and skipped."""
    registry = registry or default_registry
    records = read_corrections(source) if isinstance(source, (str, Path)) else list(source)
    report = BootstrapReport(records=len(records))

    for record in records:
        vendor = record.get("vendor")
        approved = str(record.get("finalDecision", "approved")).lower() == "approved"

        for correction in record.get("corrections", []):
            field_path = correction.get("field", "")
            try:
                pattern = registry.pattern_for_field(vendor, field_path)
            except UnknownPatternError:
                report.skipped += 1
                report.skipped_fields.append(f"{vendor}:{field_path}")
                logger.debug(f"No rule owns field '{field_path}' of vendor '{vendor}'; correction not seeded")
                continue

            existed = store.memory_by_vendor_and_pattern(vendor, pattern) is not None
            store.save_memory(Memory(
                id=str(uuid.uuid4()),
                type="correction",
                vendor=vendor,
                pattern=pattern,
                confidence=confidence,
                approvals=1 if approved else 0,
                rejections=0 if approved else 1,
                last_updated=isoformat(store.clock())
            ))

            if existed:
                report.merged += 1
            else:
                report.inserted += 1

    logger.log_operation("bootstrap.load", "success", report.to_dict())
    return report
