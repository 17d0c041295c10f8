#!/usr/bin/env python3
"""
Seed the memory store from historical human corrections.
"""

import argparse
import json
import sys
from pathlib import Path

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from invoice_memory.core.bootstrap import load_human_corrections
from invoice_memory.core.config import BOOTSTRAP_CONFIDENCE
from invoice_memory.core.dao import MemoryStore
from invoice_memory.core.errors import InvoiceMemoryError


def main():
    parser = argparse.ArgumentParser(description="Seed vendor memories from human corrections")
    parser.add_argument("corrections", type=Path, help="JSON array of human correction records")
    parser.add_argument("--db", default=None, help="SQLite file for the memory store")
    parser.add_argument("--confidence", type=float, default=BOOTSTRAP_CONFIDENCE,
                        help="Initial confidence of newly seeded memories")
    parser.add_argument("--list", action="store_true", help="List all stored memories afterwards")
    parser.add_argument("--json", action="store_true", help="Output results as JSON")

    args = parser.parse_args()

    try:
        store = MemoryStore(args.db)
        report = load_human_corrections(args.corrections, store, confidence=args.confidence)
    except (OSError, ValueError, InvoiceMemoryError) as e:
        print(f"Seeding failed: {e}", file=sys.stderr)
        return 1

    memories = store.list_memories() if args.list else []

    if args.json:
        output = report.to_dict()
        if args.list:
            output["memories"] = [m.to_dict() for m in memories]
        print(json.dumps(output, indent=2, ensure_ascii=False))
        return 0

    print(f"Records read: {report.records}")
    print(f"Memories inserted: {report.inserted}")
    print(f"Memories merged: {report.merged}")
    print(f"Corrections skipped: {report.skipped}")
    for skipped in report.skipped_fields:
        print(f"  - {skipped}")

    for memory in memories:
        print(f"{memory.vendor:<15} {memory.pattern:<32} confidence={memory.confidence:.2f} "
              f"approvals={memory.approvals} rejections={memory.rejections}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
