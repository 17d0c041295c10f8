#!/usr/bin/env python3
"""
Memory-driven learning demo.

Seeds memories from historical human corrections, processes an invoice
dataset, evaluates every normalized invoice against a reference and feeds the
verdict back into the learn stage. Prints a metrics summary at the end.
"""

import argparse
import json
import sys
from pathlib import Path

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from invoice_memory.api.schemas import Invoice
from invoice_memory.core.bootstrap import load_human_corrections
from invoice_memory.core.dao import MemoryStore
from invoice_memory.core.evaluator import ReferenceEvaluator
from invoice_memory.core.pipeline import DecisionPipeline

DATA_DIR = Path(__file__).parent.parent / "data"


def percentage(part: int, total: int) -> str:
    return f"{(part / total * 100):.2f}%" if total else "0.00%"


def run_demo(invoices_path: Path, corrections_path: Path, reference_path: Path,
             db_path: str, verbose: bool = False) -> dict:
    store = MemoryStore(db_path)
    pipeline = DecisionPipeline(store)
    evaluator = ReferenceEvaluator.from_file(reference_path)

    report = load_human_corrections(corrections_path, store)
    print(f"Bootstrap: {report.inserted} inserted, {report.merged} merged, {report.skipped} skipped")

    with open(invoices_path, encoding="utf-8") as fh:
        invoices = [Invoice.model_validate(item) for item in json.load(fh)]
    print(f"Loaded {len(invoices)} invoices from {invoices_path}\n")

    metrics = {
        "total": 0,
        "auto_approved": 0,
        "human_review": 0,
        "evaluator_approved": 0,
        "evaluator_rejected": 0,
        "not_evaluated": 0
    }

    for invoice in invoices:
        metrics["total"] += 1
        print("=" * 30)
        print(f"Processing invoice {invoice.invoice_id} ({invoice.vendor})")

        result = pipeline.process(invoice)
        if result.requires_human_review:
            metrics["human_review"] += 1
        else:
            metrics["auto_approved"] += 1

        print(f"  confidence={result.confidence_score:.2f} review={result.requires_human_review}")
        print(f"  {result.reasoning}")
        if verbose:
            print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))

        if not evaluator.has_reference(invoice.invoice_id):
            metrics["not_evaluated"] += 1
            print("  No reference available; learning skipped")
            continue

        evaluation = evaluator.evaluate(invoice.with_fields(result.normalized_document))
        if evaluation.approved:
            metrics["evaluator_approved"] += 1
        else:
            metrics["evaluator_rejected"] += 1
        print(f"  Evaluator: {evaluation.status} - {evaluation.reason}")

        updates, _ = pipeline.learn(invoice.vendor, result.proposed_corrections, evaluation.approved)
        for update in updates:
            print(f"  {update}")

    return metrics


def format_summary(metrics: dict) -> str:
    total = metrics["total"]
    lines = [
        "FINAL EVALUATION SUMMARY",
        f"Total Invoices Processed: {total}",
        f"Auto-Approved (No Human Review): {metrics['auto_approved']} ({percentage(metrics['auto_approved'], total)})",
        f"Required Human Review: {metrics['human_review']} ({percentage(metrics['human_review'], total)})",
        f"Evaluator Approved: {metrics['evaluator_approved']}",
        f"Evaluator Rejected: {metrics['evaluator_rejected']}",
        f"Not Evaluated: {metrics['not_evaluated']}",
    ]
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Run the memory-driven invoice learning demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Use the bundled sample data
  %(prog)s --db /tmp/demo.db --verbose      # Fresh store, full output contracts
  %(prog)s --json                           # Print metrics as JSON

Environment variables:
- DB_PATH=./data/memory.db (default store location)
- AUTO_CORRECT_THRESHOLD=0.8 (automation threshold)
        """
    )
    parser.add_argument("--invoices", type=Path, default=DATA_DIR / "invoices_extracted.json",
                        help="JSON array of extracted invoices")
    parser.add_argument("--corrections", type=Path, default=DATA_DIR / "human_corrections.json",
                        help="JSON array of historical human corrections")
    parser.add_argument("--reference", type=Path, default=DATA_DIR / "reference.json",
                        help="JSON object of expected fields per invoiceId")
    parser.add_argument("--db", default=None, help="SQLite file for the memory store")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print full output contracts")
    parser.add_argument("--json", action="store_true", help="Print the metrics summary as JSON")

    args = parser.parse_args()

    metrics = run_demo(args.invoices, args.corrections, args.reference, args.db, args.verbose)

    print()
    if args.json:
        print(json.dumps(metrics, indent=2))
    else:
        print(format_summary(metrics))
    return 0


if __name__ == "__main__":
    sys.exit(main())
