"""
Duplicate guard - flags near-duplicate submissions before any learning happens.

Two invoices are potential duplicates when vendor and invoice number match
and their issue dates are at most DUPLICATE_WINDOW_DAYS apart (inclusive).
History is a bounded ring buffer owned by the guard instance.
"""

import threading
from collections import deque
from datetime import date
from typing import Deque, Optional

from ..api.schemas import Invoice
from .config import DUPLICATE_HISTORY_SIZE, DUPLICATE_WINDOW_DAYS
from ..util.logging import logger


def parse_invoice_date(value: str) -> Optional[date]:
    """Issue date of an invoice; full timestamps are truncated to the day."""
    try:
        return date.fromisoformat(value.strip()[:10])
    except (AttributeError, ValueError):
        return None


class DuplicateGuard:
    """Retains processed invoices and checks new ones against them."""

    def __init__(self, window_days: int = DUPLICATE_WINDOW_DAYS,
                 max_history: int = DUPLICATE_HISTORY_SIZE):
        self.window_days = window_days
        self._history: Deque[Invoice] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def is_potential_duplicate(self, invoice: Invoice) -> bool:
        with self._lock:
            history = list(self._history)
        return any(self._matches(previous, invoice) for previous in history)

    def record(self, invoice: Invoice) -> None:
        with self._lock:
            self._history.append(invoice)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def __len__(self):
        return len(self._history)

    def _matches(self, previous: Invoice, invoice: Invoice) -> bool:
        if previous.vendor != invoice.vendor:
            return False
        if previous.fields.invoice_number != invoice.fields.invoice_number:
            return False

        previous_date = parse_invoice_date(previous.fields.invoice_date)
        current_date = parse_invoice_date(invoice.fields.invoice_date)
        if previous_date is None or current_date is None:
            logger.warning(
                f"Unparseable invoice date while checking {invoice.invoice_id} "
                f"against {previous.invoice_id}; not treated as duplicate"
            )
            return False

        return abs((current_date - previous_date).days) <= self.window_days
