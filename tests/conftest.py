"""Shared fixtures: a fixed clock, a temporary memory store and document factories."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from invoice_memory.api.schemas import Invoice
from invoice_memory.core.dao import MemoryStore
from invoice_memory.core.decay import isoformat
from invoice_memory.core.duplicates import DuplicateGuard
from invoice_memory.core.pipeline import DecisionPipeline
from invoice_memory.core.schema import Memory

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(tmp_path, clock):
    """Memory store backed by a fresh SQLite file."""
    return MemoryStore(str(tmp_path / "memory.db"), clock=clock)


@pytest.fixture
def pipeline(store):
    """Pipeline with its own empty duplicate history."""
    return DecisionPipeline(store, guard=DuplicateGuard())


@pytest.fixture
def make_memory(clock):
    def factory(vendor, pattern, confidence, approvals=0, rejections=0,
                days_ago=0, memory_type="correction", memory_id=None):
        return Memory(
            id=memory_id or str(uuid.uuid4()),
            type=memory_type,
            vendor=vendor,
            pattern=pattern,
            confidence=confidence,
            approvals=approvals,
            rejections=rejections,
            last_updated=isoformat(clock() - timedelta(days=days_ago))
        )
    return factory


@pytest.fixture
def make_invoice():
    def factory(vendor="Supplier GmbH", invoice_id="INV-1", raw_text="", **fields):
        invoice_fields = {
            "invoiceNumber": "INV-2024-001",
            "invoiceDate": "2024-02-28",
            "serviceDate": None,
            "currency": "EUR",
            "netTotal": 100.0,
            "taxRate": 0.19,
            "taxTotal": 19.0,
            "grossTotal": 119.0,
            "lineItems": [],
        }
        invoice_fields.update(fields)
        return Invoice.model_validate({
            "invoiceId": invoice_id,
            "vendor": vendor,
            "fields": invoice_fields,
            "rawText": raw_text,
            "confidence": 0.8,
        })
    return factory
