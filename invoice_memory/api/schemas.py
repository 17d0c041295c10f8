"""
Document models and API request/response schemas.
Invoices are camelCase on the wire and snake_case in Python.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.schema import MEMORY_TYPES, PIPELINE_STEPS


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Documents are immutable as received; the pipeline only emits normalized copies.

class LineItem(CamelModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    sku: Optional[str] = None
    description: Optional[str] = None
    qty: float = 0
    unit_price: float = 0


class InvoiceFields(CamelModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    invoice_number: str
    invoice_date: str
    service_date: Optional[str] = None
    currency: Optional[str] = None
    po_number: Optional[str] = None
    payment_terms: Optional[str] = None
    net_total: float = 0
    tax_rate: float = 0
    tax_total: float = 0
    gross_total: float = 0
    line_items: List[LineItem] = Field(default_factory=list)


class Invoice(CamelModel):
    model_config = ConfigDict(frozen=True)

    invoice_id: str
    vendor: str
    fields: InvoiceFields
    raw_text: str = ""
    confidence: float = 0

    @field_validator('invoice_id')
    @classmethod
    def invoice_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('invoiceId cannot be empty')
        return v

    @field_validator('vendor')
    @classmethod
    def vendor_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('vendor cannot be empty')
        return v

    def with_fields(self, fields: Dict[str, Any]) -> "Invoice":
        """Return a copy of this invoice carrying the given (camelCase) fields."""
        return self.model_copy(update={"fields": InvoiceFields.model_validate(fields)})


class ProcessRequest(CamelModel):
    invoice: Invoice
    human_approved: Optional[bool] = None


class MemorySaveRequest(CamelModel):
    id: Optional[str] = None
    type: str = "correction"
    vendor: str
    pattern: str
    confidence: float = Field(ge=0, le=1)
    approvals: int = Field(default=0, ge=0)
    rejections: int = Field(default=0, ge=0)

    @field_validator('type')
    @classmethod
    def type_must_be_valid(cls, v):
        if v not in MEMORY_TYPES:
            raise ValueError(f'type must be one of: {list(MEMORY_TYPES)}')
        return v

    @field_validator('vendor', 'pattern')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v


class MemoryResponse(CamelModel):
    id: str
    type: str
    vendor: str
    pattern: str
    confidence: float
    approvals: int
    rejections: int
    last_updated: str


class MemoryListResponse(BaseModel):
    vendor: str
    memories: List[MemoryResponse]


class CorrectionResponse(CamelModel):
    field: str
    from_value: Any = Field(default=None, alias="from")
    to_value: Any = Field(default=None, alias="to")
    source_memory_id: str
    confidence: float


class AuditEntryResponse(BaseModel):
    step: str
    timestamp: str
    details: str

    @field_validator('step')
    @classmethod
    def step_must_be_valid(cls, v):
        if v not in PIPELINE_STEPS:
            raise ValueError(f'step must be one of: {list(PIPELINE_STEPS)}')
        return v


class OutputContractResponse(CamelModel):
    normalized_document: Dict[str, Any]
    proposed_corrections: List[CorrectionResponse]
    requires_human_review: bool
    reasoning: str
    confidence_score: float
    memory_updates: List[str]
    audit_trail: List[AuditEntryResponse]


class HealthResponse(CamelModel):
    status: str
    version: str
    db_health: bool
    memory_count: int


class ErrorResponse(CamelModel):
    error_type: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    details: Optional[Dict[str, Any]] = None
