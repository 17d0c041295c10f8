"""
HTTP surface of the invoice memory engine.
"""

import uuid
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .schemas import (
    ErrorResponse,
    HealthResponse,
    MemoryListResponse,
    MemoryResponse,
    MemorySaveRequest,
    OutputContractResponse,
    ProcessRequest,
)
from ..core.config import VERSION, debug_enabled
from ..core.dao import MemoryStore
from ..core.decay import isoformat
from ..core.errors import InvoiceMemoryError
from ..core.pipeline import DecisionPipeline
from ..core.schema import Memory
from ..util.logging import logger

app = FastAPI(
    title="Invoice Memory API",
    version=VERSION,
    description="Memory-driven invoice normalization with confidence-based escalation",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)


@lru_cache(maxsize=1)
def get_store() -> MemoryStore:
    return MemoryStore()


@lru_cache(maxsize=1)
def get_pipeline() -> DecisionPipeline:
    return DecisionPipeline(get_store())


@app.exception_handler(InvoiceMemoryError)
async def invoice_memory_error_handler(request: Request, exc: InvoiceMemoryError):
    logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc}")
    body = ErrorResponse(error_type=exc.__class__.__name__, message=str(exc))
    return JSONResponse(status_code=500, content=body.model_dump(mode="json", by_alias=True))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(store: MemoryStore = Depends(get_store)):
    """Check system health."""
    db_health = store.health_check()
    memory_count = store.memory_count() if db_health else 0

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        memory_count=memory_count
    )


@app.post("/invoices/process", response_model=OutputContractResponse)
def process_invoice_endpoint(request: ProcessRequest,
                             pipeline: DecisionPipeline = Depends(get_pipeline)):
    """Run one invoice through recall, apply, decide and (with a verdict) learn."""
    contract = pipeline.process(request.invoice, request.human_approved)
    return OutputContractResponse.model_validate(contract.to_dict())


@app.get("/memories/{vendor}", response_model=MemoryListResponse)
def list_vendor_memories(vendor: str, store: MemoryStore = Depends(get_store)):
    """Memories of a vendor as the pipeline would see them (decayed)."""
    memories = store.memories_for_vendor(vendor)
    return MemoryListResponse(
        vendor=vendor,
        memories=[MemoryResponse.model_validate(m.to_dict()) for m in memories]
    )


@app.post("/memories", response_model=MemoryResponse)
def save_memory_endpoint(request: MemorySaveRequest, store: MemoryStore = Depends(get_store)):
    """Insert a memory or merge it into the existing one for its vendor pattern."""
    saved = store.save_memory(Memory(
        id=request.id or str(uuid.uuid4()),
        type=request.type,
        vendor=request.vendor,
        pattern=request.pattern,
        confidence=request.confidence,
        approvals=request.approvals,
        rejections=request.rejections,
        last_updated=isoformat(store.clock())
    ))
    if saved is None:
        raise HTTPException(status_code=500, detail="Memory was not persisted")
    return MemoryResponse.model_validate(saved.to_dict())
