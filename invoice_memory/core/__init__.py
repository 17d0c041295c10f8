"""
Core engine - memory store, decay, rule registry, duplicate guard and decision pipeline.
"""

from .dao import MemoryStore
from .pipeline import DecisionPipeline, process_invoice
from .rules import RuleRegistry, default_registry
from .duplicates import DuplicateGuard
from .schema import Memory, ProposedCorrection, AuditEntry, OutputContract

__all__ = [
    'MemoryStore',
    'DecisionPipeline',
    'process_invoice',
    'RuleRegistry',
    'default_registry',
    'DuplicateGuard',
    'Memory',
    'ProposedCorrection',
    'AuditEntry',
    'OutputContract'
]
