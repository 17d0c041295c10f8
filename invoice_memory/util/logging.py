"""
Structured operation logging for the memory store and the decision pipeline.
"""

import logging
from typing import Any, Dict

from ..core.config import LOG_LEVEL


class StructuredLogger:
    """Structured logger for store, pipeline and learning operations."""

    def __init__(self, name: str = "invoice_memory", level: str = LOG_LEVEL):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level, logging.INFO))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    @staticmethod
    def format_operation(operation: str, status: str, details: Dict[str, Any] = None) -> str:
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"
        return message

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None,
                      level: int = logging.INFO):
        """Log a structured operation."""
        self.logger.log(level, self.format_operation(operation, status, details))

    def log_memory_operation(self, operation: str, vendor: str, pattern: str = None,
                             details: Dict[str, Any] = None, status: str = "success"):
        """Log a memory store operation."""
        log_details = {"vendor": vendor}
        if pattern is not None:
            log_details["pattern"] = pattern
        if details:
            log_details.update(details)

        self.log_operation(f"memory.{operation}", status, log_details)

    def log_pipeline_step(self, step: str, invoice_id: str, details: Dict[str, Any] = None):
        """Log completion of a pipeline stage."""
        log_details = {"invoice_id": invoice_id}
        if details:
            log_details.update(details)

        self.log_operation(f"pipeline.{step}", "completed", log_details)

    def log_duplicate_detected(self, invoice_id: str, vendor: str, invoice_number: str):
        log_details = {
            "invoice_id": invoice_id,
            "vendor": vendor,
            "invoice_number": invoice_number
        }
        self.log_operation("pipeline.duplicate_guard", "flagged", log_details, level=logging.WARNING)

    def log_learning_update(self, memory_id: str, pattern: str, old_confidence: float,
                            new_confidence: float, verdict: str):
        """Log a confidence change produced by the learn stage."""
        log_details = {
            "memory_id": memory_id,
            "pattern": pattern,
            "old_confidence": round(old_confidence, 4),
            "new_confidence": round(new_confidence, 4),
        }
        self.log_operation("learning.update", verdict, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
