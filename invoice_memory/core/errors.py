"""
Error kinds surfaced by the memory engine.
"""


class InvoiceMemoryError(Exception):
    """Base exception for the invoice memory engine."""
    pass


class MalformedTimestampError(InvoiceMemoryError):
    """A memory carries a lastUpdated value that cannot be parsed."""

    def __init__(self, memory_id: str, value):
        self.memory_id = memory_id
        self.value = value
        super().__init__(f"Memory '{memory_id}' has malformed lastUpdated: {value!r}")


class PersistenceError(InvoiceMemoryError):
    """The memory store could not be read or written."""
    pass


class UnknownPatternError(InvoiceMemoryError):
    """A correction field has no registered pattern for its vendor."""

    def __init__(self, vendor: str, field: str):
        self.vendor = vendor
        self.field = field
        super().__init__(f"No pattern registered for field '{field}' of vendor '{vendor}'")


class RuleRegistrationError(InvoiceMemoryError):
    """A rule conflicts with one already registered for the same vendor."""
    pass
