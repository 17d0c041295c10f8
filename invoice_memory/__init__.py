"""
Memory-driven invoice normalization: recall vendor correction memories,
apply them, decide between automation and escalation, learn from verdicts.
"""

from .core.config import VERSION

__version__ = VERSION
