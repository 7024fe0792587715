"""Pattern store and learning loop."""

from sentinel_engine.learning.backends import (
    InMemoryPatternBackend,
    PatternBackend,
    SQLitePatternBackend,
)
from sentinel_engine.learning.loop import HistoryEntry, LearningLoop, SensitivityNudges
from sentinel_engine.learning.sanitize import SanitizedInput, sanitize_input, signature_for
from sentinel_engine.learning.store import DecayReport, PatternStore

__all__ = [
    "DecayReport",
    "HistoryEntry",
    "InMemoryPatternBackend",
    "LearningLoop",
    "PatternBackend",
    "PatternStore",
    "SQLitePatternBackend",
    "SanitizedInput",
    "SensitivityNudges",
    "sanitize_input",
    "signature_for",
]
