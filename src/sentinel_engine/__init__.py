"""Sentinel: adaptive multi-tier threat detection.

Public API::

    from sentinel_engine import build_engine, FeatureInput, UserProfile

    engine = build_engine()
    verdict = await engine.detect(FeatureInput(text=..., context=...), UserProfile(age=9))
"""

from sentinel_engine.engine import EngineMetrics, SentinelEngine, build_engine
from sentinel_engine.errors import (
    ConfidenceInvariantError,
    InputInvalidError,
    PatternStoreCorruptError,
    ResourceMonitorUnavailableError,
    SentinelError,
    TierUnavailableError,
)
from sentinel_engine.models import (
    ContextTag,
    FeatureInput,
    FeedbackRecord,
    OperatingTier,
    PatternFamily,
    ProfileCategory,
    Severity,
    ThreatAction,
    UserProfile,
    Verdict,
)

__version__ = "0.1.0"

__all__ = [
    "ConfidenceInvariantError",
    "ContextTag",
    "EngineMetrics",
    "FeatureInput",
    "FeedbackRecord",
    "InputInvalidError",
    "OperatingTier",
    "PatternFamily",
    "PatternStoreCorruptError",
    "ProfileCategory",
    "ResourceMonitorUnavailableError",
    "SentinelEngine",
    "SentinelError",
    "Severity",
    "ThreatAction",
    "TierUnavailableError",
    "UserProfile",
    "Verdict",
    "build_engine",
]
