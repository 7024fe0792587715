"""Data models for the threat detection pipeline."""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sentinel_engine.errors import InputInvalidError


class ContextTag(StrEnum):
    """Where an event was captured."""

    CONVERSATION = "conversation"
    TRANSACTION = "transaction"
    BROWSING = "browsing"
    SOCIAL_MEDIA = "social_media"
    NETWORK = "network"


class ProfileCategory(StrEnum):
    """User categories; also used as the resolved age group."""

    CHILD = "child"
    TEEN = "teen"
    YOUNG_ADULT = "young_adult"
    ADULT = "adult"
    SENIOR = "senior"
    UNSPECIFIED = "unspecified"


class PatternFamily(StrEnum):
    """Named categories of threat heuristics."""

    PHISHING_URL = "phishing_url"
    TRANSACTION_ANOMALY = "transaction_anomaly"
    FINANCIAL_SCAM = "financial_scam"
    INVESTMENT_SCAM = "investment_scam"
    SOCIAL_ENGINEERING = "social_engineering"
    GROOMING_ATTEMPT = "grooming_attempt"
    HARASSMENT = "harassment"
    CRISIS_SIGNAL = "crisis_signal"
    VIOLENCE_INDICATOR = "violence_indicator"


# Families whose emergency floor escalates regardless of weighting.
EMERGENCY_FAMILIES: frozenset[PatternFamily] = frozenset(
    {PatternFamily.CRISIS_SIGNAL, PatternFamily.VIOLENCE_INDICATOR}
)


class Severity(StrEnum):
    """Verdict severity, ordered from ``SAFE`` to ``EMERGENCY``."""

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> Severity:
        """Return the severity at *rank*, clamped to the ladder."""
        return _SEVERITY_ORDER[max(0, min(rank, len(_SEVERITY_ORDER) - 1))]


_SEVERITY_ORDER: tuple[Severity, ...] = tuple(Severity)


class OperatingTier(StrEnum):
    """Resource-governed operating mode."""

    CONSERVING = "conserving"
    BALANCED = "balanced"
    FULL = "full"

    @property
    def rank(self) -> int:
        """Capability rank: higher means more detector stages enabled."""
        return _TIER_ORDER.index(self)


_TIER_ORDER: tuple[OperatingTier, ...] = tuple(OperatingTier)


class ThreatAction(StrEnum):
    """Action recommended to the caller."""

    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"
    ESCALATE = "escalate"  # Emergency escalation


class NotifyTarget(StrEnum):
    """Who should be told about a verdict."""

    USER = "user"
    GUARDIAN = "guardian"
    FAMILY = "family"
    EMERGENCY_CONTACTS = "emergency_contacts"


class DetectionStage(StrEnum):
    """Which tier produced a per-family result."""

    FAST = "fast"
    DEEP = "deep"


class PatternState(StrEnum):
    """Lifecycle of a stored pattern."""

    NEW = "new"
    ACTIVE = "active"
    DECAYING = "decaying"
    EVICTED = "evicted"


class FeedbackOutcome(StrEnum):
    """How user feedback relates to the original verdict."""

    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class FeatureInput:
    """Structured, domain-tagged description of one event."""

    text: str = ""
    urls: tuple[str, ...] = ()
    amount: float | None = None
    sender: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    context: ContextTag | None = None

    def __post_init__(self) -> None:
        # Accept any iterable of URLs but store an immutable tuple
        if not isinstance(self.urls, tuple):
            object.__setattr__(self, "urls", tuple(self.urls))

    def validate(self) -> None:
        """Raise :class:`InputInvalidError` if the input is malformed."""
        if self.context is None:
            raise InputInvalidError("feature input is missing its context tag")
        if not isinstance(self.context, ContextTag):
            raise InputInvalidError(f"unknown context tag: {self.context!r}")
        if not isinstance(self.text, str):
            raise InputInvalidError("text must be a string")
        if any(not isinstance(url, str) for url in self.urls):
            raise InputInvalidError("urls must be strings")
        if self.amount is not None:
            if isinstance(self.amount, bool) or not isinstance(self.amount, int | float):
                raise InputInvalidError("amount must be numeric")
            if not math.isfinite(self.amount):
                raise InputInvalidError("amount must be finite")
        if self.sender is not None and not isinstance(self.sender, str):
            raise InputInvalidError("sender must be a string")
        if not isinstance(self.timestamp, datetime):
            raise InputInvalidError("timestamp must be a datetime")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeatureInput:
        """Build an input from a loosely-typed mapping.

        Raises:
            InputInvalidError: If a field cannot be interpreted.
        """
        raw_context = data.get("context") or data.get("type")
        if raw_context is None:
            raise InputInvalidError("feature input is missing its context tag")
        try:
            context = ContextTag(raw_context)
        except ValueError as e:
            raise InputInvalidError(f"unknown context tag: {raw_context!r}") from e

        raw_ts = data.get("timestamp")
        timestamp: datetime
        try:
            if raw_ts is None:
                timestamp = _utcnow()
            elif isinstance(raw_ts, datetime):
                timestamp = raw_ts
            elif isinstance(raw_ts, int | float):
                timestamp = datetime.fromtimestamp(raw_ts, UTC)
            else:
                timestamp = datetime.fromisoformat(str(raw_ts))
        except (ValueError, OverflowError, OSError) as e:
            raise InputInvalidError(f"invalid timestamp: {raw_ts!r}") from e

        raw_amount = data.get("amount")
        amount: float | None = None
        if raw_amount is not None:
            try:
                amount = float(raw_amount)
            except (TypeError, ValueError) as e:
                raise InputInvalidError(f"invalid amount: {raw_amount!r}") from e

        raw_urls = data.get("urls") or ()
        if isinstance(raw_urls, str):
            raw_urls = (raw_urls,)

        feature_input = cls(
            text=data.get("text") or "",
            urls=tuple(raw_urls),
            amount=amount,
            sender=data.get("sender"),
            timestamp=timestamp,
            context=context,
        )
        feature_input.validate()
        return feature_input


@dataclass(frozen=True)
class UserProfile:
    """Who the engine is protecting.

    ``category`` overrides the age-derived group when it is not
    ``UNSPECIFIED``.
    """

    age: int | None = None
    category: ProfileCategory = ProfileCategory.UNSPECIFIED

    def __post_init__(self) -> None:
        if self.age is not None and (
            isinstance(self.age, bool) or not isinstance(self.age, int) or self.age < 0
        ):
            raise InputInvalidError(f"age must be a non-negative integer, got {self.age!r}")
        try:
            object.__setattr__(self, "category", ProfileCategory(self.category))
        except ValueError:
            raise InputInvalidError(f"unknown profile category: {self.category!r}") from None

    @property
    def age_group(self) -> ProfileCategory:
        """Resolved group; never ``UNSPECIFIED``."""
        if self.category != ProfileCategory.UNSPECIFIED:
            return self.category
        if self.age is None:
            return ProfileCategory.ADULT
        return age_group_for(self.age)


def age_group_for(age: int) -> ProfileCategory:
    """Map an age in years to its group."""
    if age <= 12:
        return ProfileCategory.CHILD
    if age <= 17:
        return ProfileCategory.TEEN
    if age <= 24:
        return ProfileCategory.YOUNG_ADULT
    if age <= 59:
        return ProfileCategory.ADULT
    return ProfileCategory.SENIOR


# ---------------------------------------------------------------------------
# Tier results
# ---------------------------------------------------------------------------


@dataclass
class FamilySignal:
    """A single indicator matched by a family detector."""

    family: PatternFamily
    indicator: str
    score: float  # 0.0 - 1.0


@dataclass(frozen=True)
class ScreeningResult:
    """Output of the fast screening tier."""

    family_scores: Mapping[PatternFamily, float]
    forwarded: tuple[PatternFamily, ...] = ()
    indicators: Mapping[PatternFamily, tuple[str, ...]] = field(default_factory=dict)
    timed_out: tuple[PatternFamily, ...] = ()
    elapsed_ms: float = 0.0

    @property
    def max_score(self) -> float:
        return max(self.family_scores.values(), default=0.0)

    @property
    def top_family(self) -> PatternFamily | None:
        if not self.family_scores:
            return None
        family, score = max(self.family_scores.items(), key=lambda item: item[1])
        return family if score > 0 else None


@dataclass(frozen=True)
class DeepResult:
    """Output of the deep classification tier."""

    category: PatternFamily | None
    confidence: float
    family_confidences: Mapping[PatternFamily, float] = field(default_factory=dict)
    details: Mapping[str, Any] = field(default_factory=dict)
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class TierResult:
    """Per-family contribution recorded on a verdict."""

    stage: DetectionStage
    family: PatternFamily
    confidence: float
    penalized: bool = False


@dataclass(frozen=True)
class RecommendedAction:
    """What the caller should do with an event."""

    action: ThreatAction
    notify: tuple[NotifyTarget, ...] = ()
    allow_override: bool = False
    message: str = ""
    steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class Verdict:
    """The final, immutable decision for one input."""

    threat_detected: bool
    severity: Severity
    primary_category: PatternFamily | None
    confidence: float
    recommended_action: RecommendedAction
    tier_results: tuple[TierResult, ...] = ()
    degraded: bool = False
    operating_tier: OperatingTier = OperatingTier.BALANCED
    signature: str = ""
    processing_time_ms: float = 0.0
    verdict_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "verdict_id": self.verdict_id,
            "threat_detected": self.threat_detected,
            "severity": self.severity.value,
            "primary_category": self.primary_category.value if self.primary_category else None,
            "confidence": round(self.confidence, 4),
            "action": self.recommended_action.action.value,
            "notify": [t.value for t in self.recommended_action.notify],
            "degraded": self.degraded,
            "operating_tier": self.operating_tier.value,
            "signature": self.signature,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "timestamp": self.timestamp.isoformat(),
            "tier_results": [
                {
                    "stage": r.stage.value,
                    "family": r.family.value,
                    "confidence": round(r.confidence, 4),
                    "penalized": r.penalized,
                }
                for r in self.tier_results
            ],
        }


@dataclass(frozen=True)
class FeedbackRecord:
    """User-asserted ground truth for an earlier verdict."""

    verdict_id: str
    asserted_threat: bool
    outcome: FeedbackOutcome
    timestamp: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Pattern store
# ---------------------------------------------------------------------------


@dataclass
class PatternEntry:
    """A learned threat signature.

    ``anchor_confidence`` is the confidence at the last reinforcement or
    feedback; decay is computed from it so a decay pass depends only on
    the current time.
    """

    signature: str
    family: PatternFamily
    confidence: float
    occurrences: int = 1
    first_seen: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)
    state: PatternState = PatternState.NEW
    anchor_confidence: float | None = None
    feedback_bias: int = 0  # -1, 0 or +1 severity rung

    def __post_init__(self) -> None:
        if self.anchor_confidence is None:
            self.anchor_confidence = self.confidence

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "signature": self.signature,
            "family": self.family.value,
            "confidence": self.confidence,
            "occurrences": self.occurrences,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "state": self.state.value,
            "anchor_confidence": self.anchor_confidence,
            "feedback_bias": self.feedback_bias,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PatternEntry:
        """Rebuild an entry from :meth:`to_dict` output."""
        return cls(
            signature=str(data["signature"]),
            family=PatternFamily(data["family"]),
            confidence=float(data["confidence"]),
            occurrences=int(data["occurrences"]),
            first_seen=datetime.fromisoformat(data["first_seen"]),
            last_seen=datetime.fromisoformat(data["last_seen"]),
            state=PatternState(data["state"]),
            anchor_confidence=float(data["anchor_confidence"]),
            feedback_bias=int(data.get("feedback_bias", 0)),
        )
