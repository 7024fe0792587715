"""Decision aggregator: combines tier outputs into a verdict."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from sentinel_engine.detection.classification import pick_category
from sentinel_engine.errors import check_confidence
from sentinel_engine.logging import get_logger
from sentinel_engine.models import (
    EMERGENCY_FAMILIES,
    ContextTag,
    DeepResult,
    DetectionStage,
    OperatingTier,
    PatternEntry,
    PatternFamily,
    PatternState,
    ScreeningResult,
    Severity,
    TierResult,
    UserProfile,
    Verdict,
)
from sentinel_engine.policy import PolicyEngine, domain_for

log = get_logger("sentinel_engine.aggregation")

# Severity ladder over policy-weighted confidence, highest rung first.
SEVERITY_LADDER: tuple[tuple[float, Severity], ...] = (
    (0.85, Severity.CRITICAL),
    (0.7, Severity.HIGH),
    (0.5, Severity.MEDIUM),
)


def ladder_severity(adjusted: float, action_threshold: float) -> Severity:
    """Map a weighted confidence to a severity rung."""
    if adjusted < action_threshold:
        return Severity.SAFE
    for floor, severity in SEVERITY_LADDER:
        if adjusted >= floor:
            return severity
    return Severity.LOW


@dataclass(frozen=True)
class _Candidate:
    family: PatternFamily
    stage: DetectionStage
    confidence: float
    penalized: bool
    adjusted: float


class DecisionAggregator:
    """Turns screening and deep results into a :class:`Verdict`.

    Pure: the only output is the verdict value.
    """

    def __init__(
        self,
        policy: PolicyEngine,
        *,
        conserving_penalty: float = 0.85,
        degraded_penalty: float = 0.75,
    ) -> None:
        self._policy = policy
        self._conserving_penalty = conserving_penalty
        self._degraded_penalty = degraded_penalty

    def decide(
        self,
        screening: ScreeningResult,
        deep: DeepResult | None,
        profile: UserProfile,
        context: ContextTag | None,
        *,
        nudges: Mapping[PatternFamily, float] | None = None,
        known_pattern: PatternEntry | None = None,
        degraded: bool = False,
        operating_tier: OperatingTier = OperatingTier.BALANCED,
        signature: str = "",
        processing_time_ms: float = 0.0,
    ) -> Verdict:
        """Aggregate tier results for one input.

        Args:
            screening: Fast tier output.
            deep: Deep tier output, or ``None`` if it did not run.
            profile: The protected user.
            context: Context tag of the input; selects the policy domain.
            nudges: Per-family sensitivity nudges from feedback.
            known_pattern: Stored pattern for this input's signature.
            degraded: The deep tier was expected but unavailable.
            operating_tier: Tier snapshot the detection ran under.
            signature: Signature of the sanitised input.
            processing_time_ms: Elapsed time so far.

        Returns:
            The immutable verdict.
        """
        thresholds = self._policy.thresholds(profile, domain_for(context))
        nudges = nudges or {}
        pattern = (
            known_pattern
            if known_pattern is not None and known_pattern.state != PatternState.EVICTED
            else None
        )

        candidates: dict[PatternFamily, _Candidate] = {}
        families = list(screening.forwarded)
        if pattern is not None and pattern.family not in families:
            families.append(pattern.family)

        deep_confidences = deep.family_confidences if deep is not None else {}
        for family in families:
            fast_score = screening.family_scores.get(family, 0.0)
            known = pattern.confidence if pattern is not None and pattern.family == family else 0.0
            stage = DetectionStage.FAST
            penalized = True
            if family in deep_confidences:
                stage = DetectionStage.DEEP
                confidence = max(deep_confidences[family], known)
                penalized = False
            elif degraded:
                # Stored patterns are penalized along with the fast score
                confidence = max(fast_score, known) * self._degraded_penalty
            elif family in screening.forwarded:
                confidence = max(fast_score * self._conserving_penalty, known)
            else:
                confidence = max(fast_score, known)
                penalized = False
            check_confidence(confidence, f"{family.value} confidence")

            nudge = nudges.get(family, 0.0)
            adjusted = min(1.0, max(0.0, confidence * thresholds.weight(family) * (1 + nudge)))
            candidates[family] = _Candidate(family, stage, confidence, penalized, adjusted)

        primary = pick_category(
            {f: c.adjusted for f, c in candidates.items()}, thresholds.priority_families
        )
        confidence = candidates[primary].adjusted if primary else 0.0
        severity = (
            ladder_severity(confidence, thresholds.action_threshold)
            if primary
            else Severity.SAFE
        )

        if pattern is not None and pattern.feedback_bias:
            biased = Severity.from_rank(severity.rank + pattern.feedback_bias)
            severity = min(biased, Severity.CRITICAL, key=lambda s: s.rank)

        emergency = self._emergency_family(screening, deep_confidences, thresholds.emergency_floors)
        if emergency is not None:
            severity = Severity.EMERGENCY
            primary = emergency
            if emergency in candidates:
                confidence = candidates[emergency].adjusted
            else:
                raw = max(
                    screening.family_scores.get(emergency, 0.0),
                    deep_confidences.get(emergency, 0.0),
                )
                confidence = min(1.0, raw * (self._degraded_penalty if degraded else 1.0))

        check_confidence(confidence, "verdict confidence")
        action = self._policy.action_for(thresholds.group, severity, primary)
        tier_results = tuple(
            TierResult(
                stage=c.stage, family=c.family, confidence=c.confidence, penalized=c.penalized
            )
            for c in sorted(candidates.values(), key=lambda c: c.adjusted, reverse=True)
        )

        log.debug(
            "verdict_decided",
            severity=severity.value,
            category=primary.value if primary else None,
            confidence=round(confidence, 3),
            degraded=degraded,
            group=thresholds.group.value,
        )
        return Verdict(
            threat_detected=severity != Severity.SAFE,
            severity=severity,
            primary_category=primary,
            confidence=confidence,
            recommended_action=action,
            tier_results=tier_results,
            degraded=degraded,
            operating_tier=operating_tier,
            signature=signature,
            processing_time_ms=processing_time_ms,
        )

    @staticmethod
    def _emergency_family(
        screening: ScreeningResult,
        deep_confidences: Mapping[PatternFamily, float],
        floors: Mapping[PatternFamily, float],
    ) -> PatternFamily | None:
        """Reserved family whose raw confidence crosses its emergency floor."""
        best: tuple[float, PatternFamily] | None = None
        for family in sorted(EMERGENCY_FAMILIES, key=list(PatternFamily).index):
            floor = floors.get(family)
            if floor is None:
                continue
            raw = max(
                screening.family_scores.get(family, 0.0),
                deep_confidences.get(family, 0.0),
            )
            if raw >= floor and (best is None or raw > best[0]):
                best = (raw, family)
        return best[1] if best else None
