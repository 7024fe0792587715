"""Deep classification tier.

Only families forwarded by the fast screening tier reach this stage. The
default classifier corroborates each forwarded family with structural
evidence from the input; any classifier implementing
:class:`DeepClassifier` can be injected instead.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from sentinel_engine.detection.families import extract_urls
from sentinel_engine.logging import get_logger
from sentinel_engine.models import (
    ContextTag,
    DeepResult,
    FeatureInput,
    PatternFamily,
    ScreeningResult,
)

log = get_logger("sentinel_engine.detection.classification")


@dataclass(frozen=True)
class ClassificationContext:
    """What the deep tier is asked to classify."""

    families: tuple[PatternFamily, ...]
    priority_families: tuple[PatternFamily, ...] = ()
    context_tag: ContextTag | None = None


class DeepClassifier(Protocol):
    """Contract for deep classifiers.

    Implementations raise :class:`~sentinel_engine.errors.TierUnavailableError`
    when they cannot produce a result.
    """

    async def classify(
        self,
        feature_input: FeatureInput,
        screening: ScreeningResult,
        context: ClassificationContext,
    ) -> DeepResult: ...


# Contexts in which a family's signals are expected to appear.
_NATIVE_CONTEXTS: dict[PatternFamily, frozenset[ContextTag]] = {
    PatternFamily.PHISHING_URL: frozenset(
        {ContextTag.BROWSING, ContextTag.CONVERSATION, ContextTag.SOCIAL_MEDIA}
    ),
    PatternFamily.TRANSACTION_ANOMALY: frozenset({ContextTag.TRANSACTION}),
    PatternFamily.FINANCIAL_SCAM: frozenset(
        {ContextTag.TRANSACTION, ContextTag.CONVERSATION}
    ),
    PatternFamily.INVESTMENT_SCAM: frozenset(
        {ContextTag.SOCIAL_MEDIA, ContextTag.CONVERSATION, ContextTag.TRANSACTION}
    ),
    PatternFamily.SOCIAL_ENGINEERING: frozenset(
        {ContextTag.CONVERSATION, ContextTag.NETWORK}
    ),
    PatternFamily.GROOMING_ATTEMPT: frozenset(
        {ContextTag.CONVERSATION, ContextTag.SOCIAL_MEDIA}
    ),
    PatternFamily.HARASSMENT: frozenset({ContextTag.CONVERSATION, ContextTag.SOCIAL_MEDIA}),
    PatternFamily.CRISIS_SIGNAL: frozenset(
        {ContextTag.CONVERSATION, ContextTag.SOCIAL_MEDIA, ContextTag.BROWSING}
    ),
    PatternFamily.VIOLENCE_INDICATOR: frozenset(
        {ContextTag.CONVERSATION, ContextTag.SOCIAL_MEDIA}
    ),
}

_CONTEXT_BONUS = 0.05
_CO_OCCURRENCE_BONUS = 0.05
_CO_OCCURRENCE_MAX = 0.10
_STRUCTURE_BONUS = 0.05
_UNCORROBORATED_PENALTY = 0.10


def pick_category(
    confidences: Mapping[PatternFamily, float],
    priority_families: tuple[PatternFamily, ...] = (),
) -> PatternFamily | None:
    """Highest-confidence family, ties broken by priority ordering."""
    if not confidences:
        return None

    def rank(family: PatternFamily) -> int:
        if family in priority_families:
            return priority_families.index(family)
        return len(priority_families) + list(PatternFamily).index(family)

    best = max(confidences.values())
    tied = [f for f, c in confidences.items() if c == best]
    return min(tied, key=rank)


class HeuristicDeepClassifier:
    """Rule-based deep classifier.

    Starts from each family's screening score and adjusts it by how well
    the rest of the input corroborates it: indicator co-occurrence, context
    alignment and structural evidence such as URLs or amounts. A family
    resting on a single weak indicator is marked down.
    """

    async def classify(
        self,
        feature_input: FeatureInput,
        screening: ScreeningResult,
        context: ClassificationContext,
    ) -> DeepResult:
        start = time.perf_counter()
        confidences: dict[PatternFamily, float] = {}
        evidence: dict[str, list[str]] = {}

        for family in context.families:
            base = screening.family_scores.get(family, 0.0)
            indicators = screening.indicators.get(family, ())
            adjustment, reasons = self._corroborate(
                family, feature_input, indicators, base, context.context_tag
            )
            confidences[family] = min(1.0, max(0.0, base + adjustment))
            evidence[family.value] = reasons

        category = pick_category(confidences, context.priority_families)
        confidence = confidences[category] if category else 0.0
        elapsed_ms = (time.perf_counter() - start) * 1000

        log.debug(
            "deep_classification_complete",
            category=category.value if category else None,
            confidence=round(confidence, 3),
            families=len(confidences),
        )
        return DeepResult(
            category=category,
            confidence=confidence,
            family_confidences=confidences,
            details={"evidence": evidence, "backend": "heuristic"},
            elapsed_ms=elapsed_ms,
        )

    def _corroborate(
        self,
        family: PatternFamily,
        feature_input: FeatureInput,
        indicators: tuple[str, ...],
        base: float,
        context_tag: ContextTag | None,
    ) -> tuple[float, list[str]]:
        adjustment = 0.0
        reasons: list[str] = []

        if len(indicators) > 1:
            bonus = min(_CO_OCCURRENCE_MAX, _CO_OCCURRENCE_BONUS * (len(indicators) - 1))
            adjustment += bonus
            reasons.append("co_occurrence")
        elif base < 0.5:
            adjustment -= _UNCORROBORATED_PENALTY
            reasons.append("uncorroborated")

        if context_tag is not None and context_tag in _NATIVE_CONTEXTS.get(family, frozenset()):
            adjustment += _CONTEXT_BONUS
            reasons.append("context_aligned")

        if family == PatternFamily.PHISHING_URL and extract_urls(feature_input):
            adjustment += _STRUCTURE_BONUS
            reasons.append("url_present")
        elif (
            family in (PatternFamily.TRANSACTION_ANOMALY, PatternFamily.FINANCIAL_SCAM)
            and feature_input.amount is not None
        ):
            adjustment += _STRUCTURE_BONUS
            reasons.append("amount_present")

        return adjustment, reasons
