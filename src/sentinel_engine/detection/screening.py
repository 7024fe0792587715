"""Fast screening tier.

Runs every enabled family detector concurrently on worker threads and joins
the results before anything is forwarded to the deep tier. Each family is
bounded by the same hard latency ceiling regardless of operating tier.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping

from sentinel_engine.detection.families import DEFAULT_DETECTORS, FamilyDetector, FamilyScore
from sentinel_engine.logging import get_logger
from sentinel_engine.models import FeatureInput, PatternFamily, ScreeningResult

log = get_logger("sentinel_engine.detection.screening")


class FastScreener:
    """Always-on screening gate over the pattern families."""

    def __init__(
        self,
        detectors: Mapping[PatternFamily, FamilyDetector] | None = None,
        *,
        ceiling_ms: float = 50.0,
    ) -> None:
        self._detectors = dict(detectors if detectors is not None else DEFAULT_DETECTORS)
        self._ceiling_ms = ceiling_ms

    @property
    def families(self) -> frozenset[PatternFamily]:
        return frozenset(self._detectors)

    async def screen(
        self,
        feature_input: FeatureInput,
        enabled_families: Iterable[PatternFamily],
        screening_threshold: float,
    ) -> ScreeningResult:
        """Score every enabled family and select the ones to forward.

        Args:
            feature_input: The event to screen.
            enabled_families: Families allowed in the current operating tier.
            screening_threshold: Families scoring strictly above this are
                forwarded to the deep tier.

        Returns:
            ScreeningResult with per-family scores, forwarded families
            (highest score first) and any families that missed the ceiling.
        """
        start = time.perf_counter()
        families = [f for f in self._detectors if f in set(enabled_families)]

        outcomes = await asyncio.gather(
            *(self._screen_family(family, feature_input) for family in families)
        )

        family_scores: dict[PatternFamily, float] = {}
        indicators: dict[PatternFamily, tuple[str, ...]] = {}
        timed_out: list[PatternFamily] = []
        for family, outcome in zip(families, outcomes, strict=True):
            if outcome is None:
                family_scores[family] = 0.0
                timed_out.append(family)
                continue
            family_scores[family] = outcome.score
            if outcome.signals:
                indicators[family] = outcome.indicators

        forwarded = tuple(
            family
            for family, score in sorted(
                family_scores.items(), key=lambda item: item[1], reverse=True
            )
            if score > screening_threshold
        )
        elapsed_ms = (time.perf_counter() - start) * 1000

        if timed_out:
            log.warning(
                "screening_families_timed_out",
                families=[f.value for f in timed_out],
                ceiling_ms=self._ceiling_ms,
            )
        log.debug(
            "screening_complete",
            families=len(families),
            forwarded=[f.value for f in forwarded],
            elapsed_ms=round(elapsed_ms, 2),
        )
        return ScreeningResult(
            family_scores=family_scores,
            forwarded=forwarded,
            indicators=indicators,
            timed_out=tuple(timed_out),
            elapsed_ms=elapsed_ms,
        )

    async def _screen_family(
        self, family: PatternFamily, feature_input: FeatureInput
    ) -> FamilyScore | None:
        detector = self._detectors[family]
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(detector.screen, feature_input),
                timeout=self._ceiling_ms / 1000,
            )
        except TimeoutError:
            return None
