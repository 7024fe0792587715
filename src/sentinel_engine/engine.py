"""Engine facade: orchestrates the detection tiers for each input.

Each detection reads the operating tier once, screens the enabled pattern
families, classifies the forwarded ones within the tier's deep budget and
hands both results to the decision aggregator. Verdicts are then archived
by the learning loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sentinel_engine.aggregation import DecisionAggregator
from sentinel_engine.config import Settings, get_settings
from sentinel_engine.detection.classification import (
    ClassificationContext,
    DeepClassifier,
    HeuristicDeepClassifier,
)
from sentinel_engine.detection.families import CHEAP_FAMILIES
from sentinel_engine.detection.forensics import log_detection_event
from sentinel_engine.detection.ollama import OllamaDeepClassifier
from sentinel_engine.detection.screening import FastScreener
from sentinel_engine.errors import ConfidenceInvariantError, TierUnavailableError
from sentinel_engine.learning.backends import (
    InMemoryPatternBackend,
    PatternBackend,
    SQLitePatternBackend,
)
from sentinel_engine.learning.loop import LearningLoop, SensitivityNudges
from sentinel_engine.learning.sanitize import sanitize_input, signature_for
from sentinel_engine.learning.store import DecayReport, PatternStore
from sentinel_engine.logging import get_logger
from sentinel_engine.models import (
    EMERGENCY_FAMILIES,
    FeatureInput,
    FeedbackRecord,
    OperatingTier,
    PatternFamily,
    UserProfile,
    Verdict,
)
from sentinel_engine.policy import PolicyEngine, PolicyThresholds, domain_for
from sentinel_engine.resources.monitor import ResourceMonitor, TierListener

log = get_logger("sentinel_engine.engine")

# Screening thresholds never tune outside this range.
_MIN_SCREENING_THRESHOLD = 0.05
_MAX_SCREENING_THRESHOLD = 0.95


@dataclass(frozen=True)
class EngineMetrics:
    """Read-only view of engine activity."""

    total_detections: int
    threats_detected: int
    accuracy_estimate: float | None
    average_latency_ms: float
    pattern_store_size: int
    current_tier: OperatingTier
    degraded_detections: int
    feedback_count: int
    false_positives: int
    false_negatives: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_detections": self.total_detections,
            "threats_detected": self.threats_detected,
            "accuracy_estimate": (
                round(self.accuracy_estimate, 4) if self.accuracy_estimate is not None else None
            ),
            "average_latency_ms": round(self.average_latency_ms, 2),
            "pattern_store_size": self.pattern_store_size,
            "current_tier": self.current_tier.value,
            "degraded_detections": self.degraded_detections,
            "feedback_count": self.feedback_count,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
        }


class SentinelEngine:
    """Adaptive multi-tier threat detection engine.

    Collaborators are injected so several engines (e.g. one per tenant) can
    run side by side without shared state.
    """

    def __init__(
        self,
        *,
        monitor: ResourceMonitor,
        policy: PolicyEngine,
        store: PatternStore,
        screener: FastScreener | None = None,
        classifier: DeepClassifier | None = None,
        learning: LearningLoop | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._monitor = monitor
        self._policy = policy
        self._store = store
        self._screener = screener or FastScreener(ceiling_ms=settings.fast_ceiling_ms)
        self._classifier: DeepClassifier = classifier or HeuristicDeepClassifier()
        self._learning = learning or LearningLoop(
            store,
            nudges=SensitivityNudges(
                step=settings.nudge_step,
                cap=settings.nudge_cap,
                cooldown=timedelta(hours=settings.nudge_cooldown_hours),
            ),
            history_size=settings.history_size,
            accuracy_target=settings.accuracy_target,
            latency_budget_ms=settings.latency_budget_ms,
        )
        self._aggregator = DecisionAggregator(
            policy,
            conserving_penalty=settings.conserving_penalty,
            degraded_penalty=settings.degraded_penalty,
        )
        self._deep_ceilings_ms: Mapping[OperatingTier, float] = {
            OperatingTier.FULL: settings.deep_ceiling_full_ms,
            OperatingTier.BALANCED: settings.deep_ceiling_balanced_ms,
            OperatingTier.CONSERVING: settings.deep_ceiling_conserving_ms,
        }
        self._balanced_deep_families = settings.balanced_deep_families
        self._maintenance_interval = settings.maintenance_interval_seconds

        self._total_detections = 0
        self._threats_detected = 0
        self._degraded_detections = 0
        self._average_latency_ms = 0.0

        self._running = False
        self._maintenance_task: asyncio.Task[None] | None = None

        log.info(
            "sentinel_engine_initialized",
            classifier=type(self._classifier).__name__,
            tier=self._monitor.current_tier.value,
        )

    @property
    def learning(self) -> LearningLoop:
        return self._learning

    @property
    def store(self) -> PatternStore:
        return self._store

    @property
    def monitor(self) -> ResourceMonitor:
        return self._monitor

    @property
    def is_running(self) -> bool:
        return self._running

    def add_tier_listener(self, listener: TierListener) -> None:
        """Register a mode-switch hook called as ``listener(old, new)``."""
        self._monitor.add_listener(listener)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect(self, feature_input: FeatureInput, profile: UserProfile) -> Verdict:
        """Evaluate one input for *profile*.

        Raises:
            InputInvalidError: If the input is malformed. No verdict is
                produced; the event must be treated as unknown.
        """
        start = time.perf_counter()
        feature_input.validate()

        tier = self._monitor.current_tier
        thresholds = self._policy.thresholds(profile, domain_for(feature_input.context))
        screening_threshold = min(
            _MAX_SCREENING_THRESHOLD,
            max(
                _MIN_SCREENING_THRESHOLD,
                thresholds.screening_threshold + self._learning.screening_offset,
            ),
        )

        screening = await self._screener.screen(
            feature_input,
            self._enabled_families(tier, thresholds),
            screening_threshold,
        )

        sanitized = sanitize_input(feature_input)
        signature = signature_for(sanitized, screening.indicators)
        known_pattern = self._store.get(signature)

        deep = None
        degraded = False
        deep_families = self._deep_families(tier, thresholds, screening.forwarded)
        if deep_families:
            context = ClassificationContext(
                families=deep_families,
                priority_families=thresholds.priority_families,
                context_tag=feature_input.context,
            )
            ceiling_ms = self._deep_ceilings_ms[tier]
            try:
                deep = await asyncio.wait_for(
                    self._classifier.classify(feature_input, screening, context),
                    timeout=ceiling_ms / 1000,
                )
            except TierUnavailableError as e:
                degraded = True
                log.warning("deep_tier_unavailable", error=str(e))
            except TimeoutError:
                degraded = True
                log.warning("deep_tier_timeout", ceiling_ms=ceiling_ms, tier=tier.value)
            except ConfidenceInvariantError:
                raise
            except Exception as e:
                degraded = True
                log.error("deep_tier_failed", error=str(e))

        verdict = self._aggregator.decide(
            screening,
            deep,
            profile,
            feature_input.context,
            nudges=self._learning.nudges.current(),
            known_pattern=known_pattern,
            degraded=degraded,
            operating_tier=tier,
            signature=signature,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000
        verdict = dataclasses.replace(verdict, processing_time_ms=elapsed_ms)

        self._update_metrics(verdict)
        await self._learning.record(verdict, sanitized, family_hint=screening.top_family)
        log_detection_event(feature_input=feature_input, verdict=verdict)

        log.debug(
            "detection_complete",
            verdict_id=verdict.verdict_id,
            severity=verdict.severity.value,
            tier=tier.value,
            deep_families=[f.value for f in deep_families],
            degraded=degraded,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return verdict

    def _enabled_families(
        self, tier: OperatingTier, thresholds: PolicyThresholds
    ) -> frozenset[PatternFamily]:
        families = self._screener.families
        if tier != OperatingTier.CONSERVING:
            return families
        essential = CHEAP_FAMILIES | EMERGENCY_FAMILIES | frozenset(thresholds.priority_families)
        return families & essential

    def _deep_families(
        self,
        tier: OperatingTier,
        thresholds: PolicyThresholds,
        forwarded: tuple[PatternFamily, ...],
    ) -> tuple[PatternFamily, ...]:
        if tier == OperatingTier.FULL:
            return forwarded
        if tier == OperatingTier.BALANCED:
            return forwarded[: self._balanced_deep_families]
        return tuple(
            f for f in forwarded if thresholds.is_priority(f) or f in EMERGENCY_FAMILIES
        )

    def _update_metrics(self, verdict: Verdict) -> None:
        self._total_detections += 1
        if verdict.threat_detected:
            self._threats_detected += 1
        if verdict.degraded:
            self._degraded_detections += 1
        if self._total_detections == 1:
            self._average_latency_ms = verdict.processing_time_ms
        else:
            self._average_latency_ms = (
                self._average_latency_ms * 0.9 + verdict.processing_time_ms * 0.1
            )

    # ------------------------------------------------------------------
    # Feedback and metrics
    # ------------------------------------------------------------------

    async def provide_feedback(
        self, verdict_id: str, asserted_truth: bool
    ) -> FeedbackRecord | None:
        """Record whether a verdict's threat assessment was right.

        Returns:
            The feedback record, or ``None`` if the verdict is unknown.
        """
        return await self._learning.apply_feedback(verdict_id, asserted_truth)

    def get_metrics(self) -> EngineMetrics:
        """Snapshot of engine metrics; no side effects."""
        return EngineMetrics(
            total_detections=self._total_detections,
            threats_detected=self._threats_detected,
            accuracy_estimate=self._learning.accuracy_estimate(),
            average_latency_ms=self._average_latency_ms,
            pattern_store_size=self._store.size,
            current_tier=self._monitor.current_tier,
            degraded_detections=self._degraded_detections,
            feedback_count=self._learning.feedback_count,
            false_positives=self._learning.false_positives,
            false_negatives=self._learning.false_negatives,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run_maintenance(self) -> DecayReport:
        """Decay stale patterns, tune screening and persist the store."""
        report = await self._store.decay_pass()
        self._learning.tune_screening(self._average_latency_ms)
        await self._store.save()
        return report

    async def start(self) -> None:
        """Load persisted patterns and start the background loops."""
        if self._running:
            log.warning("sentinel_engine_already_running")
            return

        loaded = await self._store.load()
        await self._monitor.start()
        self._running = True
        self._maintenance_task = asyncio.create_task(self._run_maintenance_loop())
        log.info("sentinel_engine_started", patterns_loaded=loaded)

    async def stop(self) -> None:
        """Stop the background loops and persist the store."""
        self._running = False
        task = self._maintenance_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._maintenance_task = None
        await self._monitor.stop()

        try:
            await self._store.save()
        except Exception as e:
            log.error("pattern_store_save_failed", error=str(e))

        close = getattr(self._classifier, "close", None)
        if close is not None:
            await close()
        log.info("sentinel_engine_stopped")

    async def _run_maintenance_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._maintenance_interval)
            try:
                await self.run_maintenance()
            except ConfidenceInvariantError:
                raise
            except Exception as e:
                log.error("maintenance_error", error=str(e))


def build_engine(settings: Settings | None = None) -> SentinelEngine:
    """Wire an engine from settings with the default collaborators."""
    settings = settings or get_settings()

    monitor = ResourceMonitor(
        interval_seconds=settings.monitor_interval_seconds,
        high_water=settings.monitor_high_water,
        low_water=settings.monitor_low_water,
        power_critical=settings.monitor_power_critical,
        upgrade_samples=settings.monitor_upgrade_samples,
    )

    backend: PatternBackend
    if settings.pattern_db_path:
        backend = SQLitePatternBackend(settings.pattern_db_path)
    else:
        backend = InMemoryPatternBackend()

    store = PatternStore(
        backend,
        start_confidence=settings.pattern_start_confidence,
        reinforcement_step=settings.pattern_reinforcement_step,
        max_confidence=settings.pattern_max_confidence,
        retention=timedelta(days=settings.pattern_retention_days),
        decay_rate=settings.pattern_decay_rate,
        floor=settings.pattern_floor,
        grace=timedelta(days=settings.pattern_grace_days),
        feedback_step=settings.feedback_step,
    )

    classifier: DeepClassifier
    if settings.deep_backend == "ollama":
        classifier = OllamaDeepClassifier(settings)
    else:
        classifier = HeuristicDeepClassifier()

    return SentinelEngine(
        monitor=monitor,
        policy=PolicyEngine(),
        store=store,
        classifier=classifier,
        settings=settings,
    )
