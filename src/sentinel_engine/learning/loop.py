"""Learning loop: detection history, user feedback and sensitivity tuning."""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sentinel_engine.learning.sanitize import SanitizedInput
from sentinel_engine.learning.store import PatternStore
from sentinel_engine.logging import get_logger
from sentinel_engine.models import FeedbackOutcome, FeedbackRecord, PatternFamily, Verdict

log = get_logger("sentinel_engine.learning.loop")


class SensitivityNudges:
    """Bounded, expiring per-family sensitivity adjustments.

    A positive nudge makes a family more sensitive. Each nudge is capped at
    ``cap`` in either direction and lapses ``cooldown`` after the most
    recent feedback that touched it.
    """

    def __init__(
        self,
        *,
        step: float = 0.05,
        cap: float = 0.2,
        cooldown: timedelta = timedelta(hours=24),
    ) -> None:
        self._step = step
        self._cap = cap
        self._cooldown = cooldown
        self._nudges: dict[PatternFamily, tuple[float, datetime]] = {}

    def adjust(self, family: PatternFamily, direction: int, now: datetime) -> float:
        """Move *family*'s nudge one step in *direction* (+1 or -1)."""
        current = self.value(family, now)
        value = max(-self._cap, min(self._cap, current + direction * self._step))
        self._nudges[family] = (value, now + self._cooldown)
        log.info(
            "sensitivity_nudged",
            family=family.value,
            nudge=round(value, 3),
            expires_at=(now + self._cooldown).isoformat(),
        )
        return value

    def value(self, family: PatternFamily, now: datetime) -> float:
        nudge = self._nudges.get(family)
        if nudge is None:
            return 0.0
        value, expires_at = nudge
        if now >= expires_at:
            del self._nudges[family]
            return 0.0
        return value

    def current(self, now: datetime | None = None) -> dict[PatternFamily, float]:
        """Active nudges at *now*."""
        now = now or datetime.now(UTC)
        return {
            family: value
            for family in list(self._nudges)
            if (value := self.value(family, now)) != 0.0
        }


@dataclass
class HistoryEntry:
    """A recent detection kept for resolving feedback."""

    verdict: Verdict
    sanitized: SanitizedInput
    family_hint: PatternFamily | None = None
    feedback: FeedbackRecord | None = None

    @property
    def family(self) -> PatternFamily | None:
        return self.verdict.primary_category or self.family_hint


class LearningLoop:
    """Feeds verdicts and feedback back into the pattern store."""

    def __init__(
        self,
        store: PatternStore,
        *,
        nudges: SensitivityNudges | None = None,
        history_size: int = 1000,
        accuracy_window: int = 50,
        min_feedback: int = 10,
        accuracy_target: float = 0.92,
        latency_budget_ms: float = 50.0,
        tuning_step: float = 0.05,
        tuning_bound: float = 0.1,
    ) -> None:
        self._store = store
        self._nudges = nudges or SensitivityNudges()
        self._history_size = history_size
        self._history: OrderedDict[str, HistoryEntry] = OrderedDict()
        self._recent_feedback: deque[bool] = deque(maxlen=accuracy_window)
        self._min_feedback = min_feedback
        self._accuracy_target = accuracy_target
        self._latency_budget_ms = latency_budget_ms
        self._tuning_step = tuning_step
        self._tuning_bound = tuning_bound
        self._screening_offset = 0.0

        self.feedback_count = 0
        self.false_positives = 0
        self.false_negatives = 0

    @property
    def store(self) -> PatternStore:
        return self._store

    @property
    def nudges(self) -> SensitivityNudges:
        return self._nudges

    @property
    def screening_offset(self) -> float:
        """Shift applied to every profile's screening threshold."""
        return self._screening_offset

    @property
    def history_length(self) -> int:
        return len(self._history)

    def lookup(self, verdict_id: str) -> HistoryEntry | None:
        return self._history.get(verdict_id)

    async def record(
        self,
        verdict: Verdict,
        sanitized: SanitizedInput,
        family_hint: PatternFamily | None = None,
    ) -> None:
        """Archive a verdict and learn from it if it flagged a threat."""
        self._history[verdict.verdict_id] = HistoryEntry(
            verdict=verdict, sanitized=sanitized, family_hint=family_hint
        )
        while len(self._history) > self._history_size:
            self._history.popitem(last=False)

        if verdict.threat_detected:
            await self._store.record_detection(verdict, sanitized, now=verdict.timestamp)

    async def apply_feedback(
        self,
        verdict_id: str,
        asserted_threat: bool,
        now: datetime | None = None,
    ) -> FeedbackRecord | None:
        """Apply user-asserted ground truth for an earlier verdict.

        Returns:
            The feedback record, or ``None`` if the verdict is unknown or
            has aged out of the history.
        """
        entry = self._history.get(verdict_id)
        if entry is None:
            log.warning("feedback_unknown_verdict", verdict_id=verdict_id)
            return None
        if entry.feedback is not None:
            log.info("feedback_already_recorded", verdict_id=verdict_id)
            return entry.feedback

        now = now or datetime.now(UTC)
        flagged = entry.verdict.threat_detected
        if flagged == asserted_threat:
            outcome = FeedbackOutcome.CONFIRMED
        elif flagged:
            outcome = FeedbackOutcome.FALSE_POSITIVE
        else:
            outcome = FeedbackOutcome.FALSE_NEGATIVE

        record = FeedbackRecord(
            verdict_id=verdict_id,
            asserted_threat=asserted_threat,
            outcome=outcome,
            timestamp=now,
        )
        entry.feedback = record
        self.feedback_count += 1
        self._recent_feedback.append(outcome == FeedbackOutcome.CONFIRMED)

        family = entry.family
        if outcome == FeedbackOutcome.FALSE_POSITIVE:
            self.false_positives += 1
        elif outcome == FeedbackOutcome.FALSE_NEGATIVE:
            self.false_negatives += 1

        # A confirmed safe verdict has no pattern to reinforce
        if flagged or asserted_threat:
            await self._store.apply_feedback(record, entry.verdict.signature, family, now=now)

        if family is not None and outcome != FeedbackOutcome.CONFIRMED:
            direction = 1 if outcome == FeedbackOutcome.FALSE_NEGATIVE else -1
            self._nudges.adjust(family, direction, now)

        log.info(
            "feedback_applied",
            verdict_id=verdict_id,
            outcome=outcome.value,
            family=family.value if family else None,
        )
        return record

    def accuracy_estimate(self) -> float | None:
        """Share of recent feedback that confirmed the verdict.

        ``None`` until enough feedback has been collected.
        """
        if len(self._recent_feedback) < self._min_feedback:
            return None
        return sum(self._recent_feedback) / len(self._recent_feedback)

    def tune_screening(self, average_latency_ms: float) -> float:
        """Adjust the screening offset from accuracy and latency.

        Low accuracy lowers screening thresholds so more inputs reach the
        deep tier; high latency raises them. The offset stays within
        ``+-tuning_bound``.
        """
        offset = self._screening_offset
        accuracy = self.accuracy_estimate()
        if accuracy is not None and accuracy < self._accuracy_target:
            offset -= self._tuning_step
        if average_latency_ms > self._latency_budget_ms:
            offset += self._tuning_step
        offset = max(-self._tuning_bound, min(self._tuning_bound, offset))

        if offset != self._screening_offset:
            log.info(
                "screening_offset_tuned",
                old_offset=round(self._screening_offset, 3),
                new_offset=round(offset, 3),
                accuracy=accuracy,
                average_latency_ms=round(average_latency_ms, 2),
            )
            self._screening_offset = offset
        return offset
