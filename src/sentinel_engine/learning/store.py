"""Pattern store: learned threat signatures with decaying confidence.

Entries move through ``new -> active -> decaying -> evicted``. Concurrent
detections may read the store freely. Writes to one signature are
serialised by a per-signature lock, and :meth:`PatternStore.decay_pass`
holds the store exclusively so it never interleaves with a write.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sentinel_engine.errors import PatternStoreCorruptError, check_confidence
from sentinel_engine.learning.backends import InMemoryPatternBackend, PatternBackend
from sentinel_engine.learning.sanitize import SanitizedInput, signature_for
from sentinel_engine.logging import get_logger
from sentinel_engine.models import (
    FeedbackOutcome,
    FeedbackRecord,
    PatternEntry,
    PatternFamily,
    PatternState,
    Verdict,
)

log = get_logger("sentinel_engine.learning.store")


class _SharedExclusiveGate:
    """Async readers/writer gate: many shared holders or one exclusive.

    A waiting exclusive holder blocks new shared holders.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._shared = 0
        self._exclusive = False
        self._exclusive_waiting = 0

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._exclusive and self._exclusive_waiting == 0
            )
            self._shared += 1
        try:
            yield
        finally:
            async with self._cond:
                self._shared -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            self._exclusive_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._exclusive and self._shared == 0)
            finally:
                self._exclusive_waiting -= 1
                self._cond.notify_all()
            self._exclusive = True
        try:
            yield
        finally:
            async with self._cond:
                self._exclusive = False
                self._cond.notify_all()


@dataclass
class DecayReport:
    """Outcome of one decay pass."""

    decayed: int = 0
    evicted: int = 0
    remaining: int = 0


class PatternStore:
    """In-memory pattern table with an injectable persistence backend."""

    def __init__(
        self,
        backend: PatternBackend | None = None,
        *,
        start_confidence: float = 0.7,
        reinforcement_step: float = 0.01,
        max_confidence: float = 0.99,
        retention: timedelta = timedelta(days=7),
        decay_rate: float = 0.95,
        floor: float = 0.3,
        grace: timedelta = timedelta(days=28),
        feedback_step: float = 0.25,
    ) -> None:
        self._backend = backend if backend is not None else InMemoryPatternBackend()
        self._start_confidence = start_confidence
        self._reinforcement_step = reinforcement_step
        self._max_confidence = max_confidence
        self._retention = retention
        self._decay_rate = decay_rate
        self._floor = floor
        self._grace = grace
        self._feedback_step = feedback_step

        self._entries: dict[str, PatternEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._gate = _SharedExclusiveGate()
        self._evicted_total = 0

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def evicted_total(self) -> int:
        return self._evicted_total

    def get(self, signature: str) -> PatternEntry | None:
        """Copy of the entry for *signature*, if any."""
        entry = self._entries.get(signature)
        return dataclasses.replace(entry) if entry is not None else None

    def snapshot(self) -> list[PatternEntry]:
        """Copies of every live entry."""
        return [dataclasses.replace(e) for e in self._entries.values()]

    @asynccontextmanager
    async def _writing(self, signature: str) -> AsyncIterator[None]:
        """Hold the per-signature lock inside the shared gate.

        The lock is dropped once its last user leaves and no entry exists
        for the signature.
        """
        async with self._gate.shared():
            lock = self._locks.setdefault(signature, asyncio.Lock())
            self._lock_users[signature] = self._lock_users.get(signature, 0) + 1
            try:
                async with lock:
                    yield
            finally:
                users = self._lock_users.pop(signature) - 1
                if users:
                    self._lock_users[signature] = users
                elif signature not in self._entries:
                    self._locks.pop(signature, None)

    def _bounded(self, confidence: float) -> float:
        value = min(self._max_confidence, max(0.0, confidence))
        return check_confidence(value, "pattern confidence")

    def _reinforce(self, entry: PatternEntry, now: datetime) -> None:
        entry.confidence = self._bounded(entry.confidence + self._reinforcement_step)
        entry.anchor_confidence = entry.confidence
        entry.occurrences += 1
        entry.last_seen = now
        if entry.state in (PatternState.NEW, PatternState.DECAYING):
            entry.state = PatternState.ACTIVE

    def _create(
        self, signature: str, family: PatternFamily, confidence: float, now: datetime
    ) -> PatternEntry:
        entry = PatternEntry(
            signature=signature,
            family=family,
            confidence=self._bounded(confidence),
            first_seen=now,
            last_seen=now,
        )
        self._entries[signature] = entry
        return entry

    async def record_detection(
        self,
        verdict: Verdict,
        sanitized: SanitizedInput,
        now: datetime | None = None,
    ) -> PatternEntry | None:
        """Create or reinforce the pattern for a threat verdict.

        Returns:
            A copy of the updated entry, or ``None`` for non-threat verdicts.
        """
        if not verdict.threat_detected or verdict.primary_category is None:
            return None
        now = now or datetime.now(UTC)
        signature = verdict.signature or signature_for(sanitized, {})

        async with self._writing(signature):
            entry = self._entries.get(signature)
            if entry is None:
                entry = self._create(
                    signature, verdict.primary_category, self._start_confidence, now
                )
                log.debug("pattern_created", signature=signature, family=entry.family.value)
            else:
                self._reinforce(entry, now)
            return dataclasses.replace(entry)

    async def apply_feedback(
        self,
        feedback: FeedbackRecord,
        signature: str,
        family: PatternFamily | None,
        now: datetime | None = None,
    ) -> PatternEntry | None:
        """Adjust the pattern for *signature* from user feedback.

        A false positive lowers confidence by the feedback step and biases
        later verdicts one severity rung down; a false negative creates or
        raises the pattern and biases one rung up; a confirmation reinforces.

        Returns:
            A copy of the updated entry, or ``None`` if no family is known.
        """
        now = now or feedback.timestamp
        async with self._writing(signature):
            entry = self._entries.get(signature)
            if entry is None:
                if family is None:
                    return None
                start = self._start_confidence
                if feedback.outcome == FeedbackOutcome.FALSE_POSITIVE:
                    start -= self._feedback_step
                entry = self._create(signature, family, start, now)
                if feedback.outcome == FeedbackOutcome.FALSE_POSITIVE:
                    entry.feedback_bias = -1
                elif feedback.outcome == FeedbackOutcome.FALSE_NEGATIVE:
                    entry.feedback_bias = 1
                return dataclasses.replace(entry)

            if feedback.outcome == FeedbackOutcome.FALSE_POSITIVE:
                entry.confidence = self._bounded(entry.confidence - self._feedback_step)
                entry.anchor_confidence = entry.confidence
                entry.feedback_bias = -1
            elif feedback.outcome == FeedbackOutcome.FALSE_NEGATIVE:
                raised = max(self._start_confidence, entry.confidence + self._reinforcement_step)
                entry.confidence = self._bounded(raised)
                entry.anchor_confidence = entry.confidence
                entry.last_seen = now
                entry.feedback_bias = 1
                if entry.state == PatternState.DECAYING:
                    entry.state = PatternState.ACTIVE
            else:
                self._reinforce(entry, now)
                entry.feedback_bias = max(entry.feedback_bias, 0)

            log.debug(
                "pattern_feedback_applied",
                signature=signature,
                outcome=feedback.outcome.value,
                confidence=round(entry.confidence, 3),
            )
            return dataclasses.replace(entry)

    async def decay_pass(self, now: datetime | None = None) -> DecayReport:
        """Decay stale entries and evict dead ones.

        Each entry's new state depends only on its anchor confidence,
        ``last_seen`` and *now*, so repeating a pass with the same *now*
        changes nothing. Decay never raises confidence.
        """
        now = now or datetime.now(UTC)
        report = DecayReport()
        retention_s = self._retention.total_seconds()

        async with self._gate.exclusive():
            for signature in list(self._entries):
                entry = self._entries[signature]
                unseen = now - entry.last_seen
                if unseen <= self._retention:
                    continue

                overdue = (unseen - self._retention).total_seconds() / retention_s
                anchor = entry.anchor_confidence
                if anchor is None:
                    anchor = entry.confidence
                decayed = self._bounded(min(entry.confidence, anchor * self._decay_rate**overdue))
                if decayed != entry.confidence or entry.state != PatternState.DECAYING:
                    report.decayed += 1
                entry.confidence = decayed
                entry.state = PatternState.DECAYING

                if entry.confidence < self._floor and unseen > self._grace:
                    entry.state = PatternState.EVICTED
                    del self._entries[signature]
                    self._locks.pop(signature, None)
                    report.evicted += 1

        self._evicted_total += report.evicted
        report.remaining = len(self._entries)
        if report.decayed or report.evicted:
            log.info(
                "pattern_decay_pass",
                decayed=report.decayed,
                evicted=report.evicted,
                remaining=report.remaining,
            )
        return report

    async def load(self) -> int:
        """Replace in-memory state from the backend.

        A corrupt backend is a cold start: the store is left empty.
        """
        try:
            entries = await asyncio.to_thread(self._backend.load)
        except PatternStoreCorruptError as e:
            log.warning("pattern_store_corrupt", error=str(e))
            entries = []

        for entry in entries:
            entry.confidence = self._bounded(entry.confidence)
            if entry.anchor_confidence is not None:
                entry.anchor_confidence = self._bounded(entry.anchor_confidence)

        async with self._gate.exclusive():
            self._entries = {
                e.signature: e
                for e in entries
                if e.state != PatternState.EVICTED
            }
            self._locks.clear()
        return len(self._entries)

    async def save(self) -> int:
        """Persist a snapshot of the live entries."""
        async with self._gate.shared():
            entries = self.snapshot()
        await asyncio.to_thread(self._backend.save, entries)
        return len(entries)
