"""Unit tests for the pattern store and its persistence backends."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import timedelta
from pathlib import Path

import pytest

from sentinel_engine.errors import PatternStoreCorruptError
from sentinel_engine.learning.backends import InMemoryPatternBackend, SQLitePatternBackend
from sentinel_engine.learning.sanitize import sanitize_input
from sentinel_engine.learning.store import PatternStore
from sentinel_engine.models import (
    ContextTag,
    FeatureInput,
    FeedbackOutcome,
    FeedbackRecord,
    PatternEntry,
    PatternFamily,
    PatternState,
    RecommendedAction,
    Severity,
    ThreatAction,
    Verdict,
)

_SANITIZED = sanitize_input(
    FeatureInput(text="IRS Notice: pay immediately", context=ContextTag.TRANSACTION)
)


def _verdict(
    signature: str = "sig-1",
    family: PatternFamily | None = PatternFamily.FINANCIAL_SCAM,
    threat: bool = True,
) -> Verdict:
    return Verdict(
        threat_detected=threat,
        severity=Severity.HIGH if threat else Severity.SAFE,
        primary_category=family,
        confidence=0.8 if threat else 0.0,
        recommended_action=RecommendedAction(
            action=ThreatAction.BLOCK if threat else ThreatAction.ALLOW
        ),
        signature=signature,
    )


def _feedback(outcome: FeedbackOutcome, now) -> FeedbackRecord:
    return FeedbackRecord(
        verdict_id="v",
        asserted_threat=outcome != FeedbackOutcome.FALSE_POSITIVE,
        outcome=outcome,
        timestamp=now,
    )


async def _store_with(entries: list[PatternEntry], **kwargs) -> PatternStore:
    backend = InMemoryPatternBackend()
    backend.save(entries)
    store = PatternStore(backend, **kwargs)
    await store.load()
    return store


# =========================================================================
# Detections
# =========================================================================


class TestRecordDetection:
    """Tests for PatternStore.record_detection."""

    @pytest.mark.asyncio
    async def test_new_pattern_starts_at_start_confidence(self, store, now) -> None:
        entry = await store.record_detection(_verdict(), _SANITIZED, now=now)
        assert entry is not None
        assert entry.confidence == pytest.approx(0.7)
        assert entry.state == PatternState.NEW
        assert entry.occurrences == 1
        assert entry.first_seen == now

    @pytest.mark.asyncio
    async def test_repeat_reinforces(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        entry = await store.record_detection(
            _verdict(), _SANITIZED, now=now + timedelta(minutes=5)
        )
        assert entry.confidence == pytest.approx(0.71)
        assert entry.occurrences == 2
        assert entry.state == PatternState.ACTIVE
        assert entry.last_seen == now + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_confidence_capped(self, store, now) -> None:
        for _ in range(100):
            entry = await store.record_detection(_verdict(), _SANITIZED, now=now)
        assert entry.confidence == pytest.approx(0.99)

    @pytest.mark.asyncio
    async def test_safe_verdict_not_recorded(self, store, now) -> None:
        assert await store.record_detection(_verdict(threat=False), _SANITIZED, now=now) is None
        assert store.size == 0

    @pytest.mark.asyncio
    async def test_missing_signature_falls_back_to_sanitized_input(self, store, now) -> None:
        entry = await store.record_detection(_verdict(signature=""), _SANITIZED, now=now)
        assert entry is not None
        assert len(entry.signature) == 16

    @pytest.mark.asyncio
    async def test_concurrent_reinforcement_loses_no_updates(self, store, now) -> None:
        await asyncio.gather(
            *(store.record_detection(_verdict(), _SANITIZED, now=now) for _ in range(50))
        )
        entry = store.get("sig-1")
        assert entry.occurrences == 50
        assert entry.confidence == pytest.approx(0.99)

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        copy = store.get("sig-1")
        copy.confidence = 0.1
        assert store.get("sig-1").confidence == pytest.approx(0.7)
        assert store.get("missing") is None


# =========================================================================
# Feedback
# =========================================================================


class TestApplyFeedback:
    """Tests for PatternStore.apply_feedback."""

    @pytest.mark.asyncio
    async def test_false_positive_lowers_and_biases_down(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        entry = await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_POSITIVE, now), "sig-1", PatternFamily.FINANCIAL_SCAM
        )
        assert entry.confidence == pytest.approx(0.45)
        assert entry.feedback_bias == -1

    @pytest.mark.asyncio
    async def test_false_negative_creates_pattern(self, store, now) -> None:
        entry = await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_NEGATIVE, now), "sig-2", PatternFamily.INVESTMENT_SCAM
        )
        assert entry.confidence == pytest.approx(0.7)
        assert entry.feedback_bias == 1
        assert entry.family == PatternFamily.INVESTMENT_SCAM

    @pytest.mark.asyncio
    async def test_false_negative_after_false_positive_restores(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_POSITIVE, now), "sig-1", PatternFamily.FINANCIAL_SCAM
        )
        entry = await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_NEGATIVE, now), "sig-1", PatternFamily.FINANCIAL_SCAM
        )
        assert entry.confidence == pytest.approx(0.7)
        assert entry.feedback_bias == 1

    @pytest.mark.asyncio
    async def test_false_positive_on_unknown_signature(self, store, now) -> None:
        entry = await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_POSITIVE, now), "sig-3", PatternFamily.HARASSMENT
        )
        assert entry.confidence == pytest.approx(0.45)
        assert entry.feedback_bias == -1

    @pytest.mark.asyncio
    async def test_confirmation_reinforces_and_clears_negative_bias(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_POSITIVE, now), "sig-1", PatternFamily.FINANCIAL_SCAM
        )
        entry = await store.apply_feedback(
            _feedback(FeedbackOutcome.CONFIRMED, now), "sig-1", PatternFamily.FINANCIAL_SCAM
        )
        assert entry.confidence == pytest.approx(0.46)
        assert entry.feedback_bias == 0

    @pytest.mark.asyncio
    async def test_unknown_signature_without_family(self, store, now) -> None:
        result = await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_NEGATIVE, now), "sig-4", None
        )
        assert result is None
        assert store.size == 0
        assert store._locks == {}
        assert store._lock_users == {}


# =========================================================================
# Concurrency
# =========================================================================


class TestWriteExclusion:
    """Tests for ordering between writes and decay passes."""

    @pytest.mark.asyncio
    async def test_reinforcement_waits_for_exclusive_holder(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)

        async with store._gate.exclusive():
            write = asyncio.create_task(
                store.record_detection(_verdict(), _SANITIZED, now=now)
            )
            await asyncio.sleep(0.01)
            assert not write.done()
            assert store.get("sig-1").occurrences == 1

        entry = await write
        assert entry.occurrences == 2

    @pytest.mark.asyncio
    async def test_decay_pass_waits_for_inflight_write(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)

        async with store._writing("sig-1"):
            decay = asyncio.create_task(store.decay_pass(now=now + timedelta(days=14)))
            await asyncio.sleep(0.01)
            assert not decay.done()
            assert store.get("sig-1").state == PatternState.NEW

        report = await decay
        assert report.decayed == 1
        assert store.get("sig-1").state == PatternState.DECAYING

    @pytest.mark.asyncio
    async def test_waiting_decay_pass_goes_before_new_writers(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        later = now + timedelta(days=14)

        async with store._writing("other"):
            decay = asyncio.create_task(store.decay_pass(now=later))
            await asyncio.sleep(0.01)
            write = asyncio.create_task(
                store.record_detection(_verdict(), _SANITIZED, now=later)
            )
            await asyncio.sleep(0.01)
            assert not decay.done()
            assert not write.done()

        await asyncio.gather(decay, write)
        entry = store.get("sig-1")
        # Decayed to 0.665 first, then reinforced
        assert entry.confidence == pytest.approx(0.675)
        assert entry.state == PatternState.ACTIVE
        assert entry.occurrences == 2

    @pytest.mark.asyncio
    async def test_locks_kept_only_for_live_entries(self, store, now) -> None:
        await asyncio.gather(
            store.record_detection(_verdict(), _SANITIZED, now=now),
            store.apply_feedback(_feedback(FeedbackOutcome.CONFIRMED, now), "gone", None),
        )
        assert set(store._locks) == {"sig-1"}
        assert store._lock_users == {}


# =========================================================================
# Decay
# =========================================================================


class TestDecayPass:
    """Tests for PatternStore.decay_pass."""

    @pytest.mark.asyncio
    async def test_recent_entries_untouched(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        report = await store.decay_pass(now + timedelta(days=3))
        assert report.decayed == 0
        assert store.get("sig-1").confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_stale_entry_decays(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        report = await store.decay_pass(now + timedelta(days=14))
        entry = store.get("sig-1")
        assert report.decayed == 1
        assert entry.state == PatternState.DECAYING
        assert entry.confidence == pytest.approx(0.7 * 0.95)

    @pytest.mark.asyncio
    async def test_decay_is_idempotent(self, store, now) -> None:
        await store.record_detection(_verdict("a"), _SANITIZED, now=now)
        await store.record_detection(_verdict("b"), _SANITIZED, now=now - timedelta(days=12))
        later = now + timedelta(days=20)

        await store.decay_pass(later)
        first = [e.to_dict() for e in store.snapshot()]
        report = await store.decay_pass(later)
        second = [e.to_dict() for e in store.snapshot()]

        assert first == second
        assert report.decayed == 0

    @pytest.mark.asyncio
    async def test_decay_never_raises_confidence(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        await store.decay_pass(now + timedelta(days=30))
        before = store.get("sig-1").confidence
        await store.decay_pass(now + timedelta(days=25))
        assert store.get("sig-1").confidence <= before

    @pytest.mark.asyncio
    async def test_long_unseen_entry_evicted(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        report = await store.decay_pass(now + timedelta(days=200))
        assert report.evicted == 1
        assert report.remaining == 0
        assert store.get("sig-1") is None
        assert store.evicted_total == 1

    @pytest.mark.asyncio
    async def test_below_floor_within_grace_is_kept(self, now) -> None:
        entry = PatternEntry(
            signature="weak",
            family=PatternFamily.HARASSMENT,
            confidence=0.31,
            first_seen=now - timedelta(days=20),
            last_seen=now - timedelta(days=20),
            state=PatternState.ACTIVE,
        )
        store = await _store_with([entry])
        report = await store.decay_pass(now)
        kept = store.get("weak")
        assert report.evicted == 0
        assert kept.confidence < 0.3
        assert kept.state == PatternState.DECAYING

    @pytest.mark.asyncio
    async def test_redetection_reactivates_decaying_entry(self, store, now) -> None:
        await store.record_detection(_verdict(), _SANITIZED, now=now)
        later = now + timedelta(days=14)
        await store.decay_pass(later)
        entry = await store.record_detection(_verdict(), _SANITIZED, now=later)
        assert entry.state == PatternState.ACTIVE
        assert entry.confidence == pytest.approx(0.7 * 0.95 + 0.01)


# =========================================================================
# Persistence
# =========================================================================


class TestPersistence:
    """Tests for load/save through the backends."""

    @pytest.mark.asyncio
    async def test_sqlite_round_trip(self, tmp_path: Path, now) -> None:
        db_path = tmp_path / "patterns.db"
        store = PatternStore(SQLitePatternBackend(str(db_path)))
        await store.record_detection(_verdict("a"), _SANITIZED, now=now)
        await store.record_detection(_verdict("b", PatternFamily.PHISHING_URL), _SANITIZED, now=now)
        await store.apply_feedback(
            _feedback(FeedbackOutcome.FALSE_POSITIVE, now), "a", PatternFamily.FINANCIAL_SCAM
        )
        assert await store.save() == 2

        restored = PatternStore(SQLitePatternBackend(str(db_path)))
        assert await restored.load() == 2
        assert sorted(e.to_dict()["signature"] for e in restored.snapshot()) == ["a", "b"]
        assert restored.get("a").to_dict() == store.get("a").to_dict()
        assert restored.get("a").feedback_bias == -1

    def test_sqlite_skips_evicted_entries(self, tmp_path: Path) -> None:
        backend = SQLitePatternBackend(str(tmp_path / "p.db"))
        backend.save(
            [
                PatternEntry(signature="live", family=PatternFamily.HARASSMENT, confidence=0.7),
                PatternEntry(
                    signature="gone",
                    family=PatternFamily.HARASSMENT,
                    confidence=0.1,
                    state=PatternState.EVICTED,
                ),
            ]
        )
        assert [e.signature for e in backend.load()] == ["live"]

    def test_sqlite_creates_parent_directory(self, tmp_path: Path) -> None:
        backend = SQLitePatternBackend(str(tmp_path / "nested" / "dir" / "p.db"))
        assert backend.db_path.parent.exists()
        assert backend.load() == []

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        db_path = tmp_path / "patterns.db"
        db_path.write_bytes(b"not a database" * 100)
        with pytest.raises(PatternStoreCorruptError):
            SQLitePatternBackend(str(db_path)).load()

    def test_out_of_range_row_raises(self, tmp_path: Path) -> None:
        db_path = tmp_path / "patterns.db"
        backend = SQLitePatternBackend(str(db_path))
        backend.save([PatternEntry(signature="x", family=PatternFamily.HARASSMENT, confidence=0.5)])
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE patterns SET confidence = 7.0")
        conn.commit()
        conn.close()
        with pytest.raises(PatternStoreCorruptError, match="out of range"):
            backend.load()

    def test_unknown_family_row_raises(self, tmp_path: Path) -> None:
        db_path = tmp_path / "patterns.db"
        backend = SQLitePatternBackend(str(db_path))
        backend.save([PatternEntry(signature="x", family=PatternFamily.HARASSMENT, confidence=0.5)])
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE patterns SET family = 'alien'")
        conn.commit()
        conn.close()
        with pytest.raises(PatternStoreCorruptError):
            backend.load()

    @pytest.mark.asyncio
    async def test_corrupt_store_cold_starts(self, tmp_path: Path) -> None:
        db_path = tmp_path / "patterns.db"
        db_path.write_bytes(b"not a database" * 100)
        store = PatternStore(SQLitePatternBackend(str(db_path)))
        assert await store.load() == 0
        assert store.size == 0

    @pytest.mark.asyncio
    async def test_in_memory_backend_corrupt_rows(self) -> None:
        backend = InMemoryPatternBackend()
        backend._rows = [{"signature": "x"}]
        with pytest.raises(PatternStoreCorruptError):
            backend.load()
        store = PatternStore(backend)
        assert await store.load() == 0
