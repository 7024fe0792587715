"""Forensic logging for detection events.

Only non-safe verdicts are logged. Raw text never reaches the log; the
content is identified by its hash and length.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime

from sentinel_engine.logging import get_logger
from sentinel_engine.models import FeatureInput, Severity, Verdict

log = get_logger("sentinel_engine.detection.forensics")


def log_detection_event(*, feature_input: FeatureInput, verdict: Verdict) -> None:
    """Log a forensic record for a threat verdict."""
    if verdict.severity == Severity.SAFE:
        return

    content = feature_input.text or ""
    content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()

    log.warning(
        "detection_event",
        event_type="threat_detected",
        verdict_id=verdict.verdict_id,
        timestamp=datetime.now(UTC).isoformat(),
        severity=verdict.severity.value,
        category=verdict.primary_category.value if verdict.primary_category else None,
        confidence=round(verdict.confidence, 4),
        action=verdict.recommended_action.action.value,
        notify=[t.value for t in verdict.recommended_action.notify],
        degraded=verdict.degraded,
        operating_tier=verdict.operating_tier.value,
        signature=verdict.signature,
        tier_results=[
            {
                "stage": r.stage.value,
                "family": r.family.value,
                "confidence": round(r.confidence, 3),
            }
            for r in verdict.tier_results
        ],
        context=feature_input.context.value if feature_input.context else None,
        content_hash=content_hash,
        content_length=len(content),
        url_count=len(feature_input.urls),
        processing_ms=round(verdict.processing_time_ms, 2),
    )
