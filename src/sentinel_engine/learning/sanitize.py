"""Privacy sanitisation and signature extraction.

Nothing that reaches the pattern store, the learning history or a remote
classifier carries raw personal data: card numbers, e-mail addresses and
phone numbers are redacted, URLs are reduced to hostnames and senders are
hashed.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from sentinel_engine.detection.families import extract_urls, normalize_text, url_host
from sentinel_engine.models import ContextTag, FeatureInput, PatternFamily

_CARD_RE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
_EMAIL_RE = re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)+\b")
_PHONE_RE = re.compile(r"(?<!\w)\+?\d[\d\s().-]{7,}\d\b")
_URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

_AMOUNT_BUCKETS: tuple[tuple[float, str], ...] = (
    (0.01, "micro"),
    (100.0, "small"),
    (1000.0, "medium"),
    (10000.0, "large"),
)


@dataclass(frozen=True)
class SanitizedInput:
    """A feature input with personal data removed."""

    text: str
    url_hosts: tuple[str, ...]
    sender_hash: str | None
    amount_bucket: str | None
    context: ContextTag | None


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def amount_bucket(amount: float | None) -> str | None:
    """Coarse order-of-magnitude bucket for an amount."""
    if amount is None:
        return None
    if amount < 0:
        return "negative"
    for limit, name in _AMOUNT_BUCKETS:
        if amount < limit:
            return name
    return "very_large"


def _replace_url(match: re.Match[str]) -> str:
    host = url_host(match.group(0))
    return f"[URL:{host}]" if host else "[URL]"


def sanitize_input(feature_input: FeatureInput) -> SanitizedInput:
    """Strip personal data from *feature_input*."""
    text = normalize_text(feature_input.text or "")
    text = _URL_RE.sub(_replace_url, text)
    text = _CARD_RE.sub("[CARD]", text)
    text = _EMAIL_RE.sub("[EMAIL]", text)
    text = _PHONE_RE.sub("[PHONE]", text)

    hosts: list[str] = []
    for url in extract_urls(feature_input):
        host = url_host(url)
        if host and host not in hosts:
            hosts.append(host)

    sender_hash = None
    if feature_input.sender:
        sender_hash = _short_hash(feature_input.sender.strip().lower())

    return SanitizedInput(
        text=text,
        url_hosts=tuple(hosts),
        sender_hash=sender_hash,
        amount_bucket=amount_bucket(feature_input.amount),
        context=feature_input.context,
    )


def signature_for(
    sanitized: SanitizedInput,
    indicators: Mapping[PatternFamily, Iterable[str]],
) -> str:
    """Stable signature over an input's discriminating features.

    Matched indicators, URL hosts, the amount bucket and the context are
    hashed together. When no indicator matched, the sanitised text stands
    in for them so unrelated benign inputs do not share a signature.
    """
    parts = sorted(
        f"{family.value}:{name}" for family, names in indicators.items() for name in names
    )
    if not parts:
        parts = [f"text:{sanitized.text.lower()}"]
    parts.extend(f"host:{host}" for host in sorted(sanitized.url_hosts))
    if sanitized.amount_bucket:
        parts.append(f"amount:{sanitized.amount_bucket}")
    if sanitized.context:
        parts.append(f"context:{sanitized.context.value}")
    return _short_hash("|".join(parts))
