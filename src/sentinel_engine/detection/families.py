"""Pattern-family detectors for the fast screening tier.

Each family is a pure scorer: compiled regex tables plus structural
heuristics over a :class:`FeatureInput`. Detectors hold no mutable state,
so every family can run on its own worker thread.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

from sentinel_engine.models import FamilySignal, FeatureInput, PatternFamily

# ---------------------------------------------------------------------------
# Pattern tuples: (compiled_regex, score, indicator_name)
# ---------------------------------------------------------------------------

_Pattern = tuple[re.Pattern[str], float, str]


def _p(regex: str, score: float, name: str) -> _Pattern:
    return re.compile(regex, re.IGNORECASE), score, name


_PHISHING_TEXT_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\bclick\s+(?:here|this\s+link|below|the\s+link)\b.{0,40}"
        r"\b(?:verify|confirm|update|unlock|restore|secure)\b",
        0.70,
        "verify_link_lure",
    ),
    _p(
        r"\byour\s+account\s+(?:has\s+been|will\s+be|is)\s+"
        r"(?:suspended|locked|closed|disabled|limited)\b",
        0.70,
        "account_suspension",
    ),
    _p(
        r"\b(?:verify|confirm|update|validate)\s+your\s+"
        r"(?:account|password|login|identity|billing|payment\s+details)\b",
        0.60,
        "credential_request",
    ),
    _p(r"\bunusual\s+(?:sign[- ]in|login|activity)\b", 0.40, "unusual_activity_notice"),
)

_TRANSACTION_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\b(?:wire|transfer|send)\s+(?:the\s+)?(?:money|funds|payment)\b",
        0.45,
        "transfer_request",
    ),
    _p(r"\bgift\s*cards?\b", 0.70, "gift_card_payment"),
    _p(
        r"\b(?:bitcoin|crypto|btc|usdt)\s+(?:atm|wallet|address)\b",
        0.65,
        "crypto_payment",
    ),
    _p(
        r"\b(?:new\s+(?:payee|beneficiary|account\s+number)|change\s+(?:of\s+)?bank\s+details)\b",
        0.60,
        "payee_change",
    ),
)

_FINANCIAL_SCAM_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\b(?:irs|internal\s+revenue|tax\s+(?:office|authority|department)|hmrc|"
        r"social\s+security\s+(?:administration|office)|medicare|police|sheriff|fbi|customs)\b",
        0.60,
        "authority_impersonation",
    ),
    _p(
        r"\b(?:arrest(?:ed)?|warrant|lawsuit|legal\s+action|jail|prosecut\w*|deport\w*)\b",
        0.60,
        "legal_threat",
    ),
    _p(
        r"\b(?:pay|payment|settle|wire|send)\b.{0,40}"
        r"\b(?:immediately|now|today|right\s+away|within\s+\d+\s+(?:hours?|minutes?))\b",
        0.65,
        "urgent_payment",
    ),
    _p(
        r"\b(?:urgent|immediately|act\s+now|final\s+notice|last\s+chance|"
        r"expires?\s+(?:today|soon))\b",
        0.40,
        "urgency_tactics",
    ),
    _p(
        r"\b(?:microsoft|apple|windows|amazon)\s+(?:support|technician|security\s+team)\b",
        0.50,
        "tech_support",
    ),
    _p(
        r"\b(?:virus|malware|infected|hacked)\b.{0,60}\b(?:call|contact|remote\s+access)\b",
        0.65,
        "tech_support_scare",
    ),
    _p(
        r"\b(?:you(?:'ve|\s+have)\s+won|claim\s+your\s+(?:prize|reward)|lottery|inheritance)\b",
        0.60,
        "prize_lure",
    ),
    _p(r"\b(?:processing|release|transfer|clearance)\s+fee\b", 0.55, "advance_fee"),
    _p(
        r"\b(?:love|darling|sweetheart|my\s+dear)\b.{0,80}"
        r"\b(?:money|wire|gift\s+card|bitcoin|loan)\b",
        0.60,
        "romance_money",
    ),
)

_INVESTMENT_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\bguaranteed\b.{0,40}\b(?:returns?|profits?|income|yield)\b",
        0.70,
        "guaranteed_returns",
    ),
    _p(
        r"\b(?:double|triple|10x|100x)\s+your\s+(?:money|investment|bitcoin|crypto|savings)\b",
        0.75,
        "multiplier_promise",
    ),
    _p(
        r"\b\d{2,4}\s?%\s+(?:returns?|profit|roi|interest)\b.{0,30}"
        r"\b(?:daily|weekly|monthly|per\s+(?:day|week|month))\b",
        0.70,
        "implausible_rate",
    ),
    _p(r"\b(?:risk[- ]free|no\s+risk)\b", 0.45, "risk_free_claim"),
    _p(
        r"\b(?:crypto|bitcoin|forex|trading)\s+(?:opportunity|signals?|platform|mentor)\b",
        0.40,
        "trading_pitch",
    ),
    _p(
        r"\b(?:limited\s+(?:spots|slots)|exclusive\s+(?:offer|opportunity)|invite\s+only)\b",
        0.35,
        "exclusivity_pressure",
    ),
)

_SOCIAL_ENGINEERING_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\b(?:send|share|give|tell|read)\s+me\s+(?:your\s+|the\s+)?(?:password|pin|otp|"
        r"one[- ]time\s+(?:code|password)|verification\s+code|security\s+code|ssn|"
        r"social\s+security\s+number)\b",
        0.80,
        "credential_solicitation",
    ),
    _p(
        r"\b(?:i\s+am|this\s+is|i'm)\s+(?:from|with|calling\s+from)\s+"
        r"(?:your\s+bank|the\s+bank|support|it|the\s+it\s+department|customer\s+service)\b",
        0.60,
        "pretexting",
    ),
    _p(
        r"\b(?:it'?s|this\s+is)\s+"
        r"(?:me|your\s+(?:son|daughter|grandson|granddaughter|nephew|niece))\b"
        r".{0,60}\b(?:new\s+(?:phone|number)|lost\s+my\s+phone|in\s+trouble)\b",
        0.70,
        "family_impersonation",
    ),
    _p(r"\byour\s+(?:ceo|boss|manager)\s+(?:asked|needs|wants)\b", 0.50, "authority_pressure"),
    _p(r"\b(?:remote\s+access|anydesk|teamviewer|screen\s+share)\b", 0.55, "remote_access_request"),
    _p(r"\b(?:don'?t|do\s+not)\s+tell\s+(?:anyone|anybody)\b", 0.45, "secrecy_request"),
)

_GROOMING_PATTERNS: tuple[_Pattern, ...] = (
    _p(r"\b(?:mature|grown[- ]up|smart)\s+for\s+your\s+age\b", 0.80, "age_flattery"),
    _p(
        r"\b(?:chat|talk|message|text)\s+(?:me\s+)?(?:privately|in\s+private|somewhere\s+private|"
        r"on\s+another\s+app|on\s+snap(?:chat)?|alone)\b",
        0.70,
        "isolation_request",
    ),
    _p(
        r"\b(?:our\s+(?:little\s+)?secret|keep\s+(?:this|it)\s+(?:between\s+us|secret)|"
        r"don'?t\s+tell\s+(?:your\s+)?(?:parents|mom|dad|mum))\b",
        0.80,
        "secrecy_request",
    ),
    _p(
        r"\b(?:how\s+old\s+are\s+you|what\s+school\s+do\s+you\s+go\s+to|"
        r"are\s+you\s+(?:home\s+)?alone|where\s+do\s+you\s+live)\b",
        0.55,
        "personal_info_request",
    ),
    _p(r"\bsend\s+(?:me\s+)?(?:a\s+)?(?:pic|photo|picture|selfie)s?\b", 0.60, "image_request"),
    _p(
        r"\b(?:meet\s+(?:up\s+)?(?:in\s+person|alone|somewhere)|come\s+meet\s+me)\b",
        0.55,
        "meeting_request",
    ),
    _p(
        r"\b(?:i'?ll\s+(?:buy|get|send)\s+you|free\s+(?:gift|robux|v-?bucks|skins?))\b",
        0.50,
        "gift_offering",
    ),
    _p(
        r"\b(?:nobody|no\s+one)\s+(?:understands|gets)\s+you\s+(?:like|the\s+way)\s+i\s+do\b",
        0.70,
        "trust_building",
    ),
)

_HARASSMENT_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\b(?:you'?re|you\s+are|ur)\s+(?:so\s+)?(?:stupid|ugly|worthless|pathetic|a\s+loser|"
        r"fat|disgusting)\b",
        0.60,
        "insult",
    ),
    _p(r"\b(?:nobody|no\s+one)\s+(?:likes|wants|cares\s+about)\s+you\b", 0.65, "exclusion"),
    _p(r"\b(?:everyone|we\s+all)\s+(?:hates?|laughs?\s+at)\s+you\b", 0.65, "mocking"),
    _p(
        r"\b(?:i'?ll|we'?ll|gonna|going\s+to)\s+(?:post|share|leak|expose)\s+"
        r"(?:your|those|the)\s+(?:pics?|photos?|secrets?|messages?|nudes?)\b",
        0.80,
        "exposure_threat",
    ),
    _p(r"\b(?:kill\s+yourself|kys)\b", 0.90, "self_harm_incitement"),
)

_CRISIS_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\b(?:kill(?:ing)?\s+myself|end(?:ing)?\s+(?:my\s+life|it\s+all)|"
        r"take\s+my\s+(?:own\s+)?life|commit\s+suicide|suicidal)\b",
        0.95,
        "suicidal_language",
    ),
    _p(
        r"\b(?:want|wanna|going)\s+to\s+die\b|\bbetter\s+off\s+dead\b|\bno\s+reason\s+to\s+live\b",
        0.90,
        "death_wish",
    ),
    _p(r"\b(?:self[- ]harm|cut(?:ting)?\s+myself|hurt(?:ing)?\s+myself)\b", 0.85, "self_harm"),
    _p(
        r"\b(?:farewell\s+everyone|goodbye\s+(?:forever|everyone)|"
        r"this\s+is\s+my\s+last\s+(?:message|note))\b",
        0.85,
        "farewell",
    ),
    _p(
        r"\b(?:can'?t\s+go\s+on|can'?t\s+take\s+(?:it|this)\s+anymore|"
        r"give\s+up\s+on\s+everything|hopeless)\b",
        0.60,
        "hopelessness",
    ),
    _p(r"\b(?:nobody|no\s+one)\s+would\s+(?:care|notice|miss\s+me)\b", 0.60, "isolation_signal"),
    _p(r"\b(?:please\s+help\s+me|i\s+need\s+help|help\s+me\s+please)\b", 0.35, "help_request"),
)

_VIOLENCE_PATTERNS: tuple[_Pattern, ...] = (
    _p(
        r"\b(?:i'?m\s+going\s+to|i\s+am\s+going\s+to|i'?ll|gonna|i\s+will)\s+"
        r"(?:kill|shoot|stab|hurt|beat\s+up|attack)\s+(?:you|him|her|them|everyone|people)\b",
        0.90,
        "violent_intent",
    ),
    _p(
        r"\bbring(?:ing)?\s+a\s+(?:gun|knife|weapon)\s+to\s+(?:school|work|class)\b",
        0.95,
        "weapon_at_venue",
    ),
    _p(
        r"\b(?:shoot\s+up|bomb|blow\s+up)\s+(?:the\s+)?(?:school|building|office|place|mall)\b",
        0.95,
        "mass_violence",
    ),
    _p(
        r"\b(?:i\s+know\s+where\s+you\s+live|watch\s+your\s+back|you'?ll\s+regret\s+(?:this|it))\b",
        0.65,
        "intimidation",
    ),
    _p(r"\b(?:gun|knife|weapon|rifle)s?\b", 0.25, "weapon_mention"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_URL_IN_TEXT = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

_BRAND_LURES = (
    re.compile(r"paypal.*(?:secure|verify|login)"),
    re.compile(r"amazon.*(?:verify|security|refund)"),
    re.compile(r"bank.*(?:update|verify|secure)"),
    re.compile(r"microsoft.*(?:support|security|alert)"),
    re.compile(r"apple.*(?:security|support|id)"),
)
_SHORTENERS = frozenset({"bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd", "cutt.ly"})
_RISKY_TLDS = frozenset({"zip", "xyz", "top", "tk", "click", "gq", "loan", "work"})
_IP_HOST = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")


def normalize_text(text: str) -> str:
    """NFKC-normalise, fold quotes and collapse whitespace."""
    normalized = unicodedata.normalize("NFKC", text)
    normalized = normalized.replace("’", "'").replace("‘", "'")
    return " ".join(normalized.split())


def extract_urls(feature_input: FeatureInput) -> list[str]:
    """Explicit URLs plus any URLs embedded in the text."""
    urls = list(feature_input.urls)
    urls.extend(_URL_IN_TEXT.findall(feature_input.text or ""))
    return urls


def url_host(url: str) -> str | None:
    """Lower-cased hostname of *url*, or ``None`` if it has none."""
    candidate = url if "://" in url else f"http://{url}"
    try:
        host = urlsplit(candidate).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def aggregate_scores(scores: Iterable[float]) -> float:
    """Aggregate indicator scores into a single family score.

    Uses the max score plus exponentially diminishing contributions from
    secondary indicators, so many weak indicators cannot add up to a strong
    one.
    """
    ordered = sorted(scores, reverse=True)
    if not ordered:
        return 0.0
    total = ordered[0]
    for i, score in enumerate(ordered[1:], 1):
        total += score * (0.3**i)
    return min(1.0, total)


def _match_patterns(
    family: PatternFamily, patterns: tuple[_Pattern, ...], text: str
) -> list[FamilySignal]:
    signals: list[FamilySignal] = []
    for pattern, score, name in patterns:
        if pattern.search(text):
            signals.append(FamilySignal(family=family, indicator=name, score=score))
    return signals


# ---------------------------------------------------------------------------
# Structural heuristics
# ---------------------------------------------------------------------------


def _url_heuristics(feature_input: FeatureInput) -> list[FamilySignal]:
    family = PatternFamily.PHISHING_URL
    signals: list[FamilySignal] = []
    seen: set[str] = set()

    def add(indicator: str, score: float) -> None:
        if indicator not in seen:
            seen.add(indicator)
            signals.append(FamilySignal(family=family, indicator=indicator, score=score))

    for url in extract_urls(feature_input):
        host = url_host(url)
        if host is None:
            add("malformed_url", 0.50)
            continue
        if "@" in url.split("://", 1)[-1].split("/", 1)[0]:
            add("credential_in_url", 0.70)
        if _IP_HOST.match(host):
            add("ip_host", 0.60)
            continue
        if any(lure.search(host) for lure in _BRAND_LURES):
            add("brand_impersonation", 0.85)
        if host.startswith("xn--") or ".xn--" in host:
            add("punycode_host", 0.60)
        if host.count("-") >= 3:
            add("hyphenated_domain", 0.45)
        if any(len(label) >= 20 for label in host.split(".")):
            add("long_domain", 0.40)
        if host.rsplit(".", 1)[-1] in _RISKY_TLDS:
            add("risky_tld", 0.35)
        if host in _SHORTENERS:
            add("url_shortener", 0.30)
    return signals


def _amount_heuristics(feature_input: FeatureInput) -> list[FamilySignal]:
    family = PatternFamily.TRANSACTION_ANOMALY
    amount = feature_input.amount
    if amount is None:
        return []
    if amount > 10000:
        return [FamilySignal(family=family, indicator="large_amount", score=0.60)]
    if amount > 5000:
        return [FamilySignal(family=family, indicator="elevated_amount", score=0.35)]
    if amount < 0:
        return [FamilySignal(family=family, indicator="negative_amount", score=0.40)]
    if amount < 0.01:
        return [FamilySignal(family=family, indicator="micro_amount", score=0.60)]
    return []


# ---------------------------------------------------------------------------
# Family detectors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FamilyScore:
    """Result of screening one family."""

    family: PatternFamily
    score: float
    signals: tuple[FamilySignal, ...] = ()

    @property
    def indicators(self) -> tuple[str, ...]:
        return tuple(s.indicator for s in self.signals)


@dataclass(frozen=True)
class FamilyDetector:
    """A bounded-cost scorer for one pattern family."""

    family: PatternFamily
    patterns: tuple[_Pattern, ...] = ()
    heuristics: tuple[Callable[[FeatureInput], list[FamilySignal]], ...] = ()
    expensive: bool = False

    def screen(self, feature_input: FeatureInput) -> FamilyScore:
        text = normalize_text(feature_input.text or "")
        signals = _match_patterns(self.family, self.patterns, text) if text else []
        for heuristic in self.heuristics:
            signals.extend(heuristic(feature_input))
        score = aggregate_scores(s.score for s in signals)
        return FamilyScore(family=self.family, score=score, signals=tuple(signals))


DEFAULT_DETECTORS: dict[PatternFamily, FamilyDetector] = {
    PatternFamily.PHISHING_URL: FamilyDetector(
        PatternFamily.PHISHING_URL, _PHISHING_TEXT_PATTERNS, (_url_heuristics,)
    ),
    PatternFamily.TRANSACTION_ANOMALY: FamilyDetector(
        PatternFamily.TRANSACTION_ANOMALY, _TRANSACTION_PATTERNS, (_amount_heuristics,)
    ),
    PatternFamily.FINANCIAL_SCAM: FamilyDetector(
        PatternFamily.FINANCIAL_SCAM, _FINANCIAL_SCAM_PATTERNS
    ),
    PatternFamily.INVESTMENT_SCAM: FamilyDetector(
        PatternFamily.INVESTMENT_SCAM, _INVESTMENT_PATTERNS, expensive=True
    ),
    PatternFamily.SOCIAL_ENGINEERING: FamilyDetector(
        PatternFamily.SOCIAL_ENGINEERING, _SOCIAL_ENGINEERING_PATTERNS, expensive=True
    ),
    PatternFamily.GROOMING_ATTEMPT: FamilyDetector(
        PatternFamily.GROOMING_ATTEMPT, _GROOMING_PATTERNS, expensive=True
    ),
    PatternFamily.HARASSMENT: FamilyDetector(
        PatternFamily.HARASSMENT, _HARASSMENT_PATTERNS, expensive=True
    ),
    PatternFamily.CRISIS_SIGNAL: FamilyDetector(
        PatternFamily.CRISIS_SIGNAL, _CRISIS_PATTERNS, expensive=True
    ),
    PatternFamily.VIOLENCE_INDICATOR: FamilyDetector(
        PatternFamily.VIOLENCE_INDICATOR, _VIOLENCE_PATTERNS, expensive=True
    ),
}

CHEAP_FAMILIES: frozenset[PatternFamily] = frozenset(
    family for family, detector in DEFAULT_DETECTORS.items() if not detector.expensive
)
