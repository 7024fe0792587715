"""Unit tests for the pattern-family detectors."""

from __future__ import annotations

import pytest

from sentinel_engine.detection.families import (
    CHEAP_FAMILIES,
    DEFAULT_DETECTORS,
    aggregate_scores,
    extract_urls,
    normalize_text,
    url_host,
)
from sentinel_engine.models import ContextTag, FeatureInput, PatternFamily


def _screen(family: PatternFamily, **kwargs):
    kwargs.setdefault("context", ContextTag.CONVERSATION)
    return DEFAULT_DETECTORS[family].screen(FeatureInput(**kwargs))


# =========================================================================
# Helpers
# =========================================================================


class TestAggregateScores:
    """Tests for aggregate_scores."""

    def test_empty(self) -> None:
        assert aggregate_scores([]) == 0.0

    def test_single_score(self) -> None:
        assert aggregate_scores([0.6]) == 0.6

    def test_diminishing_secondary_scores(self) -> None:
        assert aggregate_scores([0.5, 0.5, 0.5]) == pytest.approx(0.5 + 0.15 + 0.045)

    def test_order_independent(self) -> None:
        assert aggregate_scores([0.2, 0.9]) == aggregate_scores([0.9, 0.2])

    def test_capped_at_one(self) -> None:
        assert aggregate_scores([0.95, 0.9, 0.9]) == 1.0

    def test_many_weak_indicators_stay_weak(self) -> None:
        assert aggregate_scores([0.3] * 20) < 0.45


class TestTextHelpers:
    """Tests for normalisation and URL helpers."""

    def test_normalize_folds_quotes_and_whitespace(self) -> None:
        assert normalize_text("Don’t   tell\nanyone") == "Don't tell anyone"

    def test_normalize_fullwidth(self) -> None:
        assert normalize_text("ｉｒｓ") == "irs"

    def test_extract_urls_from_text_and_field(self) -> None:
        feature_input = FeatureInput(
            text="see https://a.example/x and http://b.example",
            urls=("https://c.example",),
            context=ContextTag.BROWSING,
        )
        assert extract_urls(feature_input) == [
            "https://c.example",
            "https://a.example/x",
            "http://b.example",
        ]

    def test_url_host(self) -> None:
        assert url_host("https://Login.Example.COM/path") == "login.example.com"
        assert url_host("example.org/path") == "example.org"
        assert url_host("http://[broken") is None


# =========================================================================
# Family detectors
# =========================================================================


class TestPhishingUrl:
    """Tests for phishing URL heuristics."""

    @pytest.mark.parametrize(
        ("url", "indicator"),
        [
            ("http://paypal-secure-login.example.com/verify", "brand_impersonation"),
            ("http://192.168.0.1/login", "ip_host"),
            ("http://user@evil.example/", "credential_in_url"),
            ("https://bit.ly/abc123", "url_shortener"),
            ("http://xn--pple-43d.com", "punycode_host"),
            ("http://prize.xyz", "risky_tld"),
            ("http://my-free-gift-card-now.example", "hyphenated_domain"),
            ("http://[broken", "malformed_url"),
        ],
    )
    def test_url_indicators(self, url: str, indicator: str) -> None:
        result = _screen(PatternFamily.PHISHING_URL, urls=(url,), context=ContextTag.BROWSING)
        assert indicator in result.indicators
        assert result.score > 0

    def test_brand_impersonation_score(self) -> None:
        result = _screen(
            PatternFamily.PHISHING_URL,
            urls=("http://paypal-secure-login.example.com",),
            context=ContextTag.BROWSING,
        )
        assert result.score == pytest.approx(0.85)

    def test_repeated_indicator_counted_once(self) -> None:
        result = _screen(
            PatternFamily.PHISHING_URL,
            urls=("https://bit.ly/a", "https://bit.ly/b"),
            context=ContextTag.BROWSING,
        )
        assert result.indicators == ("url_shortener",)

    def test_ordinary_url_is_clean(self) -> None:
        result = _screen(
            PatternFamily.PHISHING_URL,
            urls=("https://www.wikipedia.org/wiki/Python",),
            context=ContextTag.BROWSING,
        )
        assert result.score == 0.0

    def test_account_suspension_text(self) -> None:
        result = _screen(
            PatternFamily.PHISHING_URL,
            text="Your account has been suspended. Click here to verify your account.",
        )
        assert "account_suspension" in result.indicators
        assert "credential_request" in result.indicators


class TestTransactionAnomaly:
    """Tests for amount heuristics and payment patterns."""

    @pytest.mark.parametrize(
        ("amount", "indicator", "score"),
        [
            (12000.0, "large_amount", 0.60),
            (6000.0, "elevated_amount", 0.35),
            (-5.0, "negative_amount", 0.40),
            (0.001, "micro_amount", 0.60),
        ],
    )
    def test_amount_indicators(self, amount: float, indicator: str, score: float) -> None:
        result = _screen(
            PatternFamily.TRANSACTION_ANOMALY, amount=amount, context=ContextTag.TRANSACTION
        )
        assert result.indicators == (indicator,)
        assert result.score == pytest.approx(score)

    def test_ordinary_amount_is_clean(self) -> None:
        result = _screen(
            PatternFamily.TRANSACTION_ANOMALY, amount=42.0, context=ContextTag.TRANSACTION
        )
        assert result.score == 0.0

    def test_gift_card_payment(self) -> None:
        result = _screen(
            PatternFamily.TRANSACTION_ANOMALY,
            text="Pay the balance with Google Play gift cards",
            context=ContextTag.TRANSACTION,
        )
        assert "gift_card_payment" in result.indicators


class TestFinancialScam:
    """Tests for financial scam patterns."""

    def test_irs_arrest_threat(self) -> None:
        result = _screen(
            PatternFamily.FINANCIAL_SCAM,
            text="IRS Notice: pay immediately or be arrested",
            context=ContextTag.TRANSACTION,
        )
        assert {"authority_impersonation", "legal_threat", "urgent_payment"} <= set(
            result.indicators
        )
        assert result.score > 0.8

    def test_tech_support_scare(self) -> None:
        result = _screen(
            PatternFamily.FINANCIAL_SCAM,
            text="Your computer is infected with a virus, call Microsoft Support now",
        )
        assert "tech_support_scare" in result.indicators
        assert "tech_support" in result.indicators


class TestSafetyFamilies:
    """Tests for grooming, harassment, crisis and violence families."""

    def test_grooming_flattery_and_isolation(self) -> None:
        result = _screen(
            PatternFamily.GROOMING_ATTEMPT,
            text="You seem mature for your age, let's chat privately",
        )
        assert result.indicators == ("age_flattery", "isolation_request")
        assert result.score == 1.0

    def test_casual_meeting_is_not_grooming(self) -> None:
        result = _screen(PatternFamily.GROOMING_ATTEMPT, text="Let's meet for coffee tomorrow")
        assert result.score == 0.0

    def test_harassment_exposure_threat(self) -> None:
        result = _screen(
            PatternFamily.HARASSMENT, text="I'll post your pics if you don't answer"
        )
        assert "exposure_threat" in result.indicators

    @pytest.mark.parametrize(
        "text",
        [
            "I want to end my life",
            "I'm going to kill myself tonight",
            "I feel suicidal",
        ],
    )
    def test_crisis_language(self, text: str) -> None:
        result = _screen(PatternFamily.CRISIS_SIGNAL, text=text)
        assert "suicidal_language" in result.indicators
        assert result.score >= 0.95

    def test_violent_intent(self) -> None:
        result = _screen(PatternFamily.VIOLENCE_INDICATOR, text="I'm going to hurt them all")
        assert "violent_intent" in result.indicators
        assert result.score >= 0.9

    def test_weapon_mention_alone_is_weak(self) -> None:
        result = _screen(PatternFamily.VIOLENCE_INDICATOR, text="The museum has an old knife")
        assert result.score == pytest.approx(0.25)


class TestDetectorCatalogue:
    """Tests for the default detector set."""

    def test_every_family_has_a_detector(self) -> None:
        assert set(DEFAULT_DETECTORS) == set(PatternFamily)

    def test_cheap_families(self) -> None:
        assert CHEAP_FAMILIES == {
            PatternFamily.PHISHING_URL,
            PatternFamily.TRANSACTION_ANOMALY,
            PatternFamily.FINANCIAL_SCAM,
        }

    def test_benign_text_scores_zero_everywhere(self) -> None:
        feature_input = FeatureInput(
            text="Let's meet for coffee tomorrow", context=ContextTag.CONVERSATION
        )
        for detector in DEFAULT_DETECTORS.values():
            assert detector.screen(feature_input).score == 0.0

    def test_empty_text_is_clean(self) -> None:
        feature_input = FeatureInput(text="", context=ContextTag.CONVERSATION)
        assert all(d.screen(feature_input).score == 0.0 for d in DEFAULT_DETECTORS.values())
