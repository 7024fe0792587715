"""Deep classification via a local Ollama model.

Asks the model for a per-family likelihood of each forwarded family. Any
transport or parse failure surfaces as :class:`TierUnavailableError` so the
engine can fall back to a degraded fast-tier verdict.
"""

from __future__ import annotations

import json
import time

import httpx

from sentinel_engine.config import Settings, get_settings
from sentinel_engine.detection.classification import ClassificationContext, pick_category
from sentinel_engine.errors import TierUnavailableError
from sentinel_engine.learning.sanitize import sanitize_input
from sentinel_engine.logging import get_logger
from sentinel_engine.models import DeepResult, FeatureInput, PatternFamily, ScreeningResult

log = get_logger("sentinel_engine.detection.ollama")

_CLASSIFICATION_PROMPT = """\
You are a threat classifier protecting a user from online harm. Rate how \
likely the following event belongs to each candidate threat family.

Candidate families: {families}
Event context: {context}
Screening signals: {signals}

Event (personal data redacted):
---
{text}
---
URL hosts: {hosts}
Amount: {amount}

Respond with ONLY a JSON object mapping each candidate family to a \
likelihood between 0 and 1, plus a short reasoning:
{{"likelihoods": {{"phishing_url": 0.2}}, "reasoning": "Brief explanation"}}
"""


class OllamaDeepClassifier:
    """Ollama-backed deep classifier."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._url = settings.ollama_url
        self._model = settings.ollama_model
        self._timeout = settings.ollama_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def classify(
        self,
        feature_input: FeatureInput,
        screening: ScreeningResult,
        context: ClassificationContext,
    ) -> DeepResult:
        """Classify the forwarded families with the model.

        Raises:
            TierUnavailableError: If the model cannot be reached or returns
                an unusable response.
        """
        if not context.families:
            return DeepResult(category=None, confidence=0.0)

        start = time.perf_counter()
        sanitized = sanitize_input(feature_input)
        signals_text = "; ".join(
            f"{family.value}: {', '.join(screening.indicators.get(family, ()))} "
            f"(score={screening.family_scores.get(family, 0.0):.2f})"
            for family in context.families
        )
        prompt = _CLASSIFICATION_PROMPT.format(
            families=", ".join(f.value for f in context.families),
            context=context.context_tag.value if context.context_tag else "unknown",
            signals=signals_text or "None",
            text=sanitized.text[:2000],
            hosts=", ".join(sanitized.url_hosts) or "None",
            amount=sanitized.amount_bucket or "None",
        )

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self._url}/api/generate",
                json={
                    "model": self._model,
                    "prompt": prompt,
                    "stream": False,
                    "format": "json",
                    "keep_alive": "10m",
                    "options": {
                        "temperature": 0.1,
                        "num_predict": 200,
                    },
                },
            )
            response.raise_for_status()
            result_text = response.json().get("response", "").strip()
            result = json.loads(result_text)
        except (httpx.HTTPError, json.JSONDecodeError, ValueError) as e:
            log.warning("ollama_classification_failed", error=str(e))
            raise TierUnavailableError(f"Ollama classification failed: {e}") from e

        raw = result.get("likelihoods") if isinstance(result, dict) else None
        if not isinstance(raw, dict):
            log.warning("ollama_classification_malformed", response=result_text[:200])
            raise TierUnavailableError("Ollama response is missing likelihoods")

        confidences: dict[PatternFamily, float] = {}
        for family in context.families:
            try:
                value = float(raw.get(family.value, 0.0))
            except (TypeError, ValueError):
                value = 0.0
            confidences[family] = min(1.0, max(0.0, value))

        category = pick_category(confidences, context.priority_families)
        confidence = confidences[category] if category else 0.0
        return DeepResult(
            category=category,
            confidence=confidence,
            family_confidences=confidences,
            details={
                "backend": "ollama",
                "model": self._model,
                "reasoning": str(result.get("reasoning", ""))[:300],
            },
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
