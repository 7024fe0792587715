"""Fast screening and deep classification tiers."""

from sentinel_engine.detection.classification import (
    ClassificationContext,
    DeepClassifier,
    HeuristicDeepClassifier,
)
from sentinel_engine.detection.families import (
    CHEAP_FAMILIES,
    DEFAULT_DETECTORS,
    FamilyDetector,
    FamilyScore,
)
from sentinel_engine.detection.screening import FastScreener

__all__ = [
    "CHEAP_FAMILIES",
    "DEFAULT_DETECTORS",
    "ClassificationContext",
    "DeepClassifier",
    "FamilyDetector",
    "FamilyScore",
    "FastScreener",
    "HeuristicDeepClassifier",
]
