"""Policy engine: profile- and domain-specific detection policy.

The policy table is a fixed enumeration per age group. Every output of
:class:`PolicyEngine` is a pure function of the profile and the domain, so
the engine holds no mutable state and can be shared across detections.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from sentinel_engine.guidance import guidance_for
from sentinel_engine.models import (
    EMERGENCY_FAMILIES,
    ContextTag,
    NotifyTarget,
    PatternFamily,
    ProfileCategory,
    RecommendedAction,
    Severity,
    ThreatAction,
    UserProfile,
)


class Domain(StrEnum):
    """Protection domain an event falls into."""

    NETWORK = "network"
    FINANCIAL = "financial"
    CONTENT = "content"
    SOCIAL = "social"
    EMERGENCY = "emergency"


DOMAIN_FAMILIES: dict[Domain, frozenset[PatternFamily]] = {
    Domain.NETWORK: frozenset({PatternFamily.PHISHING_URL, PatternFamily.SOCIAL_ENGINEERING}),
    Domain.FINANCIAL: frozenset(
        {
            PatternFamily.TRANSACTION_ANOMALY,
            PatternFamily.FINANCIAL_SCAM,
            PatternFamily.INVESTMENT_SCAM,
        }
    ),
    Domain.CONTENT: frozenset(
        {
            PatternFamily.PHISHING_URL,
            PatternFamily.HARASSMENT,
            PatternFamily.VIOLENCE_INDICATOR,
        }
    ),
    Domain.SOCIAL: frozenset(
        {
            PatternFamily.GROOMING_ATTEMPT,
            PatternFamily.HARASSMENT,
            PatternFamily.SOCIAL_ENGINEERING,
        }
    ),
    Domain.EMERGENCY: EMERGENCY_FAMILIES,
}

_CONTEXT_DOMAINS: dict[ContextTag, Domain] = {
    ContextTag.TRANSACTION: Domain.FINANCIAL,
    ContextTag.BROWSING: Domain.CONTENT,
    ContextTag.CONVERSATION: Domain.SOCIAL,
    ContextTag.SOCIAL_MEDIA: Domain.SOCIAL,
    ContextTag.NETWORK: Domain.NETWORK,
}


def domain_for(context: ContextTag | None) -> Domain | None:
    """Map a context tag to its protection domain."""
    if context is None:
        return None
    return _CONTEXT_DOMAINS.get(context)


_DEFAULT_EMERGENCY_FLOORS: Mapping[PatternFamily, float] = MappingProxyType(
    {
        PatternFamily.CRISIS_SIGNAL: 0.8,
        PatternFamily.VIOLENCE_INDICATOR: 0.85,
    }
)


@dataclass(frozen=True)
class GroupPolicy:
    """Baseline policy for one age group."""

    screening_threshold: float
    action_threshold: float
    priority_families: tuple[PatternFamily, ...]
    family_weights: Mapping[PatternFamily, float] = field(default_factory=dict)
    emergency_floors: Mapping[PatternFamily, float] = field(
        default_factory=lambda: _DEFAULT_EMERGENCY_FLOORS
    )


@dataclass(frozen=True)
class PolicyThresholds:
    """Resolved policy for one profile in one domain."""

    screening_threshold: float
    action_threshold: float
    priority_families: tuple[PatternFamily, ...]
    family_weights: Mapping[PatternFamily, float]
    allowed_actions: frozenset[ThreatAction]
    emergency_floors: Mapping[PatternFamily, float]
    group: ProfileCategory
    domain: Domain | None = None

    def weight(self, family: PatternFamily) -> float:
        return self.family_weights.get(family, 1.0)

    def is_priority(self, family: PatternFamily) -> bool:
        return family in self.priority_families


# Child and senior profiles use lower action thresholds than adults.
DEFAULT_POLICIES: dict[ProfileCategory, GroupPolicy] = {
    ProfileCategory.CHILD: GroupPolicy(
        screening_threshold=0.25,
        action_threshold=0.35,
        priority_families=(
            PatternFamily.GROOMING_ATTEMPT,
            PatternFamily.CRISIS_SIGNAL,
            PatternFamily.VIOLENCE_INDICATOR,
            PatternFamily.HARASSMENT,
        ),
        family_weights={
            PatternFamily.GROOMING_ATTEMPT: 1.5,
            PatternFamily.VIOLENCE_INDICATOR: 1.4,
            PatternFamily.CRISIS_SIGNAL: 1.3,
            PatternFamily.HARASSMENT: 1.3,
            PatternFamily.FINANCIAL_SCAM: 0.8,
        },
    ),
    ProfileCategory.TEEN: GroupPolicy(
        screening_threshold=0.3,
        action_threshold=0.45,
        priority_families=(
            PatternFamily.CRISIS_SIGNAL,
            PatternFamily.GROOMING_ATTEMPT,
            PatternFamily.HARASSMENT,
            PatternFamily.VIOLENCE_INDICATOR,
        ),
        family_weights={
            PatternFamily.GROOMING_ATTEMPT: 1.3,
            PatternFamily.HARASSMENT: 1.3,
            PatternFamily.CRISIS_SIGNAL: 1.3,
            PatternFamily.VIOLENCE_INDICATOR: 1.2,
        },
    ),
    ProfileCategory.YOUNG_ADULT: GroupPolicy(
        screening_threshold=0.35,
        action_threshold=0.6,
        priority_families=(
            PatternFamily.CRISIS_SIGNAL,
            PatternFamily.INVESTMENT_SCAM,
            PatternFamily.PHISHING_URL,
        ),
        family_weights={
            PatternFamily.INVESTMENT_SCAM: 1.2,
            PatternFamily.CRISIS_SIGNAL: 1.1,
        },
    ),
    ProfileCategory.ADULT: GroupPolicy(
        screening_threshold=0.4,
        action_threshold=0.65,
        priority_families=(
            PatternFamily.PHISHING_URL,
            PatternFamily.FINANCIAL_SCAM,
            PatternFamily.SOCIAL_ENGINEERING,
        ),
        family_weights={
            PatternFamily.PHISHING_URL: 1.1,
        },
    ),
    ProfileCategory.SENIOR: GroupPolicy(
        screening_threshold=0.3,
        action_threshold=0.4,
        priority_families=(
            PatternFamily.FINANCIAL_SCAM,
            PatternFamily.PHISHING_URL,
            PatternFamily.INVESTMENT_SCAM,
            PatternFamily.SOCIAL_ENGINEERING,
        ),
        family_weights={
            PatternFamily.FINANCIAL_SCAM: 1.4,
            PatternFamily.PHISHING_URL: 1.3,
            PatternFamily.INVESTMENT_SCAM: 1.3,
            PatternFamily.SOCIAL_ENGINEERING: 1.2,
            PatternFamily.GROOMING_ATTEMPT: 0.6,
        },
    ),
}


# ---------------------------------------------------------------------------
# Action table: (action, notify targets, user may override)
# ---------------------------------------------------------------------------

_Action = tuple[ThreatAction, tuple[NotifyTarget, ...], bool]

_USER = (NotifyTarget.USER,)
_WARN: _Action = (ThreatAction.WARN, _USER, True)

_ACTION_TABLE: dict[ProfileCategory, dict[Severity, _Action]] = {
    ProfileCategory.CHILD: {
        Severity.LOW: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.GUARDIAN), False),
        Severity.MEDIUM: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.GUARDIAN), False),
        Severity.HIGH: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.GUARDIAN), False),
        Severity.CRITICAL: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.GUARDIAN), False),
    },
    ProfileCategory.TEEN: {
        Severity.LOW: _WARN,
        Severity.MEDIUM: _WARN,
        Severity.HIGH: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.GUARDIAN), False),
        Severity.CRITICAL: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.GUARDIAN), False),
    },
    ProfileCategory.YOUNG_ADULT: {
        Severity.LOW: _WARN,
        Severity.MEDIUM: _WARN,
        Severity.HIGH: (ThreatAction.BLOCK, _USER, True),
        Severity.CRITICAL: (ThreatAction.BLOCK, _USER, False),
    },
    ProfileCategory.ADULT: {
        Severity.LOW: _WARN,
        Severity.MEDIUM: _WARN,
        Severity.HIGH: (ThreatAction.BLOCK, _USER, True),
        Severity.CRITICAL: (ThreatAction.BLOCK, _USER, False),
    },
    ProfileCategory.SENIOR: {
        Severity.LOW: _WARN,
        Severity.MEDIUM: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.FAMILY), False),
        Severity.HIGH: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.FAMILY), False),
        Severity.CRITICAL: (ThreatAction.BLOCK, (NotifyTarget.USER, NotifyTarget.FAMILY), False),
    },
}

_EMERGENCY_EXTRA: dict[ProfileCategory, tuple[NotifyTarget, ...]] = {
    ProfileCategory.CHILD: (NotifyTarget.GUARDIAN,),
    ProfileCategory.TEEN: (NotifyTarget.GUARDIAN,),
    ProfileCategory.SENIOR: (NotifyTarget.FAMILY,),
}


def _resolve_group(group: ProfileCategory) -> ProfileCategory:
    return ProfileCategory.ADULT if group == ProfileCategory.UNSPECIFIED else group


def action_for(
    group: ProfileCategory,
    severity: Severity,
    family: PatternFamily | None = None,
) -> RecommendedAction:
    """Deterministic action for an age group and severity.

    Guidance for *family* is attached when the event is not safe.
    """
    group = _resolve_group(group)
    if severity == Severity.SAFE:
        return RecommendedAction(action=ThreatAction.ALLOW, allow_override=True)

    if severity == Severity.EMERGENCY:
        action = ThreatAction.ESCALATE
        notify = (NotifyTarget.USER, NotifyTarget.EMERGENCY_CONTACTS) + _EMERGENCY_EXTRA.get(
            group, ()
        )
        allow_override = False
    else:
        action, notify, allow_override = _ACTION_TABLE[group][severity]

    guidance = guidance_for(family)
    return RecommendedAction(
        action=action,
        notify=notify,
        allow_override=allow_override,
        message=guidance.message,
        steps=guidance.steps,
    )


def _allowed_actions(group: ProfileCategory) -> frozenset[ThreatAction]:
    return frozenset(action_for(group, severity).action for severity in Severity)


class PolicyEngine:
    """Resolves thresholds, weights and actions for a user profile."""

    def __init__(
        self,
        policies: Mapping[ProfileCategory, GroupPolicy] | None = None,
        *,
        domain_boost: float = 1.1,
    ) -> None:
        self._policies = dict(policies if policies is not None else DEFAULT_POLICIES)
        missing = {g for g in _ACTION_TABLE if g not in self._policies}
        if missing:
            raise ValueError(f"policy table is missing groups: {sorted(missing)}")
        self._domain_boost = domain_boost

    def thresholds(self, profile: UserProfile, domain: Domain | None = None) -> PolicyThresholds:
        """Resolve the policy for *profile*, boosting *domain*'s families."""
        group = _resolve_group(profile.age_group)
        policy = self._policies[group]

        weights = dict(policy.family_weights)
        if domain is not None:
            for family in DOMAIN_FAMILIES[domain]:
                weights[family] = weights.get(family, 1.0) * self._domain_boost

        return PolicyThresholds(
            screening_threshold=policy.screening_threshold,
            action_threshold=policy.action_threshold,
            priority_families=policy.priority_families,
            family_weights=MappingProxyType(weights),
            allowed_actions=_allowed_actions(group),
            emergency_floors=policy.emergency_floors,
            group=group,
            domain=domain,
        )

    def action_for(
        self,
        group: ProfileCategory,
        severity: Severity,
        family: PatternFamily | None = None,
    ) -> RecommendedAction:
        return action_for(group, severity, family)
