"""Unit tests for the policy engine."""

from __future__ import annotations

import pytest

from sentinel_engine.guidance import GUIDANCE, guidance_for
from sentinel_engine.models import (
    ContextTag,
    NotifyTarget,
    PatternFamily,
    ProfileCategory,
    Severity,
    ThreatAction,
    UserProfile,
)
from sentinel_engine.policy import (
    DEFAULT_POLICIES,
    DOMAIN_FAMILIES,
    Domain,
    PolicyEngine,
    action_for,
    domain_for,
)


class TestDomainFor:
    """Tests for context to domain mapping."""

    @pytest.mark.parametrize(
        ("context", "domain"),
        [
            (ContextTag.TRANSACTION, Domain.FINANCIAL),
            (ContextTag.BROWSING, Domain.CONTENT),
            (ContextTag.CONVERSATION, Domain.SOCIAL),
            (ContextTag.SOCIAL_MEDIA, Domain.SOCIAL),
            (ContextTag.NETWORK, Domain.NETWORK),
            (None, None),
        ],
    )
    def test_mapping(self, context: ContextTag | None, domain: Domain | None) -> None:
        assert domain_for(context) == domain

    def test_emergency_domain_holds_reserved_families(self) -> None:
        assert DOMAIN_FAMILIES[Domain.EMERGENCY] == {
            PatternFamily.CRISIS_SIGNAL,
            PatternFamily.VIOLENCE_INDICATOR,
        }


class TestThresholds:
    """Tests for PolicyEngine.thresholds."""

    def test_vulnerable_groups_act_earlier_than_adults(self) -> None:
        policy = PolicyEngine()
        adult = policy.thresholds(UserProfile(age=35))
        child = policy.thresholds(UserProfile(age=9))
        senior = policy.thresholds(UserProfile(age=72))
        assert child.action_threshold < adult.action_threshold
        assert senior.action_threshold < adult.action_threshold
        assert child.screening_threshold < adult.screening_threshold

    def test_child_priorities_and_weights(self) -> None:
        thresholds = PolicyEngine().thresholds(UserProfile(age=9))
        assert thresholds.priority_families[0] == PatternFamily.GROOMING_ATTEMPT
        assert thresholds.weight(PatternFamily.GROOMING_ATTEMPT) == 1.5
        assert thresholds.is_priority(PatternFamily.CRISIS_SIGNAL)
        assert not thresholds.is_priority(PatternFamily.INVESTMENT_SCAM)

    def test_senior_weights_financial_families(self) -> None:
        thresholds = PolicyEngine().thresholds(UserProfile(age=72))
        assert thresholds.weight(PatternFamily.FINANCIAL_SCAM) == 1.4
        assert thresholds.weight(PatternFamily.HARASSMENT) == 1.0

    def test_domain_boost(self) -> None:
        policy = PolicyEngine(domain_boost=1.2)
        plain = policy.thresholds(UserProfile(age=72))
        boosted = policy.thresholds(UserProfile(age=72), Domain.FINANCIAL)
        assert boosted.domain == Domain.FINANCIAL
        assert boosted.weight(PatternFamily.FINANCIAL_SCAM) == pytest.approx(1.4 * 1.2)
        assert boosted.weight(PatternFamily.TRANSACTION_ANOMALY) == pytest.approx(1.2)
        assert boosted.weight(PatternFamily.HARASSMENT) == plain.weight(PatternFamily.HARASSMENT)

    def test_boost_does_not_mutate_defaults(self) -> None:
        PolicyEngine().thresholds(UserProfile(age=72), Domain.FINANCIAL)
        senior = DEFAULT_POLICIES[ProfileCategory.SENIOR]
        assert senior.family_weights[PatternFamily.FINANCIAL_SCAM] == 1.4

    def test_unspecified_category_uses_adult_policy(self) -> None:
        policy = PolicyEngine()
        unspecified = policy.thresholds(UserProfile())
        adult = policy.thresholds(UserProfile(age=35))
        assert unspecified.group == ProfileCategory.ADULT
        assert unspecified.action_threshold == adult.action_threshold

    def test_thresholds_are_deterministic(self) -> None:
        policy = PolicyEngine()
        profile = UserProfile(age=15)
        assert policy.thresholds(profile, Domain.SOCIAL) == policy.thresholds(
            profile, Domain.SOCIAL
        )

    def test_emergency_floors(self) -> None:
        thresholds = PolicyEngine().thresholds(UserProfile(age=35))
        assert thresholds.emergency_floors[PatternFamily.CRISIS_SIGNAL] == 0.8
        assert thresholds.emergency_floors[PatternFamily.VIOLENCE_INDICATOR] == 0.85

    def test_allowed_actions(self) -> None:
        child = PolicyEngine().thresholds(UserProfile(age=9))
        adult = PolicyEngine().thresholds(UserProfile(age=35))
        assert ThreatAction.WARN not in child.allowed_actions
        assert ThreatAction.WARN in adult.allowed_actions
        assert ThreatAction.ESCALATE in adult.allowed_actions

    def test_missing_group_rejected(self) -> None:
        partial = {ProfileCategory.ADULT: DEFAULT_POLICIES[ProfileCategory.ADULT]}
        with pytest.raises(ValueError, match="missing groups"):
            PolicyEngine(partial)


class TestActionFor:
    """Tests for the action table."""

    def test_safe_allows(self) -> None:
        action = action_for(ProfileCategory.CHILD, Severity.SAFE)
        assert action.action == ThreatAction.ALLOW
        assert action.allow_override is True
        assert action.notify == ()

    def test_child_always_blocks_and_tells_guardian(self) -> None:
        for severity in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL):
            action = action_for(ProfileCategory.CHILD, severity)
            assert action.action == ThreatAction.BLOCK
            assert NotifyTarget.GUARDIAN in action.notify
            assert action.allow_override is False

    def test_teen_warns_then_blocks(self) -> None:
        assert action_for(ProfileCategory.TEEN, Severity.MEDIUM).action == ThreatAction.WARN
        high = action_for(ProfileCategory.TEEN, Severity.HIGH)
        assert high.action == ThreatAction.BLOCK
        assert NotifyTarget.GUARDIAN in high.notify

    def test_adult_override_rules(self) -> None:
        assert action_for(ProfileCategory.ADULT, Severity.HIGH).allow_override is True
        assert action_for(ProfileCategory.ADULT, Severity.CRITICAL).allow_override is False

    def test_senior_blocks_from_medium_and_tells_family(self) -> None:
        assert action_for(ProfileCategory.SENIOR, Severity.LOW).action == ThreatAction.WARN
        medium = action_for(ProfileCategory.SENIOR, Severity.MEDIUM)
        assert medium.action == ThreatAction.BLOCK
        assert NotifyTarget.FAMILY in medium.notify

    @pytest.mark.parametrize(
        ("group", "extra"),
        [
            (ProfileCategory.CHILD, NotifyTarget.GUARDIAN),
            (ProfileCategory.TEEN, NotifyTarget.GUARDIAN),
            (ProfileCategory.SENIOR, NotifyTarget.FAMILY),
        ],
    )
    def test_emergency_escalates(self, group: ProfileCategory, extra: NotifyTarget) -> None:
        action = action_for(group, Severity.EMERGENCY, PatternFamily.CRISIS_SIGNAL)
        assert action.action == ThreatAction.ESCALATE
        assert NotifyTarget.EMERGENCY_CONTACTS in action.notify
        assert extra in action.notify
        assert action.allow_override is False

    def test_adult_emergency_has_no_guardian(self) -> None:
        action = action_for(ProfileCategory.ADULT, Severity.EMERGENCY)
        assert action.notify == (NotifyTarget.USER, NotifyTarget.EMERGENCY_CONTACTS)

    def test_guidance_attached(self) -> None:
        action = action_for(ProfileCategory.SENIOR, Severity.HIGH, PatternFamily.FINANCIAL_SCAM)
        assert action.message == GUIDANCE[PatternFamily.FINANCIAL_SCAM].message
        assert action.steps

    def test_unspecified_group_resolves_to_adult(self) -> None:
        assert action_for(ProfileCategory.UNSPECIFIED, Severity.MEDIUM) == action_for(
            ProfileCategory.ADULT, Severity.MEDIUM
        )

    def test_engine_method_delegates(self) -> None:
        policy = PolicyEngine()
        assert policy.action_for(ProfileCategory.TEEN, Severity.HIGH) == action_for(
            ProfileCategory.TEEN, Severity.HIGH
        )


class TestGuidance:
    """Tests for guidance lookup."""

    def test_every_family_has_guidance(self) -> None:
        assert set(GUIDANCE) == set(PatternFamily)

    def test_default_guidance(self) -> None:
        assert guidance_for(None).message
        assert guidance_for(None).steps
