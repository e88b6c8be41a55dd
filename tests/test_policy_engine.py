"""Tests for the policy engine.

The engine is pure, so every test passes the policy set and the
evaluation time explicitly.
"""

from datetime import datetime, timedelta, timezone

import pytest

from clinical_access.core.exceptions import ValidationError
from clinical_access.policies.engine import PENDING_REASON, PolicyEngine
from clinical_access.policies.models import Decision, DocumentType, PolicyEffect, PolicyType
from tests.factories import FIXED_NOW, OTHER_PATIENT_CI, make_context, make_policy


@pytest.fixture
def engine() -> PolicyEngine:
    return PolicyEngine()


def specialty_policy(priority: int = 10, **kwargs):
    return make_policy(
        PolicyType.SPECIALTY,
        {"allowedSpecialties": ["CARDIOLOGY"]},
        priority=priority,
        **kwargs,
    )


def professional_deny_policy(priority: int = 20, **kwargs):
    return make_policy(
        PolicyType.PROFESSIONAL,
        {"deniedProfessionals": ["prof-9"]},
        effect=PolicyEffect.DENY,
        priority=priority,
        **kwargs,
    )


class TestScenarios:
    """End-to-end decisions for the documented patient scenarios."""

    def test_denied_professional_loses_to_higher_priority_deny(self, engine) -> None:
        """Denied professional with a permitted specialty is denied (priority 20 wins)."""
        deny = professional_deny_policy()
        policies = [specialty_policy(), deny]

        result = engine.evaluate(
            make_context(professional_id="prof-9", specialties=frozenset({"CARDIOLOGY"})),
            policies,
            FIXED_NOW,
        )

        assert result.decision == Decision.DENY
        assert result.deciding_policy_id == deny.id

    def test_other_professional_permitted_by_specialty(self, engine) -> None:
        specialty = specialty_policy()
        policies = [specialty, professional_deny_policy()]

        result = engine.evaluate(
            make_context(professional_id="prof-2", specialties=frozenset({"CARDIOLOGY"})),
            policies,
            FIXED_NOW,
        )

        assert result.decision == Decision.PERMIT
        assert result.deciding_policy_id == specialty.id

    def test_no_policies_is_pending(self, engine) -> None:
        result = engine.evaluate(make_context(), [], FIXED_NOW)

        assert result.decision == Decision.PENDING
        assert result.deciding_policy_id is None
        assert result.reason == PENDING_REASON
        assert result.evaluated_policy_ids == []


class TestPriority:
    """Highest priority wins; later creation breaks ties."""

    def test_highest_priority_decides(self, engine) -> None:
        low = make_policy(
            PolicyType.DOCUMENT_TYPE, {"allowedTypes": ["LAB_RESULT"]}, priority=5
        )
        high = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"deniedTypes": ["LAB_RESULT"]},
            effect=PolicyEffect.DENY,
            priority=50,
        )

        result = engine.evaluate(make_context(), [high, low], FIXED_NOW)

        assert result.decision == Decision.DENY
        assert result.deciding_policy_id == high.id

    def test_tie_goes_to_later_created(self, engine) -> None:
        older = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"allowedTypes": ["LAB_RESULT"]},
            priority=10,
            created_at=FIXED_NOW - timedelta(days=10),
        )
        newer = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"deniedTypes": ["LAB_RESULT"]},
            effect=PolicyEffect.DENY,
            priority=10,
            created_at=FIXED_NOW - timedelta(days=1),
        )

        for ordering in ([older, newer], [newer, older]):
            result = engine.evaluate(make_context(), ordering, FIXED_NOW)
            assert result.deciding_policy_id == newer.id
            assert result.decision == Decision.DENY

    def test_document_specific_policy_does_not_outrank_priority(self, engine) -> None:
        """A policy scoped to the document gets no precedence of its own."""
        scoped = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"allowedTypes": ["LAB_RESULT"]},
            priority=5,
            document_id="doc-1",
        )
        general = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"deniedTypes": ["LAB_RESULT"]},
            effect=PolicyEffect.DENY,
            priority=30,
        )

        result = engine.evaluate(make_context(document_id="doc-1"), [scoped, general], FIXED_NOW)

        assert result.deciding_policy_id == general.id

    def test_evaluation_is_deterministic(self, engine) -> None:
        policies = [specialty_policy(), professional_deny_policy()]
        context = make_context(specialties=frozenset({"Cardiologia"}))

        results = {
            (r.decision, r.reason, tuple(r.evaluated_policy_ids), r.deciding_policy_id)
            for r in (engine.evaluate(context, policies, FIXED_NOW) for _ in range(5))
        }

        assert len(results) == 1


class TestEmergencyOverride:
    def emergency(self, **config):
        return make_policy(
            PolicyType.EMERGENCY_OVERRIDE,
            {"enabled": True, **config},
            priority=0,
        )

    def test_enabled_override_beats_any_deny(self, engine) -> None:
        override = self.emergency()
        deny = professional_deny_policy(priority=100)

        result = engine.evaluate(make_context(professional_id="prof-9"), [deny, override], FIXED_NOW)

        assert result.decision == Decision.PERMIT
        assert result.deciding_policy_id == override.id
        assert result.requires_audit is True
        assert "requiresAudit=true" in result.reason

    def test_disabled_override_is_ignored(self, engine) -> None:
        disabled = make_policy(PolicyType.EMERGENCY_OVERRIDE, {"enabled": False}, priority=100)

        result = engine.evaluate(make_context(), [disabled], FIXED_NOW)

        assert result.decision == Decision.PENDING
        assert result.requires_audit is False
        assert result.evaluated_policy_ids == [disabled.id]

    def test_expired_override_is_ignored(self, engine) -> None:
        expired = make_policy(
            PolicyType.EMERGENCY_OVERRIDE,
            {"enabled": True},
            valid_until=FIXED_NOW - timedelta(minutes=1),
        )

        result = engine.evaluate(make_context(), [expired], FIXED_NOW)

        assert result.decision == Decision.PENDING

    def test_missing_justification_is_reported(self, engine) -> None:
        override = self.emergency(requiresJustification=True, notifyPatient=True)

        result = engine.evaluate(make_context(request_reason="  "), [override], FIXED_NOW)

        assert result.decision == Decision.PERMIT
        assert "justification required but not provided" in result.reason
        assert "patient will be notified" in result.reason

    def test_justification_given(self, engine) -> None:
        override = self.emergency(requiresJustification=True)

        result = engine.evaluate(
            make_context(request_reason="Unconscious patient in ER"), [override], FIXED_NOW
        )

        assert "justification required" not in result.reason


class TestValidityAndScope:
    def test_expired_policy_never_matches(self, engine) -> None:
        expired = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"allowedTypes": ["LAB_RESULT"]},
            valid_until=FIXED_NOW - timedelta(seconds=1),
        )

        result = engine.evaluate(make_context(), [expired], FIXED_NOW)

        assert result.decision == Decision.PENDING
        assert expired.id not in result.evaluated_policy_ids

    def test_not_yet_valid_policy_is_skipped(self, engine) -> None:
        future = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"allowedTypes": ["LAB_RESULT"]},
            valid_from=FIXED_NOW + timedelta(hours=1),
        )

        assert engine.evaluate(make_context(), [future], FIXED_NOW).decision == Decision.PENDING

    def test_validity_bounds_are_inclusive(self, engine) -> None:
        edge = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"allowedTypes": ["LAB_RESULT"]},
            valid_from=FIXED_NOW,
            valid_until=FIXED_NOW,
        )

        assert engine.evaluate(make_context(), [edge], FIXED_NOW).decision == Decision.PERMIT

    def test_document_scoped_policy_only_covers_its_document(self, engine) -> None:
        scoped = make_policy(
            PolicyType.DOCUMENT_TYPE, {"allowedTypes": ["LAB_RESULT"]}, document_id="doc-1"
        )

        other_doc = engine.evaluate(make_context(document_id="doc-2"), [scoped], FIXED_NOW)
        same_doc = engine.evaluate(make_context(document_id="doc-1"), [scoped], FIXED_NOW)

        assert other_doc.decision == Decision.PENDING
        assert scoped.id in other_doc.evaluated_policy_ids
        assert same_doc.decision == Decision.PERMIT

    def test_other_patients_policies_are_ignored(self, engine) -> None:
        foreign = make_policy(
            PolicyType.DOCUMENT_TYPE, {"allowedTypes": ["LAB_RESULT"]}, patient_id=OTHER_PATIENT_CI
        )

        result = engine.evaluate(make_context(), [foreign], FIXED_NOW)

        assert result.decision == Decision.PENDING
        assert result.evaluated_policy_ids == []

    def test_evaluated_ids_keep_input_order(self, engine) -> None:
        policies = [
            make_policy(PolicyType.CLINIC, {"allowedClinics": ["clinic-9"]}),
            make_policy(PolicyType.DOCUMENT_TYPE, {"allowedTypes": ["IMAGING"]}),
            make_policy(PolicyType.SPECIALTY, {"allowedSpecialties": ["PEDIATRIA"]}),
        ]

        result = engine.evaluate(make_context(), policies, FIXED_NOW)

        assert result.evaluated_policy_ids == [p.id for p in policies]


class TestMatchers:
    def test_clinic_policy_needs_a_clinic(self, engine) -> None:
        clinic = make_policy(PolicyType.CLINIC, {"allowedClinics": ["clinic-1"]})

        assert engine.evaluate(make_context(), [clinic], FIXED_NOW).is_pending
        assert engine.evaluate(make_context(clinic_id="clinic-1"), [clinic], FIXED_NOW).is_permitted

    def test_professional_ids_are_case_insensitive(self, engine) -> None:
        allow = make_policy(PolicyType.PROFESSIONAL, {"allowedProfessionals": ["Prof-1"]})

        assert engine.evaluate(make_context(professional_id="prof-1"), [allow], FIXED_NOW).is_permitted

    def test_specialty_display_name_matches_code(self, engine) -> None:
        policy = make_policy(PolicyType.SPECIALTY, {"allowedSpecialties": ["MEDICINA_GENERAL"]})

        result = engine.evaluate(
            make_context(specialties=frozenset({"medicina general"})), [policy], FIXED_NOW
        )

        assert result.is_permitted

    def test_time_window_inside_and_outside(self, engine) -> None:
        office_hours = make_policy(
            PolicyType.TIME_BASED,
            {"allowedDays": ["monday", "wednesday"], "allowedHours": "09:00-17:00"},
        )

        inside = engine.evaluate(make_context(), [office_hours], FIXED_NOW)
        evening = engine.evaluate(make_context(), [office_hours], FIXED_NOW.replace(hour=19))
        thursday = engine.evaluate(make_context(), [office_hours], FIXED_NOW + timedelta(days=1))

        assert inside.is_permitted
        assert evening.is_pending
        assert thursday.is_pending

    def test_overnight_window_wraps(self, engine) -> None:
        night = make_policy(PolicyType.TIME_BASED, {"allowedHours": "22:00-06:00"})

        late = FIXED_NOW.replace(hour=23, minute=15)
        early = FIXED_NOW.replace(hour=6, minute=0)
        noon = FIXED_NOW.replace(hour=12, minute=0)

        assert engine.evaluate(make_context(), [night], late).is_permitted
        assert engine.evaluate(make_context(), [night], early).is_permitted
        assert engine.evaluate(make_context(), [night], noon).is_pending

    def test_time_window_uses_policy_timezone(self, engine) -> None:
        montevideo = make_policy(
            PolicyType.TIME_BASED,
            {"allowedHours": "08:00-09:00", "timezone": "America/Montevideo"},
        )
        # 11:30 UTC is 08:30 in Montevideo (UTC-3)
        now = datetime(2025, 3, 12, 11, 30, tzinfo=timezone.utc)

        assert engine.evaluate(make_context(), [montevideo], now).is_permitted


class TestDenyLists:
    """A deny-list entry can only ever produce DENY."""

    @pytest.mark.parametrize(
        "policy_type,config",
        [
            (PolicyType.PROFESSIONAL, {"allowedProfessionals": ["prof-1"], "deniedProfessionals": ["prof-9"]}),
            (PolicyType.DOCUMENT_TYPE, {"allowedTypes": ["IMAGING"], "deniedTypes": ["LAB_RESULT"]}),
            (PolicyType.SPECIALTY, {"allowedSpecialties": ["CARDIOLOGY"], "deniedSpecialties": ["PEDIATRICS"]}),
            (PolicyType.CLINIC, {"deniedClinics": ["clinic-9"]}),
        ],
    )
    def test_permit_policy_cannot_carry_a_deny_list(self, policy_type, config) -> None:
        with pytest.raises(ValidationError, match="deny-list entries require effect DENY"):
            make_policy(policy_type, config, effect=PolicyEffect.PERMIT)

    def test_denied_professional_is_denied_next_to_an_allow_list(self, engine) -> None:
        allow = make_policy(PolicyType.PROFESSIONAL, {"allowedProfessionals": ["prof-1"]}, priority=20)
        deny = make_policy(
            PolicyType.PROFESSIONAL,
            {"deniedProfessionals": ["prof-9"]},
            effect=PolicyEffect.DENY,
            priority=20,
        )

        denied = engine.evaluate(make_context(professional_id="prof-9"), [allow, deny], FIXED_NOW)
        allowed = engine.evaluate(make_context(professional_id="prof-1"), [allow, deny], FIXED_NOW)

        assert denied.decision == Decision.DENY
        assert denied.deciding_policy_id == deny.id
        assert allowed.decision == Decision.PERMIT
        assert allowed.deciding_policy_id == allow.id

    def test_denied_document_type_is_denied(self, engine) -> None:
        allow = make_policy(PolicyType.DOCUMENT_TYPE, {"allowedTypes": ["IMAGING"]})
        deny = make_policy(
            PolicyType.DOCUMENT_TYPE,
            {"allowedTypes": ["CLINICAL_NOTE"], "deniedTypes": ["LAB_RESULT"]},
            effect=PolicyEffect.DENY,
        )

        result = engine.evaluate(
            make_context(document_type=DocumentType.LAB_RESULT), [allow, deny], FIXED_NOW
        )

        assert result.decision == Decision.DENY
        assert result.deciding_policy_id == deny.id


class TestMalformedInput:
    def test_missing_context_is_rejected(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.evaluate(None, [], FIXED_NOW)

    def test_blank_patient_is_rejected(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.evaluate(make_context(patient_id=" "), [], FIXED_NOW)

    def test_naive_time_is_rejected(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.evaluate(make_context(), [], datetime(2025, 3, 12, 10, 30))

    def test_missing_policy_set_is_rejected(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.evaluate(make_context(document_type=DocumentType.IMAGING), None, FIXED_NOW)
