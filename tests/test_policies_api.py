"""Policy management and evaluation API tests."""

from fastapi.testclient import TestClient

from clinical_access.core.security import ACTOR_PROFESSIONAL
from tests.factories import OTHER_PATIENT_CI, PATIENT_CI, PROFESSIONAL_ID, auth_headers_for

POLICIES = "/api/v1/policies"


def create_policy(client: TestClient, headers: dict, **body) -> dict:
    body.setdefault("policyType", "DOCUMENT_TYPE")
    body.setdefault("policyConfig", {"allowedTypes": ["LAB_RESULT"]})
    body.setdefault("policyEffect", "PERMIT")
    response = client.post(POLICIES, json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def evaluate(client: TestClient, headers: dict, **body):
    body.setdefault("patientCi", PATIENT_CI)
    body.setdefault("documentType", "LAB_RESULT")
    return client.post(f"{POLICIES}/evaluate", json=body, headers=headers)


class TestCatalogue:
    def test_templates_are_public(self, client: TestClient) -> None:
        response = client.get(f"{POLICIES}/templates")

        assert response.status_code == 200
        data = response.json()
        assert len(data["hash"]) == 64
        assert {t["policyType"] for t in data["templates"]} >= {"CLINIC", "EMERGENCY_OVERRIDE"}

    def test_specialties(self, client: TestClient) -> None:
        response = client.get(f"{POLICIES}/specialties")

        assert response.status_code == 200
        assert {"value": "CARDIOLOGIA", "label": "Cardiologia"} in response.json()


class TestCreatePolicy:
    def test_create(self, client: TestClient, patient_headers: dict) -> None:
        data = create_policy(client, patient_headers, priority=25)

        assert data["patientCi"] == PATIENT_CI
        assert data["policyType"] == "DOCUMENT_TYPE"
        assert data["policyConfig"] == {"allowedTypes": ["LAB_RESULT"], "deniedTypes": []}
        assert data["priority"] == 25
        assert data["active"] is True

    def test_short_form_clinic(self, client: TestClient, patient_headers: dict) -> None:
        response = client.post(POLICIES, json={"clinicId": "clinic-1"}, headers=patient_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["policyType"] == "CLINIC"
        assert data["policyEffect"] == "PERMIT"
        assert data["policyConfig"]["allowedClinics"] == ["clinic-1"]

    def test_short_form_specialty(self, client: TestClient, patient_headers: dict) -> None:
        response = client.post(
            POLICIES, json={"specialty": "Cardiology", "policyEffect": "DENY"}, headers=patient_headers
        )

        assert response.status_code == 201
        assert response.json()["policyConfig"]["allowedSpecialties"] == ["CARDIOLOGIA"]

    def test_config_as_json_string(self, client: TestClient, patient_headers: dict) -> None:
        data = create_policy(
            client, patient_headers, policyConfig='{"allowedTypes": ["IMAGING"]}'
        )

        assert data["policyConfig"]["allowedTypes"] == ["IMAGING"]

    def test_invalid_config_is_bad_request(self, client: TestClient, patient_headers: dict) -> None:
        response = client.post(
            POLICIES,
            json={"policyType": "CLINIC", "policyConfig": {"allowedClinics": []}, "policyEffect": "PERMIT"},
            headers=patient_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_deny_list_on_permit_policy_is_bad_request(
        self, client: TestClient, patient_headers: dict
    ) -> None:
        response = client.post(
            POLICIES,
            json={
                "policyType": "PROFESSIONAL",
                "policyConfig": {"allowedProfessionals": ["prof-1"], "deniedProfessionals": ["prof-9"]},
                "policyEffect": "PERMIT",
            },
            headers=patient_headers,
        )

        assert response.status_code == 400
        assert "require effect DENY" in response.json()["detail"]

    def test_missing_type_is_unprocessable(self, client: TestClient, patient_headers: dict) -> None:
        response = client.post(POLICIES, json={"policyEffect": "PERMIT"}, headers=patient_headers)

        assert response.status_code == 422

    def test_for_another_patient_is_forbidden(self, client: TestClient, patient_headers: dict) -> None:
        response = client.post(
            POLICIES,
            json={"patientCi": OTHER_PATIENT_CI, "clinicId": "clinic-1"},
            headers=patient_headers,
        )

        assert response.status_code == 403

    def test_requires_authentication(self, client: TestClient) -> None:
        response = client.post(POLICIES, json={"clinicId": "clinic-1"})

        assert response.status_code == 401

    def test_professional_cannot_manage_policies(
        self, client: TestClient, professional_headers: dict
    ) -> None:
        response = client.post(POLICIES, json={"clinicId": "clinic-1"}, headers=professional_headers)

        assert response.status_code == 403


class TestPolicyCrud:
    def test_list_own_policies(self, client: TestClient, patient_headers: dict) -> None:
        create_policy(client, patient_headers, priority=5)
        create_policy(client, patient_headers, priority=50)

        response = client.get(
            f"{POLICIES}/patient/{PATIENT_CI}", params={"size": 1}, headers=patient_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["totalPages"] == 2
        assert [p["priority"] for p in data["policies"]] == [50]

    def test_list_is_empty_without_policies(self, client: TestClient, patient_headers: dict) -> None:
        response = client.get(f"{POLICIES}/patient/{PATIENT_CI}", headers=patient_headers)

        assert response.status_code == 200
        assert response.json()["policies"] == []

    def test_list_other_patient_is_forbidden(self, client: TestClient, patient_headers: dict) -> None:
        response = client.get(f"{POLICIES}/patient/{OTHER_PATIENT_CI}", headers=patient_headers)

        assert response.status_code == 403

    def test_count(self, client: TestClient, patient_headers: dict) -> None:
        create_policy(client, patient_headers)

        response = client.get(f"{POLICIES}/count", headers=patient_headers)

        assert response.json() == {"patientCi": PATIENT_CI, "count": 1}

    def test_update(self, client: TestClient, patient_headers: dict) -> None:
        policy = create_policy(client, patient_headers)

        response = client.put(
            f"{POLICIES}/{policy['id']}", json={"priority": 70}, headers=patient_headers
        )

        assert response.status_code == 200
        assert response.json()["priority"] == 70
        assert response.json()["policyConfig"] == policy["policyConfig"]

    def test_update_without_fields_is_bad_request(self, client: TestClient, patient_headers: dict) -> None:
        policy = create_policy(client, patient_headers)

        response = client.put(f"{POLICIES}/{policy['id']}", json={}, headers=patient_headers)

        assert response.status_code == 400

    def test_revoke(self, client: TestClient, patient_headers: dict) -> None:
        policy = create_policy(client, patient_headers)

        response = client.put(f"{POLICIES}/{policy['id']}/revoke", headers=patient_headers)

        assert response.status_code == 200
        assert response.json()["validUntil"] is not None

    def test_delete(self, client: TestClient, patient_headers: dict) -> None:
        policy = create_policy(client, patient_headers)

        response = client.delete(f"{POLICIES}/{policy['id']}", headers=patient_headers)
        assert response.status_code == 204

        response = client.get(f"{POLICIES}/{policy['id']}", headers=patient_headers)
        assert response.status_code == 404

    def test_other_patients_policy_is_forbidden_not_missing(
        self, client: TestClient, patient_headers: dict, other_patient_headers: dict
    ) -> None:
        policy = create_policy(client, patient_headers)

        assert client.get(f"{POLICIES}/{policy['id']}", headers=other_patient_headers).status_code == 403
        assert client.delete(f"{POLICIES}/{policy['id']}", headers=other_patient_headers).status_code == 403
        assert client.get(f"{POLICIES}/missing", headers=other_patient_headers).status_code == 404

    def test_delete_all(self, client: TestClient, patient_headers: dict) -> None:
        create_policy(client, patient_headers)
        create_policy(client, patient_headers)

        response = client.delete(POLICIES, headers=patient_headers)

        assert response.status_code == 200
        assert response.json() == {"deleted": 2}


class TestEvaluate:
    def test_permit_is_ok(self, client: TestClient, patient_headers: dict, professional_headers: dict) -> None:
        policy = create_policy(client, patient_headers)

        response = evaluate(client, professional_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["decision"] == "PERMIT"
        assert data["decidingPolicy"] == policy["id"]
        assert data["evaluatedPolicies"] == [policy["id"]]

    def test_deny_is_forbidden(self, client: TestClient, patient_headers: dict, professional_headers: dict) -> None:
        create_policy(client, patient_headers, policyEffect="DENY")

        response = evaluate(client, professional_headers)

        assert response.status_code == 403
        assert response.json()["decision"] == "DENY"

    def test_no_policy_is_accepted_pending(self, client: TestClient, professional_headers: dict) -> None:
        response = evaluate(client, professional_headers)

        assert response.status_code == 202
        assert response.json() == {
            "decision": "PENDING",
            "reason": "no applicable policy; patient approval required.",
            "evaluatedPolicies": [],
            "decidingPolicy": None,
            "requiresAudit": False,
        }

    def test_deleted_policy_stops_applying(
        self, client: TestClient, patient_headers: dict, professional_headers: dict
    ) -> None:
        policy = create_policy(client, patient_headers)
        assert evaluate(client, professional_headers).status_code == 200

        client.delete(f"{POLICIES}/{policy['id']}", headers=patient_headers)

        assert evaluate(client, professional_headers).status_code == 202

    def test_emergency_override(self, client: TestClient, patient_headers: dict, professional_headers: dict) -> None:
        create_policy(client, patient_headers, policyEffect="DENY", priority=90)
        create_policy(
            client,
            patient_headers,
            policyType="EMERGENCY_OVERRIDE",
            policyConfig={"enabled": True},
        )

        response = evaluate(client, professional_headers)

        assert response.status_code == 200
        assert response.json()["requiresAudit"] is True
        assert "requiresAudit=true" in response.json()["reason"]

    def test_professional_cannot_impersonate(self, client: TestClient, professional_headers: dict) -> None:
        response = evaluate(client, professional_headers, professionalId="prof-2")

        assert response.status_code == 403

    def test_clinic_evaluates_for_its_professional(
        self, client: TestClient, patient_headers: dict, clinic_headers: dict
    ) -> None:
        create_policy(
            client,
            patient_headers,
            policyType="PROFESSIONAL",
            policyConfig={"allowedProfessionals": [PROFESSIONAL_ID]},
        )

        response = evaluate(client, clinic_headers, professionalId=PROFESSIONAL_ID)

        assert response.status_code == 200

    def test_clinic_must_name_a_professional(self, client: TestClient, clinic_headers: dict) -> None:
        response = evaluate(client, clinic_headers)

        assert response.status_code == 400

    def test_patient_cannot_evaluate(self, client: TestClient, patient_headers: dict) -> None:
        assert evaluate(client, patient_headers).status_code == 403

    def test_unknown_document_type_is_unprocessable(self, client: TestClient) -> None:
        headers = auth_headers_for(PROFESSIONAL_ID, ACTOR_PROFESSIONAL)

        response = evaluate(client, headers, documentType="HOROSCOPE")

        assert response.status_code == 422
