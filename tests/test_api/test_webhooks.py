"""
Tests for the signed management API webhook.
"""
import json

import pytest

from compliance_orchestrator.utils.webhook_signature import SIGNATURE_HEADER, compute_signature

IMEI = "356938035643809"
DEVICE = "enterprises/LC0test/devices/3f8a1c"


@pytest.fixture
def case_id(client):
    response = client.post("/api/cases", json={
        "id": "loan-100",
        "customer_id": "cust-100",
        "postal_code": "560001",
        "imei1": IMEI,
    })
    assert response.status_code == 201
    return "loan-100"


@pytest.fixture
def post_signed(client, test_settings):
    def _post(payload, secret=None, raw=None):
        body = raw if raw is not None else json.dumps(payload).encode()
        signature = compute_signature(secret or test_settings.amapi_webhook_secret, body)
        return client.post(
            "/api/webhooks/amapi",
            content=body,
            headers={SIGNATURE_HEADER: signature, "Content-Type": "application/json"},
        )
    return _post


class TestAmapiWebhook:
    """Test signature checks and event application."""

    def test_enrollment_applied(self, client, case_id, post_signed):
        response = post_signed({
            "notificationType": "ENROLLMENT",
            "deviceName": DEVICE,
            "additionalData": case_id,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["applied"] is True
        assert body["data"]["case_id"] == case_id

        case = client.get(f"/api/cases/{case_id}").json()["data"]
        assert case["enrollment"]["enrolled"] is True
        assert case["enrollment"]["device_name"] == DEVICE

    def test_bad_signature_rejected_without_mutation(self, client, case_id, post_signed):
        response = post_signed(
            {"notificationType": "ENROLLMENT", "deviceName": DEVICE, "additionalData": case_id},
            secret="wrong-secret",
        )

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"
        case = client.get(f"/api/cases/{case_id}").json()["data"]
        assert case["enrollment"]["enrolled"] is False

    def test_missing_signature_rejected(self, client):
        response = client.post("/api/webhooks/amapi", json={"notificationType": "ENROLLMENT"})
        assert response.status_code == 401

    def test_non_ascii_signature_rejected(self, client, case_id):
        body = json.dumps({
            "notificationType": "ENROLLMENT", "deviceName": DEVICE, "additionalData": case_id,
        }).encode()
        response = client.post(
            "/api/webhooks/amapi",
            content=body,
            headers={SIGNATURE_HEADER: "sha256=\u00e9".encode("utf-8")},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"
        case = client.get(f"/api/cases/{case_id}").json()["data"]
        assert case["enrollment"]["enrolled"] is False

    def test_malformed_json(self, post_signed):
        response = post_signed(None, raw=b"{not json")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION"

    def test_non_object_body(self, post_signed):
        assert post_signed([1, 2, 3]).status_code == 400

    def test_malformed_known_event(self, post_signed):
        response = post_signed({"notificationType": "COMMAND", "commandType": ["LOCK"]})
        assert response.status_code == 400

    def test_unknown_event_acknowledged(self, post_signed):
        response = post_signed({"notificationType": "USAGE_LOGS", "deviceName": DEVICE})

        assert response.status_code == 200
        assert response.json()["data"]["detail"] == "unknown_event_type"

    def test_command_result_confirms_lock(self, client, case_id, post_signed):
        post_signed({"notificationType": "ENROLLMENT", "deviceName": DEVICE, "additionalData": case_id})
        client.put(f"/api/cases/{case_id}/lock", json={"state": "LOCKED"})

        response = post_signed({
            "notificationType": "COMMAND",
            "deviceName": DEVICE,
            "commandType": "LOCK",
            "commandStatus": "SUCCEEDED",
        })

        assert response.json()["data"]["detail"] == "confirmed_locked"
        case = client.get(f"/api/cases/{case_id}").json()["data"]
        assert case["confirmed_state"] == "LOCKED"
        assert case["locked_since"] is not None
