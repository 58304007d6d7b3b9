"""
Integration tests for POST /api/webhook.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import checkout_event, encode_event, setup_intent_event, sign_payload
from index import app
from services.providers import get_reconciler


@pytest.fixture
def client(reconciler):
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def post_event(client, payload: bytes, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["stripe-signature"] = signature
    return client.post("/api/webhook", content=payload, headers=headers)


class TestWebhookResponses:

    def test_checkout_completed_returns_received(self, client, repository):
        payload = encode_event(checkout_event())
        response = post_event(client, payload, sign_payload(payload))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert repository.listings["venue_listing"]["l1"]["is_draft"] is False
        assert len(repository.payment_methods_for("u1")) == 1

    def test_missing_signature_is_400(self, client, repository):
        response = post_event(client, encode_event(checkout_event()))
        assert response.status_code == 400
        assert response.json() == {"error": "Webhook signature verification failed"}
        assert repository.writes == []

    def test_tampered_body_is_400_without_mutations(self, client, gateway, repository):
        payload = encode_event(checkout_event())
        signature = sign_payload(payload)
        tampered = payload.replace(b'"venue"', b'"dj"')

        response = post_event(client, tampered, signature)

        assert response.status_code == 400
        assert response.json() == {"error": "Webhook signature verification failed"}
        assert gateway.calls == []
        assert repository.writes == []
        assert repository.subscriptions == {}
        assert repository.listings["venue_listing"]["l1"]["is_draft"] is True

    def test_tampered_signature_is_400(self, client, repository):
        payload = encode_event(checkout_event())
        signature = sign_payload(payload)
        tampered = signature.replace("v1=", "v1=0", 1)[:len(signature)]

        response = post_event(client, payload, tampered)

        assert response.status_code == 400
        assert repository.writes == []

    def test_unrecognized_event_is_acknowledged(self, client, gateway, repository):
        payload = encode_event({"id": "evt_9", "type": "invoice.payment_failed", "data": {"object": {"id": "in_1"}}})
        response = post_event(client, payload, sign_payload(payload))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert gateway.calls == []
        assert repository.writes == []

    def test_reconciliation_failure_is_500(self, client, gateway, repository):
        repository.add_payment_method("u1", "pm_old")
        repository.fail_replace = True
        payload = encode_event(setup_intent_event())

        response = post_event(client, payload, sign_payload(payload))

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook processing failed"}
        detached = [call[1][0] for call in gateway.calls_named("detach_payment_method")]
        assert "pm_new" in detached

    def test_unknown_service_type_is_500(self, client, repository):
        payload = encode_event(checkout_event(service_type="florist"))
        response = post_event(client, payload, sign_payload(payload))
        assert response.status_code == 500
        assert repository.writes == []

    def test_redelivery_keeps_single_rows(self, client, repository):
        payload = encode_event(checkout_event())
        for _ in range(2):
            response = post_event(client, payload, sign_payload(payload))
            assert response.status_code == 200

        assert len(repository.subscriptions) == 1
        assert len(repository.payment_methods_for("u1")) == 1


def test_health_check():
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
