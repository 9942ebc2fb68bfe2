"""Tests for the purchase intent API endpoints."""


def _turn(client, conversation_id, *events):
    return client.post(
        f"/api/v1/conversations/{conversation_id}/turns",
        json={"events": list(events)},
    )


def test_root_endpoint(client):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "Purchase Intent Engine"
    assert "version" in data


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] in ("healthy", "degraded")


def test_apply_turn(client):
    resp = _turn(client, "5511999990000", {"kind": "requested_quote", "strength": 1.0})
    assert resp.status_code == 200
    data = resp.json()
    assert data["conversation_id"] == "5511999990000"
    assert data["score"] == 15
    assert data["stage"] == "cold"
    assert data["recommended_action"] is None
    assert data["signals"][0]["kind"] == "requested_quote"
    assert len(data["history"]) == 1


def test_turns_accumulate(client):
    _turn(client, "c-acc", {"kind": "confirmed_purchase", "strength": 1.0})
    resp = _turn(
        client, "c-acc",
        {"kind": "requested_quote", "strength": 1.0},
        {"kind": "product_viewed", "product_id": "sku-1", "strength": 0.6},
    )
    data = resp.json()
    assert data["score"] == 40
    assert data["stage"] == "curious"
    assert data["recommended_action"] == "nurture"
    assert data["peak_score"] == 40
    assert data["products_of_interest"][0]["product_id"] == "sku-1"


def test_objection_then_resolution(client):
    resp = _turn(client, "c-obj", {"kind": "asked_for_link", "strength": 1.0}, {"kind": "trust_concern"})
    assert resp.json()["recommended_action"] == "handle_objection"

    resp = _turn(client, "c-obj", {"kind": "objection_resolved:trust_concern"})
    data = resp.json()
    assert data["objections"][0]["resolved"] is True
    assert data["objections"][0]["resolved_at"] is not None


def test_unknown_kind_is_dropped(client):
    resp = _turn(client, "c-unknown", {"kind": "wants_a_pony"}, {"kind": "asked_for_link", "strength": 1.0})
    assert resp.status_code == 200
    assert resp.json()["score"] == 10


def test_handover_request(client):
    resp = _turn(client, "c-human", {"kind": "requested_human"})
    assert resp.json()["recommended_action"] == "handover"


def test_turn_validation(client):
    resp = client.post("/api/v1/conversations/c1/turns", json={"events": [{"strength": 0.5}]})
    assert resp.status_code == 422


def test_get_intent(client):
    _turn(client, "c-get", {"kind": "asked_payment_method", "strength": 1.0})
    resp = client.get("/api/v1/conversations/c-get/intent")
    assert resp.status_code == 200
    assert resp.json()["score"] == 12


def test_get_intent_not_found(client):
    resp = client.get("/api/v1/conversations/never-seen/intent")
    assert resp.status_code == 404


def test_list_intents(client):
    _turn(client, "low", {"kind": "asked_for_link", "strength": 1.0})
    _turn(client, "high", {"kind": "confirmed_purchase", "strength": 1.0})
    _turn(client, "mid", {"kind": "requested_quote", "strength": 1.0}, {"kind": "asked_shipping", "strength": 1.0})

    resp = client.get("/api/v1/intents")
    assert resp.status_code == 200
    data = resp.json()
    assert [i["conversation_id"] for i in data["intents"]] == ["high", "mid", "low"]

    resp = client.get("/api/v1/intents", params={"stage": "curious"})
    data = resp.json()
    assert data["stage"] == "curious"
    assert [i["conversation_id"] for i in data["intents"]] == ["high", "mid"]


def test_clear_reconciliation(client):
    from api.services import get_services

    _turn(client, "c-flagged", {"kind": "asked_for_link"})
    get_services().intent_store.needs_reconciliation.add("c-flagged")
    assert client.get("/health").json()["services"]["needs_reconciliation"] == ["c-flagged"]

    resp = client.delete("/api/v1/conversations/c-flagged/reconciliation")
    assert resp.status_code == 200
    assert resp.json()["reconciled"] is True
    assert client.get("/health").json()["services"]["needs_reconciliation"] == []

    resp = client.delete("/api/v1/conversations/c-flagged/reconciliation")
    assert resp.status_code == 404


def test_list_intents_bad_stage(client):
    resp = client.get("/api/v1/intents", params={"stage": "lukewarm"})
    assert resp.status_code == 422


def test_taxonomy(client):
    resp = client.get("/api/v1/intents/taxonomy")
    assert resp.status_code == 200
    data = resp.json()
    assert [b["stage"] for b in data["stage_bands"]] == ["cold", "curious", "interested", "hot", "closing"]
    assert data["hysteresis_margin"] == 5


def test_stats(client):
    _turn(client, "c-stats", {"kind": "asked_for_link"})
    resp = client.get("/api/v1/intents/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["turns_applied"] == 1
    assert data["active_locks"] == 0


def test_metrics_endpoint(client):
    _turn(client, "c-metrics", {"kind": "asked_for_link"})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "intent_turns_applied_total" in resp.text
