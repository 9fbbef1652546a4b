import json
import logging

from marketplace.main import create_app
from marketplace.observability.logging_config import JsonFormatter
from marketplace.observability.metrics import (
    get_metrics_snapshot,
    increment_counter,
    observe_latency,
    record_event,
    reset_metrics,
    set_gauge,
)


def test_metrics_snapshot_accumulates_counts():
    reset_metrics()
    increment_counter("test_counter")
    increment_counter("test_counter", amount=2, labels={"route": "/example"})
    set_gauge("test_gauge", 5)
    observe_latency("test_latency", 100, labels={"route": "/example"})
    observe_latency("test_latency", 50, labels={"route": "/example"})
    record_event("test_event", {"id": 1})

    snapshot = get_metrics_snapshot()
    counters = snapshot["counters"]["test_counter"]
    assert len(counters) == 2

    gauges = snapshot["gauges"]["test_gauge"]
    assert gauges[0]["value"] == 5

    hist = snapshot["histograms"]["test_latency"][0]["stats"]
    assert hist["count"] == 2
    assert hist["max"] == 100
    assert hist["avg"] == 75
    assert snapshot["events"][-1]["name"] == "test_event"


def test_requests_are_counted_and_tagged_with_request_id(client):
    reset_metrics()
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.get_json()["components"]["database"]["status"] == "UP"
    assert response.headers["X-Request-ID"] == "req-123"
    counters = get_metrics_snapshot()["counters"]["http_requests_total"]
    assert any(entry["labels"]["endpoint"] == "health" for entry in counters)


def test_error_responses_share_one_shape(client):
    response = client.get("/api/does-not-exist")

    body = response.get_json()
    assert response.status_code == 404
    assert body["success"] is False
    assert body["error"]["kind"] == "NotFound"
    assert body["error"]["message"]


def test_json_formatter_redacts_sensitive_extras():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "login attempt", (), None)
    record.password = "hunter2"
    record.username = "alice"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["extra"]["password"] == "[redacted]"
    assert payload["extra"]["username"] == "alice"
    assert "hunter2" not in json.dumps(payload)


def test_cors_origins_follow_app_overrides(fake_gateway, mailer):
    app = create_app(
        overrides={"TESTING": True, "CORS_ALLOWED_ORIGINS": ["https://shop.example"]},
        gateway_client=fake_gateway,
        mailer=mailer,
    )
    client = app.test_client()

    allowed = client.get("/api/products", headers={"Origin": "https://shop.example"})
    other = client.get("/api/products", headers={"Origin": "http://localhost:3000"})

    assert allowed.headers.get("Access-Control-Allow-Origin") == "https://shop.example"
    assert "Access-Control-Allow-Origin" not in other.headers
