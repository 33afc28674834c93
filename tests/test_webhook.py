"""Tests for the Jenkins webhook endpoint."""

from __future__ import annotations

import json
import threading

import pytest
from fastapi.testclient import TestClient

from ingestor import EventIngestor, sign_payload
from webhook_server import create_app

SECRET = "hook-secret"


@pytest.fixture
def received():
    return []


@pytest.fixture
def accepting():
    event = threading.Event()
    event.set()
    return event


@pytest.fixture
def client(received, accepting):
    app = create_app(EventIngestor(received.append), SECRET, accepting)
    return TestClient(app)


def _post(client, payload, secret=SECRET, signature=None):
    body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload
    headers = {"Content-Type": "application/json",
               "X-Jenkins-Signature": signature if signature is not None else sign_payload(body, secret)}
    return client.post("/jenkins/webhook", content=body, headers=headers)


class TestJenkinsWebhook:

    def test_signed_completion_is_queued(self, client, received, notification_plugin_payload):
        response = _post(client, notification_plugin_payload)

        assert response.status_code == 202
        assert response.json() == {"status": "queued", "job": "build-A", "build": 42}
        assert [(e.job_name, e.build_number) for e in received] == [("build-A", 42)]

    def test_bad_signature_is_rejected(self, client, received, notification_plugin_payload):
        response = _post(client, notification_plugin_payload, secret="wrong-secret")

        assert response.status_code == 401
        assert received == []

    def test_missing_signature_is_rejected(self, client, received, notification_plugin_payload):
        response = _post(client, notification_plugin_payload, signature="")

        assert response.status_code == 401
        assert received == []

    def test_started_phase_is_ignored(self, client, received, notification_plugin_payload):
        notification_plugin_payload["build"]["phase"] = "STARTED"
        del notification_plugin_payload["build"]["status"]

        response = _post(client, notification_plugin_payload)

        assert response.status_code == 202
        assert response.json()["status"] == "ignored"
        assert received == []

    def test_malformed_payload(self, client, received):
        response = _post(client, {"name": "build-A", "build": {"phase": "COMPLETED", "status": "FAILURE"}})

        assert response.status_code == 400
        assert "build number" in response.json()["detail"]
        assert received == []

    def test_out_of_range_timestamp_is_a_bad_request(self, client, received, notification_plugin_payload):
        notification_plugin_payload["build"]["timestamp"] = 1e20

        response = _post(client, notification_plugin_payload)

        assert response.status_code == 400
        assert "timestamp" in response.json()["detail"]
        assert received == []

    def test_body_not_json(self, client, received):
        response = _post(client, b"not json")

        assert response.status_code == 400
        assert received == []

    def test_refuses_events_while_shutting_down(self, client, received, accepting, notification_plugin_payload):
        accepting.clear()

        response = _post(client, notification_plugin_payload)

        assert response.status_code == 503
        assert received == []
        assert client.get("/health").json() == {"status": "shutting_down"}


class TestOperationalEndpoints:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_metrics(self, client, notification_plugin_payload):
        _post(client, notification_plugin_payload)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "jenkins_watch_events_received_total" in response.text
