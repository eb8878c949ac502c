from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

import api_server
from errors import BroadcastError, IllegalTransition, InvalidInput, SessionBusy, SessionNotFound


@pytest.fixture
def container():
    with patch("api_server.global_container") as c:
        yield c


@pytest.fixture
def client():
    return TestClient(api_server.app)


def _session(state="awaiting_approval"):
    s = MagicMock()
    s.to_dict.return_value = {"session_id": "s1", "state": state}
    return s


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_send_route(client, container):
    container.coordinator.submit.return_value = _session()
    r = client.post("/api/keys/7/send", json={"amount": "0.1", "toAddr": "0xabc", "gasLimit": ""})

    assert r.status_code == 200
    assert r.json()["state"] == "awaiting_approval"
    container.coordinator.submit.assert_called_once_with("7", "0.1", "0xabc", None)


@pytest.mark.parametrize(
    "error,status",
    [
        (InvalidInput("bad amount", field_name="amount"), 400),
        (SessionBusy("0xabc", "s0"), 409),
        (SessionNotFound("s1"), 404),
        (BroadcastError("nonce too low", nonce_related=True), 502),
    ],
)
def test_send_route_error_mapping(client, container, error, status):
    container.coordinator.submit.side_effect = error
    r = client.post("/api/keys/7/send", json={"amount": "0.1", "toAddr": "0xabc"})
    assert r.status_code == status
    assert r.json()["detail"]["code"] == error.code


def test_send_route_requires_fields(client, container):
    r = client.post("/api/keys/7/send", json={"amount": "0.1"})
    assert r.status_code == 422
    container.coordinator.submit.assert_not_called()


def test_session_routes(client, container):
    container.coordinator.list_sessions.return_value = [{"session_id": "s1"}]
    container.coordinator.get.return_value = _session("completed")
    container.coordinator.cancel.side_effect = IllegalTransition("broadcasting", "cancelled")

    assert client.get("/api/sessions").json() == {"sessions": [{"session_id": "s1"}]}
    assert client.get("/api/sessions/s1").json()["state"] == "completed"
    assert client.post("/api/sessions/s1/cancel").status_code == 409
    assert client.delete("/api/sessions/s1").json() == {"ok": True}
    container.coordinator.dismiss.assert_called_once_with("s1")


def test_unknown_session_is_404(client, container):
    container.coordinator.get.side_effect = SessionNotFound("nope")
    r = client.get("/api/sessions/nope")
    assert r.status_code == 404


def test_balance_route(client, container):
    container.key_resolver.resolve_address.return_value = "0xabc"
    watcher = container.balance_watcher.return_value
    watcher.latest.return_value = 10
    watcher.status.return_value = {"address": "0xabc", "balance_wei": 10}

    r = client.get("/api/keys/7/balance")

    assert r.status_code == 200
    assert r.json()["balance_wei"] == 10
    watcher.poll_once.assert_not_called()


def test_balance_route_bad_key(client, container):
    assert client.get("/api/keys/abc/balance").status_code == 400


def test_metrics_route(client, container):
    container.metrics.snapshot.return_value = {"counters": {}, "gauges": {}}
    assert client.get("/api/metrics").json() == {"counters": {}, "gauges": {}}
