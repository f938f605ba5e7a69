import json
import socket

import numpy as np
import pytest

from pvp_bridge.config import DecisionServiceConfig
from pvp_bridge.contract import ACTION_HEAD_SIZES, OBS_SIZE
from pvp_bridge.decision_client import DecisionClient


def _obs():
    return np.zeros(OBS_SIZE, dtype=np.float32)


def _mask():
    return [[True] * size for size in ACTION_HEAD_SIZES]


def _client(port: int, read_timeout_s: float = 0.5) -> DecisionClient:
    return DecisionClient(DecisionServiceConfig(port=port, read_timeout_s=read_timeout_s,
                                                connect_timeout_s=1.0))


def _unused_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_all_zero_response_is_returned(decision_server):
    server = decision_server(json.dumps({"action": [0] * 12}))
    client = _client(server.port)
    try:
        assert client.request_action(1, 0.0, _obs(), _mask()) == [0] * 12
    finally:
        client.shutdown()
    assert client.total_requests == 1
    assert client.failed_requests == 0


def test_request_payload_shape(decision_server):
    server = decision_server(json.dumps({"action": [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 3]}))
    client = _client(server.port)
    try:
        action = client.request_action(7, 0.5, _obs(), _mask())
    finally:
        client.shutdown()

    assert action == [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 3]
    request = server.requests[0]
    assert request["model"] == "FineTunedNh"
    assert len(request["obs"]) == 1
    assert len(request["obs"][0]) == OBS_SIZE
    assert [len(row) for row in request["actionMasks"]] == list(ACTION_HEAD_SIZES)
    assert request["deterministic"] is False
    assert request["extensions"] == []


@pytest.mark.parametrize("reply", [
    json.dumps({"action": [1, 2, 3]}),
    json.dumps({"action": "attack"}),
    json.dumps({"action": [0.5] + [0] * 11}),
    json.dumps({"action": [True] + [0] * 11}),
    json.dumps({"result": [0] * 12}),
    "not json at all",
    '{"action": [NaN, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0]}',
    '{"action": [1e400, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0]}',
    '{"action": [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, -Infinity]}',
])
def test_malformed_response_yields_safe_default(decision_server, reply):
    server = decision_server(reply)
    client = _client(server.port)
    try:
        assert client.request_action(1, 0.0, _obs(), _mask()) == [0] * 12
    finally:
        client.shutdown()
    assert client.failed_requests == 1


def test_closed_connection_yields_safe_default(decision_server):
    server = decision_server(None)
    client = _client(server.port)
    try:
        assert client.request_action(1, 0.0, _obs(), _mask()) == [0] * 12
        assert not client.is_connected
    finally:
        client.shutdown()


def test_refused_connection_yields_safe_default():
    client = _client(_unused_port())
    try:
        assert client.request_action(1, 0.0, _obs(), _mask()) == [0] * 12
        assert not client.is_connected
    finally:
        client.shutdown()
    assert client.metrics()["failed_requests"] == 1


def test_timeout_yields_safe_default():
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    client = _client(listener.getsockname()[1], read_timeout_s=0.1)
    try:
        assert client.request_action(1, 0.0, _obs(), _mask()) == [0] * 12
        assert not client.is_connected
    finally:
        client.shutdown()
        listener.close()


def test_reconnects_lazily_after_failure(decision_server):
    server = decision_server(json.dumps({"action": [0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0, 0]}))
    client = _client(server.port)
    try:
        assert client.request_action(1, 0.0, _obs(), _mask())[5] == 1
        client.disconnect()
        assert client.request_action(2, 0.0, _obs(), _mask())[5] == 1
        assert client.is_connected
    finally:
        client.shutdown()
    assert client.average_latency_ms > 0.0


def test_async_request_resolves_on_worker(decision_server):
    server = decision_server(json.dumps({"action": [0] * 11 + [2]}))
    client = _client(server.port)
    try:
        future = client.request_action_async(1, 0.0, _obs(), _mask())
        assert future.result(timeout=2.0) == [0] * 11 + [2]
    finally:
        client.shutdown()


def test_parse_response_accepts_integral_floats():
    assert DecisionClient.parse_response(json.dumps({"action": [1.0] + [0] * 11})) == [1] + [0] * 11


def test_read_timeout_must_fit_in_a_cycle():
    with pytest.raises(ValueError):
        DecisionServiceConfig(read_timeout_s=0.6)


def test_undecodable_reply_yields_safe_default(decision_server):
    server = decision_server(b'{"action": "\xff\xfe"}')
    client = _client(server.port)
    try:
        assert client.request_action(1, 0.0, _obs(), _mask()) == [0] * 12
        assert not client.is_connected
    finally:
        client.shutdown()
    assert client.failed_requests == 1


def test_parse_response_rejects_non_finite_entries():
    assert DecisionClient.parse_response('{"action": [NaN' + ', 0' * 11 + ']}') is None
    assert DecisionClient.parse_response('{"action": [1e400' + ', 0' * 11 + ']}') is None
