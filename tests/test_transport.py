"""Tests for transports — HTTP retry classification, JSONL output, in-memory double."""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from conftest import make_batch, make_invocation
from emcy_telemetry.collector.models import DEFAULT_ENDPOINT
from emcy_telemetry.transport.http import HttpTransport
from emcy_telemetry.transport.jsonl import JSONLTransport
from emcy_telemetry.transport.memory import MemoryTransport


# -- helpers ----------------------------------------------------------------

class ScriptedEndpoint:
    """httpx.MockTransport handler that replays status codes (or exceptions) in order.

    The last entry repeats once the script runs out.
    """

    def __init__(self, *script) -> None:
        self._script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("connection refused", request=request)
        return httpx.Response(step)

    @property
    def call_count(self) -> int:
        return len(self.requests)


def _make_transport(endpoint_handler, monkeypatch, **kwargs) -> tuple[HttpTransport, list[float]]:
    transport = HttpTransport(http_transport=httpx.MockTransport(endpoint_handler), **kwargs)
    delays: list[float] = []

    async def _record_delay(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr(transport, "_delay", _record_delay)
    return transport, delays


# -- request shape ----------------------------------------------------------

class TestHttpRequestShape:

    async def test_uses_default_endpoint(self, monkeypatch):
        endpoint = ScriptedEndpoint(200)
        transport, _ = _make_transport(endpoint, monkeypatch)

        await transport.send(make_batch())
        assert str(endpoint.requests[0].url) == DEFAULT_ENDPOINT
        assert transport.endpoint == DEFAULT_ENDPOINT

    async def test_uses_custom_endpoint(self, monkeypatch):
        endpoint = ScriptedEndpoint(200)
        transport, _ = _make_transport(endpoint, monkeypatch, endpoint="https://custom.endpoint.com/telemetry")

        await transport.send(make_batch())
        assert str(endpoint.requests[0].url) == "https://custom.endpoint.com/telemetry"

    async def test_posts_json_with_bearer_auth(self, monkeypatch):
        endpoint = ScriptedEndpoint(200)
        transport, _ = _make_transport(endpoint, monkeypatch)
        batch = make_batch(api_key="test-api-key", mcp_server_id="srv-1")

        await transport.send(batch)
        request = endpoint.requests[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["authorization"] == "Bearer test-api-key"

        body = json.loads(request.content)
        assert body == {
            "apiKey": "test-api-key",
            "mcpServerId": "srv-1",
            "timestamp": "2024-01-01T00:00:00.000Z",
            "invocations": [{
                "invocationId": "inv-1",
                "toolName": "tool1",
                "timestamp": "2024-01-01T00:00:00.000Z",
                "duration": 100,
                "success": True,
            }],
        }

    async def test_batch_api_key_is_used_per_batch(self, monkeypatch):
        endpoint = ScriptedEndpoint(200)
        transport, _ = _make_transport(endpoint, monkeypatch)

        await transport.send(make_batch(api_key="first"))
        await transport.send(make_batch(api_key="second"))
        assert [r.headers["authorization"] for r in endpoint.requests] == ["Bearer first", "Bearer second"]


# -- retry classification ---------------------------------------------------

class TestHttpRetry:

    async def test_success_first_try(self, monkeypatch):
        endpoint = ScriptedEndpoint(200)
        transport, delays = _make_transport(endpoint, monkeypatch)

        assert await transport.send(make_batch()) is True
        assert endpoint.call_count == 1
        assert delays == []

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422, 499])
    async def test_client_error_not_retried(self, monkeypatch, caplog, status):
        endpoint = ScriptedEndpoint(status)
        transport, delays = _make_transport(endpoint, monkeypatch)

        with caplog.at_level(logging.ERROR):
            assert await transport.send(make_batch()) is False
        assert endpoint.call_count == 1
        assert delays == []
        assert f"Client error: {status}" in caplog.text

    async def test_server_error_retried_then_given_up(self, monkeypatch, caplog):
        endpoint = ScriptedEndpoint(500)
        transport, delays = _make_transport(endpoint, monkeypatch)

        with caplog.at_level(logging.WARNING):
            assert await transport.send(make_batch()) is False
        assert endpoint.call_count == 3
        assert delays == [1.0, 2.0]
        assert "Failed to send telemetry after 3 attempts: HTTP 500" in caplog.text

    async def test_retry_then_succeed(self, monkeypatch):
        endpoint = ScriptedEndpoint(500, 503, 200)
        transport, delays = _make_transport(endpoint, monkeypatch)

        assert await transport.send(make_batch()) is True
        assert endpoint.call_count == 3
        assert delays == [1.0, 2.0]

    async def test_server_error_then_client_error_stops(self, monkeypatch):
        endpoint = ScriptedEndpoint(502, 401)
        transport, delays = _make_transport(endpoint, monkeypatch)

        assert await transport.send(make_batch()) is False
        assert endpoint.call_count == 2
        assert delays == [1.0]

    async def test_network_error_is_retryable(self, monkeypatch):
        endpoint = ScriptedEndpoint(httpx.ConnectError, 200)
        transport, delays = _make_transport(endpoint, monkeypatch)

        assert await transport.send(make_batch()) is True
        assert endpoint.call_count == 2
        assert delays == [1.0]

    async def test_network_error_exhausts_attempts(self, monkeypatch, caplog):
        endpoint = ScriptedEndpoint(httpx.ConnectError)
        transport, delays = _make_transport(endpoint, monkeypatch)

        with caplog.at_level(logging.ERROR):
            assert await transport.send(make_batch()) is False
        assert endpoint.call_count == 3
        assert "connection refused" in caplog.text

    async def test_custom_backoff_schedule(self, monkeypatch):
        endpoint = ScriptedEndpoint(500)
        transport, delays = _make_transport(endpoint, monkeypatch, max_attempts=4, base_delay=0.5)

        assert await transport.send(make_batch()) is False
        assert delays == [0.5, 1.0, 2.0]

    async def test_debug_logs_sent_count(self, monkeypatch, caplog):
        endpoint = ScriptedEndpoint(202)
        transport, _ = _make_transport(endpoint, monkeypatch, debug=True)
        batch = make_batch(invocations=[make_invocation(1), make_invocation(2)])

        with caplog.at_level(logging.INFO):
            await transport.send(batch)
        assert "[emcy] Sent 2 invocations" in caplog.text

    async def test_unserializable_input_degrades_to_string(self, monkeypatch):
        endpoint = ScriptedEndpoint(200)
        transport, _ = _make_transport(endpoint, monkeypatch)
        marker = object()
        batch = make_batch(invocations=[make_invocation(input={"handle": marker})])

        assert await transport.send(batch) is True
        body = json.loads(endpoint.requests[0].content)
        assert body["invocations"][0]["input"]["handle"] == str(marker)


# -- JSONL ------------------------------------------------------------------

class TestJSONLTransport:

    async def test_appends_one_line_per_batch(self, tmp_path):
        path = tmp_path / "out" / "batches.jsonl"
        transport = JSONLTransport(str(path))

        assert await transport.send(make_batch(api_key="a")) is True
        assert await transport.send(make_batch(api_key="b")) is True

        lines = path.read_text().splitlines()
        assert [json.loads(line)["apiKey"] for line in lines] == ["a", "b"]

    async def test_write_failure_reports_not_delivered(self, tmp_path, caplog):
        transport = JSONLTransport(str(tmp_path))  # a directory, not a file

        with caplog.at_level(logging.ERROR):
            assert await transport.send(make_batch()) is False
        assert "Failed to write batch" in caplog.text


# -- in-memory --------------------------------------------------------------

class TestMemoryTransport:

    async def test_records_batches_and_scripted_outcomes(self):
        transport = MemoryTransport(outcomes=[False, True])

        assert await transport.send(make_batch()) is False
        assert await transport.send(make_batch()) is True
        assert await transport.send(make_batch()) is True
        assert transport.call_count == 3
        assert len(transport.invocations) == 3
