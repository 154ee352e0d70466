"""
Tests for the HTTP bridge transport, against httpx.MockTransport.

Covers:
  - RPC URL layout, JSON body, {"result": ...} unwrapping
  - Error replies and HTTP failures raise TransportError
  - init
  - Observable results and matrixObserverCancel
  - Server-sent event stream → listeners, in order, bad lines skipped
  - End to end: orchestrator start over the HTTP transport
"""

from __future__ import annotations

import json

import httpx
import pytest

from sync_client.services.orchestrator import SyncOrchestrator
from sync_client.services.remote_bridge import RemoteBridge
from sync_client.services.transport import TransportError

BASE = "http://bridge.test"

pytestmark = pytest.mark.asyncio


def make_bridge(handler) -> RemoteBridge:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteBridge(base_url=BASE + "/", device_id="dev1", client=client)


class TestRpc:
    async def test_posts_payload_and_unwraps_result(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"result": "!new:example.com"})

        bridge = make_bridge(handler)
        result = await bridge.rpc("matrixRoomCreate", {"request": {}})

        assert result == "!new:example.com"
        assert seen == {
            "method": "POST",
            "url": f"{BASE}/dev1/rpc/matrixRoomCreate",
            "body": {"request": {}},
        }

    async def test_empty_payload(self):
        def handler(request):
            assert json.loads(request.content) == {}
            return httpx.Response(200, json={"result": None})

        assert await make_bridge(handler).rpc("matrixRoomList") is None

    async def test_error_reply(self):
        def handler(request):
            return httpx.Response(200, json={"error": "room not found", "code": "notFound", "detail": "..."})

        with pytest.raises(TransportError) as exc:
            await make_bridge(handler).rpc("matrixRoomJoin", {"roomId": "!x"})
        assert exc.value.method == "matrixRoomJoin"
        assert exc.value.message == "room not found"
        assert exc.value.code == "notFound"

    async def test_http_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(TransportError):
            await make_bridge(handler).rpc("matrixRoomLeave", {"roomId": "!x"})

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError):
            await make_bridge(handler).rpc("matrixRoomLeave", {"roomId": "!x"})

    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="not json")

        with pytest.raises(TransportError):
            await make_bridge(handler).rpc("matrixRoomLeave", {"roomId": "!x"})

    async def test_init(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={})

        await make_bridge(handler).init({"deviceIdentifier": "d"})
        assert paths == ["/dev1/init"]

    async def test_observe_and_cancel(self):
        calls = []

        def handler(request):
            calls.append((request.url.path, json.loads(request.content)))
            if request.url.path.endswith("matrixRoomList"):
                return httpx.Response(200, json={"result": {"id": 4, "initial": []}})
            return httpx.Response(200, json={"result": None})

        bridge = make_bridge(handler)
        observable = await bridge.observe("matrixRoomList")
        assert observable.id == 4
        assert observable.initial == []

        await bridge.cancel(4)
        assert calls[-1] == ("/dev1/rpc/matrixObserverCancel", {"id": 4})

    async def test_observe_rejects_non_observable(self):
        def handler(request):
            return httpx.Response(200, json={"result": [1, 2]})

        with pytest.raises(TransportError):
            await make_bridge(handler).observe("matrixRoomList")


def sse(*events: tuple[str, object]) -> str:
    lines = []
    for event_type, data in events:
        lines.append(f"event: {event_type}")
        lines.append(f"data: {json.dumps(data)}")
        lines.append("")
    return "\n".join(lines) + "\n"


class TestEventStream:
    async def test_events_delivered_in_order(self):
        body = sse(
            ("observableUpdate", {"id": 1, "update": "a"}),
            ("log", {"msg": "ignored"}),
            ("observableUpdate", {"id": 1, "update": "b"}),
        )

        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/dev1/events"
            assert request.headers["accept"] == "text/event-stream"
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        bridge = make_bridge(handler)
        received = []

        async def on_update(data):
            received.append(data["update"])

        bridge.add_listener("observableUpdate", on_update)
        await bridge.listen()

        assert received == ["a", "b"]

    async def test_sync_listener_and_bad_lines(self):
        body = "data: {\"orphan\": true}\n\nevent: observableUpdate\ndata: {not json\n\nevent: observableUpdate\ndata: {\"id\": 2}\n\n"

        def handler(request):
            return httpx.Response(200, text=body)

        bridge = make_bridge(handler)
        received = []
        bridge.add_listener("observableUpdate", received.append)
        await bridge.listen()

        assert received == [{"id": 2}]

    async def test_remove_listener(self):
        def handler(request):
            return httpx.Response(200, text=sse(("observableUpdate", {"id": 1})))

        bridge = make_bridge(handler)
        received = []
        bridge.add_listener("observableUpdate", received.append)
        bridge.remove_listener("observableUpdate", received.append)
        await bridge.listen()
        assert received == []

    async def test_stream_http_error(self):
        def handler(request):
            return httpx.Response(404)

        with pytest.raises(TransportError):
            await make_bridge(handler).listen()


class TestEndToEnd:
    async def test_orchestrator_over_http(self):
        results = {
            "matrixGetAccountSession": {"userId": "@alice:example.com", "deviceId": "D"},
            "matrixRoomList": {"id": 1, "initial": [{"kind": "empty"}]},
            "matrixObserveSyncIndicator": {"id": 2, "initial": "hide"},
        }

        def handler(request):
            method = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"result": results.get(method)})

        orchestrator = SyncOrchestrator(make_bridge(handler), auto_join=False)
        auth = await orchestrator.start()

        assert auth.user_id == "@alice:example.com"
        assert orchestrator.channels.status.drain() == ["initialSync", "synced"]
        assert [item.status for item in orchestrator.room_list()] == ["loading"]

        await orchestrator.stop()
        assert orchestrator.channels.status.drain() == ["stopped"]
