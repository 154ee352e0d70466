"""
Bridge transport contract.

The bridge exposes two things:
  - request/response RPC: rpc(method, payload) → result
  - a stream of events, each (event_type, body). Observable subscriptions
    deliver their updates as "observableUpdate" events:
        {"id": <handle>, "update": <value or list of diffs>}

Subscribing RPCs return an observable: {"id": <handle>, "initial": <snapshot>}.
The handle is released with the "matrixObserverCancel" RPC.

MemoryTransport is a scripted in-process bridge used by the tests.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

OBSERVABLE_UPDATE = "observableUpdate"

EventHandler = Callable[[Any], Awaitable[None] | None]


class TransportError(Exception):
    """An RPC failed, either on the wire or with an error reply from the bridge."""

    def __init__(self, method: str, message: str, code: str | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.message = message
        self.code = code


@dataclass(frozen=True)
class Observable:
    id: int
    initial: Any

    @classmethod
    def from_result(cls, method: str, result: Any) -> Observable:
        if not isinstance(result, dict) or not isinstance(result.get("id"), int):
            raise TransportError(method, f"expected an observable, got {result!r}")
        return cls(id=result["id"], initial=result.get("initial"))


class BridgeTransport:
    """Base class. Subclasses implement rpc(); event fan-out is shared."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventHandler]] = {}

    async def rpc(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        raise NotImplementedError

    async def observe(self, method: str, payload: dict[str, Any] | None = None) -> Observable:
        return Observable.from_result(method, await self.rpc(method, payload))

    async def cancel(self, handle: int) -> None:
        await self.rpc("matrixObserverCancel", {"id": handle})

    async def close(self) -> None:
        return None

    # -- events --

    def add_listener(self, event_type: str, handler: EventHandler) -> None:
        self._listeners.setdefault(event_type, []).append(handler)

    def remove_listener(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def handle_bridge_event(self, event_type: str, body: Any) -> None:
        """Deliver one bridge event to its listeners, in registration order."""
        handlers = self._listeners.get(event_type)
        if not handlers:
            logger.debug("transport: no listener for %s", event_type)
            return
        for handler in list(handlers):
            result = handler(body)
            if inspect.isawaitable(result):
                await result


# ---------------------------------------------------------------------------
# In-memory transport
# ---------------------------------------------------------------------------

Responder = Callable[[dict[str, Any]], Any]


class MemoryTransport(BridgeTransport):
    """
    Scripted bridge.

        transport.respond("matrixRoomLeave", None)
        transport.respond("matrixRoomTimelineItems", lambda p: transport.observable([...]))
        transport.fail("matrixRoomJoin", "forbidden")

    Every call is recorded in `calls` as (method, payload). Handles passed to
    matrixObserverCancel are recorded in `cancelled`.
    """

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.cancelled: list[int] = []
        self._responders: dict[str, Responder] = {}
        self._failures: dict[str, TransportError] = {}
        self._next_handle = 1

    def respond(self, method: str, result: Any) -> None:
        if callable(result):
            self._responders[method] = result
        else:
            self._responders[method] = lambda _payload: result
        self._failures.pop(method, None)

    def fail(self, method: str, message: str = "rpc failed", code: str | None = None) -> None:
        self._failures[method] = TransportError(method, message, code)

    def observable(self, initial: Any) -> dict[str, Any]:
        """Allocate a fresh handle and build an observable result around `initial`."""
        handle = self._next_handle
        self._next_handle += 1
        return {"id": handle, "initial": initial}

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.calls if name == method]

    async def rpc(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        payload = payload or {}
        self.calls.append((method, payload))
        if method in self._failures:
            raise self._failures[method]
        if method == "matrixObserverCancel":
            self.cancelled.append(payload["id"])
            return None
        responder = self._responders.get(method)
        if responder is None:
            raise TransportError(method, "no response scripted")
        return responder(payload)

    async def push_update(self, handle: int, update: Any) -> None:
        await self.handle_bridge_event(OBSERVABLE_UPDATE, {"id": handle, "update": update})
