"""
Remote bridge transport over HTTP.

The bridge runs as a separate server, one bridge per device id:

    POST {base}/{device_id}/init          → {}
    POST {base}/{device_id}/rpc/{method}  → {"result": ...} | {"error", "code", "detail"}
    GET  {base}/{device_id}/events        → server-sent events:
                                               event: observableUpdate
                                               data: {...}

An error reply comes back with HTTP 200, so both the status code and the
body are checked.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from sync_client.config import settings
from sync_client.services.transport import BridgeTransport, TransportError

logger = logging.getLogger(__name__)


class RemoteBridge(BridgeTransport):
    """Bridge transport backed by httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str | None = None,
        device_id: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__()
        self.base_url = (base_url or settings.BRIDGE_URL).rstrip("/")
        self.device_id = device_id or settings.BRIDGE_DEVICE_ID
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.BRIDGE_TIMEOUT_SECONDS)

    def _headers(self, accept: str = "application/json") -> dict:
        """Build request headers."""
        return {"Content-Type": "application/json", "Accept": accept}

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.device_id}{path}"

    async def init(self, options: dict[str, Any] | None = None) -> None:
        """Ask the server to start a bridge for this device. A second call is a no-op server side."""
        await self._post("init", "/init", options or {})
        logger.info("remote_bridge: initialized device %s", self.device_id)

    async def rpc(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        body = await self._post(method, f"/rpc/{method}", payload or {})
        if isinstance(body, dict) and "error" in body:
            raise TransportError(method, str(body["error"]), code=body.get("code"))
        if isinstance(body, dict):
            return body.get("result")
        return body

    async def listen(self) -> None:
        """
        Stream bridge events until the server closes the stream.

        Events are delivered one at a time; the next line is not read until
        every listener for the current event has finished.
        """
        try:
            async with self.client.stream(
                "GET", self._url("/events"), headers=self._headers(accept="text/event-stream")
            ) as response:
                response.raise_for_status()

                event_type = None
                async for line in response.aiter_lines():
                    line = line.strip()

                    if not line:
                        continue

                    if line.startswith("event: "):
                        event_type = line[7:]
                    elif line.startswith("data: "):
                        if event_type:
                            try:
                                data = json.loads(line[6:])
                            except json.JSONDecodeError:
                                logger.warning("remote_bridge: undecodable %s event: %r", event_type, line[6:])
                                continue
                            await self.handle_bridge_event(event_type, data)
        except httpx.HTTPError as e:
            raise TransportError("events", str(e)) from e
        logger.info("remote_bridge: event stream closed for device %s", self.device_id)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _post(self, method: str, path: str, payload: dict[str, Any]) -> Any:
        try:
            res = await self.client.post(self._url(path), json=payload, headers=self._headers())
            res.raise_for_status()
            return res.json()
        except httpx.HTTPError as e:
            raise TransportError(method, str(e)) from e
        except ValueError as e:
            raise TransportError(method, f"invalid JSON reply: {e}") from e
