"""WebSocket control server built on aiohttp.

Endpoints:

- ``GET /ws``: WebSocket.  The current status is sent on connect and
  every status notification from the manager is broadcast to all
  clients.  Clients send JSON commands::

      {"action": "setCCT", "target": "all", "brightness": 50, "temperature": 5600}
      {"action": "turnOn", "target": "all", "brightness": 50}
      {"action": "turnOff", "target": "all"}
      {"action": "getStatus"}

- ``GET /status``: the current status snapshot as JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any

from aiohttp import WSMsgType, web

from .device import StatusSnapshot
from .manager import ALL_TARGETS, CommandOutcome, LightManager

_LOGGER = logging.getLogger(__name__)


class LightControlServer:
    """Expose a :class:`LightManager` to WebSocket clients.

    Parameters
    ----------
    manager:
        The manager to control.
    host:
        Interface to bind to.
    port:
        Port to bind to.
    """

    def __init__(
        self,
        manager: LightManager,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self.manager = manager
        self.host = host
        self.port = port
        self._clients: set[web.WebSocketResponse] = set()
        self._send_tasks: set[asyncio.Task[None]] = set()
        self._remove_listener: Any = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def create_app(self) -> web.Application:
        """Build the aiohttp application and subscribe to status updates."""
        app = web.Application()
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/status", self._handle_status)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self) -> None:
        """Start serving (non-blocking)."""
        if self._runner is not None:
            _LOGGER.warning("Control server already running")
            return
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        _LOGGER.info("WebSocket server listening on ws://%s:%d/ws", self.host, self.port)

    async def stop(self) -> None:
        """Close all clients and stop serving."""
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        self._site = None
        _LOGGER.info("WebSocket server stopped")

    async def handle_message(self, payload: Any) -> dict[str, Any]:
        """Dispatch one decoded client message and return the reply."""
        if not isinstance(payload, dict):
            return {"error": "Message must be a JSON object"}
        action = payload.get("action")

        if action == "getStatus":
            return self.manager.get_status().as_dict()

        if action == "setCCT":
            brightness = payload.get("brightness")
            temperature = payload.get("temperature", payload.get("temperatureK"))
            if not _is_number(brightness) or not _is_number(temperature):
                return {"error": "setCCT requires numeric brightness and temperature"}
            target = payload.get("target", payload.get("mac")) or ALL_TARGETS
            if not isinstance(target, str):
                return {"error": "target must be a string"}
            outcomes = await self.manager.set_command(target, brightness, temperature)
            return _results(action, outcomes)

        if action in ("turnOn", "turnOff"):
            target = payload.get("target", payload.get("mac")) or ALL_TARGETS
            if not isinstance(target, str):
                return {"error": "target must be a string"}
            kwargs = {}
            for key in ("brightness", "temperature"):
                if key in payload:
                    if not _is_number(payload[key]):
                        return {"error": f"{key} must be a finite number"}
                    kwargs[key] = payload[key]
            outcomes = await self.manager.set_power(target, action == "turnOn", **kwargs)
            return _results(action, outcomes)

        return {"error": f"Unknown action: {action}"}

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.manager.get_status().as_dict())

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._clients.add(ws)
        _LOGGER.info("WebSocket client connected (total: %d)", len(self._clients))
        try:
            await ws.send_json(self.manager.get_status().as_dict())
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        payload = json.loads(msg.data)
                    except ValueError:
                        await ws.send_json({"error": "Invalid JSON"})
                        continue
                    _LOGGER.debug("Received %s", payload)
                    await ws.send_json(await self.handle_message(payload))
                elif msg.type == WSMsgType.ERROR:
                    _LOGGER.warning("WebSocket error: %s", ws.exception())
        finally:
            self._clients.discard(ws)
            _LOGGER.info("WebSocket client disconnected (remaining: %d)", len(self._clients))
        return ws

    def _broadcast(self, snapshot: StatusSnapshot) -> None:
        data = snapshot.as_dict()
        for ws in list(self._clients):
            if ws.closed:
                continue
            task = asyncio.ensure_future(self._send(ws, data))
            self._send_tasks.add(task)
            task.add_done_callback(self._send_tasks.discard)

    async def _send(self, ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        try:
            await ws.send_json(data)
        except (ConnectionError, RuntimeError):
            _LOGGER.debug("Dropping status for closed client", exc_info=True)

    async def _on_startup(self, app: web.Application) -> None:
        self._remove_listener = self.manager.add_listener(self._broadcast)

    async def _on_shutdown(self, app: web.Application) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        for ws in list(self._clients):
            await ws.close()


def _results(action: str, outcomes: list[CommandOutcome]) -> dict[str, Any]:
    return {"action": action, "results": [outcome.as_dict() for outcome in outcomes]}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
