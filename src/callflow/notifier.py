"""Realtime notifications for dashboards.

Events go to connected WebSocket clients and, when configured, to an outbound
webhook. `broadcast` never raises and never blocks the caller.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketHub:
    def __init__(self) -> None:
        self.active_connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        logger.info("WebSocket connected. Total connections: %d", len(self.active_connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.active_connections.discard(websocket)
        logger.info("WebSocket disconnected. Total connections: %d", len(self.active_connections))

    async def send(self, message: dict[str, Any]) -> None:
        async with self._lock:
            connections = list(self.active_connections)

        dropped = set()
        for ws in connections:
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.warning("WebSocket send failed; dropping connection: %s", e)
                dropped.add(ws)

        if dropped:
            async with self._lock:
                self.active_connections -= dropped


class WebhookNotifier:
    """POSTs events to an external URL, retrying once after 2s."""

    def __init__(self, *, url: str, secret: str = "", timeout: float = 15.0):
        self.url = url
        self.secret = secret
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Webhook-Secret"] = self.secret
        return headers

    async def send(self, message: dict[str, Any]) -> dict:
        label = f"Webhook {message.get('type', 'event')}"
        for attempt in range(2):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.url, json=message, headers=self._headers())
                    resp.raise_for_status()
                    return {"success": True}
            except httpx.HTTPError as e:
                if attempt == 0:
                    logger.warning("%s failed (attempt 1), retrying in 2s: %s", label, e)
                    await asyncio.sleep(2)
                else:
                    logger.error("%s failed after retry: %s", label, e)
        return {"success": False}


class Notifier:
    """Fans events out to the WebSocket hub and the optional webhook."""

    def __init__(self, hub: Optional[WebSocketHub] = None, webhook: Optional[WebhookNotifier] = None):
        self.hub = hub
        self.webhook = webhook
        self._tasks: set[asyncio.Task] = set()

    def broadcast(self, event_type: str, payload: dict[str, Any]) -> None:
        message = {
            "type": event_type,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        targets = [t for t in (self.hub, self.webhook) if t is not None]
        for target in targets:
            try:
                task = asyncio.create_task(target.send(message))
            except RuntimeError as e:
                logger.warning("Broadcast of %s skipped: %s", event_type, e)
                return
            self._tasks.add(task)
            task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Broadcast failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for in-flight broadcasts."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class NullNotifier(Notifier):
    def broadcast(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.debug("Event %s (no notifier configured)", event_type)
