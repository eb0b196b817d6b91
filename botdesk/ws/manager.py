# botdesk/ws/manager.py
"""
Fan-out of inbox projections to render-layer WebSocket clients.

Usage:
- In a FastAPI route: await broadcaster.connect(user_id, websocket) / broadcaster.disconnect(...)
- Wire an engine: broadcaster.attach(user_id, engine)
- From async code: await broadcaster.notify_clients(user_id, payload_dict)
- From sync code (engine listeners, timer threads): broadcaster.notify_clients_sync(user_id, payload_dict)
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional, Set

import anyio
from fastapi import WebSocket

log = logging.getLogger("botdesk.ws")


class ProjectionBroadcaster:
    def __init__(self) -> None:
        # Map user_id -> set of WebSocket connections
        self.active: Dict[str, Set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Accept and register a websocket under a user."""
        await websocket.accept()
        self.active.setdefault(user_id, set()).add(websocket)
        log.info("WS connected: user=%s total=%d", user_id, self.connection_count(user_id))

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        """Unregister a websocket from a user."""
        conns = self.active.get(user_id)
        if conns is not None:
            conns.discard(websocket)
            if not conns:
                self.active.pop(user_id, None)
        log.info("WS disconnected: user=%s total=%d", user_id, self.connection_count(user_id))

    def connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            return sum(len(s) for s in self.active.values())
        return len(self.active.get(user_id, set()))

    async def notify_clients(self, user_id: str, message_data: dict) -> int:
        """Async: send JSON to all connected clients of a user. Returns the number reached."""
        connections = list(self.active.get(user_id, set()))
        if not connections:
            log.debug(f"No WebSocket connections for user {user_id}")
            return 0

        stale: Set[WebSocket] = set()
        sent_count = 0
        for ws in connections:
            try:
                await ws.send_json(message_data)
                sent_count += 1
            except Exception as e:
                # mark stale; removed after the loop
                log.warning(f"⚠️ WS send failed, marking stale: {e}")
                stale.add(ws)

        log.debug(f"✅ Sent {message_data.get('event')} to {sent_count}/{len(connections)} clients of {user_id}")

        if stale:
            alive = self.active.get(user_id, set())
            for ws in stale:
                alive.discard(ws)
            if not alive:
                self.active.pop(user_id, None)
            log.info(f"🧹 Removed {len(stale)} stale connections")
        return sent_count

    def notify_clients_sync(self, user_id: str, message_data: dict) -> None:
        """
        Sync-safe dispatch of notify_clients.

        Strategy:
        - anyio.from_thread.run when called from an anyio worker thread
        - create_task when already on the running loop thread
        - otherwise a daemon thread with its own short-lived loop
        """
        try:
            anyio.from_thread.run(self.notify_clients, user_id, message_data)
            return
        except RuntimeError as e:
            log.debug(f"anyio.from_thread.run unavailable: {e}")

        try:
            loop = asyncio.get_running_loop()
            loop.create_task(self.notify_clients(user_id, message_data))
            return
        except RuntimeError:
            pass

        def _runner():
            try:
                asyncio.run(self.notify_clients(user_id, message_data))
            except Exception as e:
                log.error(f"❌ Background notify failed: {e}", exc_info=True)

        threading.Thread(target=_runner, daemon=True).start()

    # ────────────────────────────────────────────
    # Engine wiring
    # ────────────────────────────────────────────

    def listener_for(self, user_id: str) -> Callable[[str, Dict[str, Any]], None]:
        """Engine listener forwarding ``(event, snapshot)`` to the user's clients"""
        def _forward(event: str, snapshot: Dict[str, Any]) -> None:
            if not self.connection_count(user_id):
                return
            self.notify_clients_sync(user_id, {"event": event, "data": snapshot})
        return _forward

    def attach(self, user_id: str, engine) -> Callable[[str, Dict[str, Any]], None]:
        listener = self.listener_for(user_id)
        engine.add_listener(listener)
        return listener


# Singleton broadcaster instance
broadcaster = ProjectionBroadcaster()
