"""
WebSocket support for real-time run progress.

Provides:
  - RunProgressBus singleton that the pipeline uses to broadcast events
  - WebSocket clients connect via /api/runs/ws/{run_id} to get live updates
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class RunProgressBus:
    """
    In-process event bus.
    Every connected WebSocket client for a given run_id receives
    JSON messages like:
        { "event": "requirement_start", "requirement_id": "pe-7", "position": 3, "total": 12 }
        { "event": "requirement_end",   "requirement_id": "pe-7", "status": "Met",
          "completed": 3, "total": 12 }
        { "event": "run_end", "status": "PartiallyFailed" }
        { "event": "error", "message": "..." }
    """

    _instance: RunProgressBus | None = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._clients: dict[str, list[WebSocket]] = {}
        self._history: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def get(cls) -> RunProgressBus:
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    # ── Client management ────────────────────────────────

    async def connect(self, run_id: str, ws: WebSocket) -> None:
        await ws.accept()
        with self._lock:
            self._clients.setdefault(run_id, []).append(ws)
            backlog = list(self._history.get(run_id, []))
        # Late joiners replay what they missed
        for msg in backlog:
            try:
                await ws.send_json(msg)
            except Exception:
                break

    def disconnect(self, run_id: str, ws: WebSocket) -> None:
        with self._lock:
            clients = self._clients.get(run_id, [])
            if ws in clients:
                clients.remove(ws)

    # ── Broadcasting (thread-safe for background runs) ───

    def emit(self, run_id: str, event: dict[str, Any]) -> None:
        event.setdefault("ts", datetime.now(timezone.utc).isoformat())
        with self._lock:
            self._history.setdefault(run_id, []).append(event)
            has_clients = bool(self._clients.get(run_id))

        if not has_clients:
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        asyncio.run_coroutine_threadsafe(self._broadcast(run_id, event), loop)

    async def _broadcast(self, run_id: str, event: dict[str, Any]) -> None:
        with self._lock:
            clients = list(self._clients.get(run_id, []))
        dead: list[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_json(event)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(run_id, ws)

    def history(self, run_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._history.get(run_id, []))

    # ── Convenience helpers ──────────────────────────────

    def on_requirement_start(
        self, run_id: str, requirement_id: Any, position: int, total: int
    ) -> None:
        self.emit(
            run_id,
            {
                "event": "requirement_start",
                "requirement_id": requirement_id,
                "position": position,
                "total": total,
            },
        )
        logger.info(f"▶  [{run_id}] Requirement {requirement_id} ({position}/{total})")

    def on_requirement_end(
        self, run_id: str, requirement_id: Any, status: str, completed: int, total: int
    ) -> None:
        self.emit(
            run_id,
            {
                "event": "requirement_end",
                "requirement_id": requirement_id,
                "status": status,
                "completed": completed,
                "total": total,
            },
        )
        logger.info(f"✓  [{run_id}] Requirement {requirement_id} → {status} ({completed}/{total})")

    def on_run_end(self, run_id: str, status: str) -> None:
        self.emit(run_id, {"event": "run_end", "status": status})
        logger.info(f"══ [{run_id}] Run finished: {status}")

    def on_error(self, run_id: str, message: str) -> None:
        self.emit(run_id, {"event": "error", "message": message})
        logger.error(f"✗  [{run_id}] {message}")

    def clear(self, run_id: str) -> None:
        with self._lock:
            self._history.pop(run_id, None)
