"""Runtime state helpers for bot lifecycle."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any, Literal

from dcx_signal_bot.app.models import TradingSignal, now_ms

BotStatus = Literal["idle", "running", "paused", "error", "stopped", "demo_mode"]
BOT_ACTIONS = ("start", "pause", "stop")


@dataclass(slots=True)
class BotState:
    status: BotStatus = "idle"
    is_connected: bool = False
    last_update: int = 0
    uptime: int = 0
    active_trades: int = 0
    total_trades: int = 0
    current_signal: TradingSignal | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "isConnected": self.is_connected,
            "lastUpdate": self.last_update,
            "uptime": self.uptime,
            "activeTrades": self.active_trades,
            "totalTrades": self.total_trades,
            "currentSignal": self.current_signal.to_dict() if self.current_signal else None,
            "lastError": self.last_error,
        }


class BotManager:
    """In-memory bot lifecycle: start/pause/stop with uptime tracking."""

    def __init__(self, demo_mode: bool = False) -> None:
        self._state = BotState(status="demo_mode" if demo_mode else "idle", last_update=now_ms())
        self._started_at: int | None = None
        self._lock = threading.Lock()

    def start(self) -> BotState:
        with self._lock:
            now = now_ms()
            self._state.status = "running"
            self._state.is_connected = True
            self._state.last_update = now
            self._state.last_error = None
            self._started_at = now
        return self.get_status()

    def pause(self) -> BotState:
        with self._lock:
            self._state.status = "paused"
            self._state.last_update = now_ms()
        return self.get_status()

    def stop(self) -> BotState:
        with self._lock:
            now = now_ms()
            self._state.status = "stopped"
            self._state.is_connected = False
            self._state.last_update = now
            self._state.uptime = now - self._started_at if self._started_at else 0
        return self.get_status()

    def apply(self, action: str) -> BotState:
        if action == "start":
            return self.start()
        if action == "pause":
            return self.pause()
        if action == "stop":
            return self.stop()
        raise ValueError("Invalid action. Must be start, pause, or stop")

    def get_status(self) -> BotState:
        with self._lock:
            if self._state.status == "running" and self._started_at:
                self._state.uptime = now_ms() - self._started_at
            return replace(self._state)

    def update(self, **fields: Any) -> BotState:
        with self._lock:
            for key, value in fields.items():
                if not hasattr(self._state, key):
                    raise ValueError(f"Unknown bot state field: {key}")
                setattr(self._state, key, value)
            self._state.last_update = now_ms()
        return self.get_status()

    def record_signal(self, signal: TradingSignal) -> None:
        with self._lock:
            self._state.current_signal = signal
            self._state.last_update = now_ms()

    def record_error(self, message: str) -> None:
        with self._lock:
            self._state.status = "error"
            self._state.last_error = message
            self._state.last_update = now_ms()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.status == "running"
