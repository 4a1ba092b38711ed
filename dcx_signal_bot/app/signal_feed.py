"""Background loop that polls the exchange price and feeds the signal engine."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

from dcx_signal_bot.app.coindcx_client import CoinDCXClient
from dcx_signal_bot.app.models import TradingSignal, now_ms
from dcx_signal_bot.app.signal_engine import SignalEngine
from dcx_signal_bot.app.state import BotManager

Broadcast = Callable[[dict[str, Any]], Awaitable[Any]]


def ws_message(type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": type, "data": data, "timestamp": now_ms()}


async def sync_trade_counts(client: CoinDCXClient, bot: BotManager) -> None:
    """Refresh the bot's open/filled order counters from the exchange."""
    orders = await client.get_orders()
    bot.update(
        active_trades=sum(1 for o in orders if o.status == "open"),
        total_trades=sum(1 for o in orders if o.status == "filled"),
    )


class SignalFeed:
    def __init__(
        self,
        client: CoinDCXClient,
        engine: SignalEngine,
        bot: BotManager,
        symbol: str,
        interval_sec: float = 5.0,
        broadcast: Broadcast | None = None,
        logger: Any | None = None,
    ) -> None:
        self.client = client
        self.engine = engine
        self.bot = bot
        self.symbol = symbol
        self.interval_sec = interval_sec
        self.broadcast = broadcast
        self.logger = logger

    async def run_loop(self) -> None:
        while True:
            started = datetime.now(UTC)
            try:
                if self.bot.is_running:
                    await self.poll_once()
            except Exception as exc:  # noqa: BLE001
                self._error("SignalFeed poll error: {}", exc)
                self.bot.record_error(str(exc))
            elapsed = (datetime.now(UTC) - started).total_seconds()
            if elapsed > self.interval_sec:
                self._warning("SignalFeed poll took {:.2f}s (>{}s)", elapsed, self.interval_sec)
            await asyncio.sleep(self.interval_sec)

    async def poll_once(self) -> TradingSignal:
        market = await self.client.get_market_data(self.symbol)
        await self.client.apply_market_price(market.symbol, market.price)
        signal = self.engine.ingest(market.symbol, market.price)
        self.bot.record_signal(signal)
        await sync_trade_counts(self.client, self.bot)
        self._info(
            "SignalFeed: {} price={} direction={} confidence={}",
            signal.symbol,
            market.price,
            signal.direction,
            signal.confidence,
        )

        if self.broadcast is not None:
            await self.broadcast(ws_message("market_data", market.to_dict()))
            await self.broadcast(ws_message("signal_update", signal.to_dict()))
        return signal

    def _info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _warning(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)
        elif self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)
