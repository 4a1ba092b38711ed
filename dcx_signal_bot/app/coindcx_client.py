"""Unified CoinDCX client wrapper (paper/live)."""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from typing import Any

from dcx_signal_bot.app.coindcx_client_real import CoinDCXClientReal
from dcx_signal_bot.app.config import AppConfig
from dcx_signal_bot.app.errors import InvalidInput
from dcx_signal_bot.app.models import AccountBalance, Balance, Candle, MarketData, Order

VALID_SIDES = {"buy", "sell"}
VALID_TYPES = {"market", "limit"}

_TIMEFRAME_SECONDS = {"m": 60, "h": 3600, "d": 86400, "w": 604800, "M": 2592000}


def timeframe_seconds(timeframe: str) -> int:
    """Convert '1m', '4h', '1d' style intervals to seconds."""
    unit = timeframe[-1:] if timeframe else ""
    count = timeframe[:-1]
    if unit not in _TIMEFRAME_SECONDS or not count.isdigit() or int(count) <= 0:
        raise InvalidInput(f"invalid timeframe {timeframe!r}")
    return int(count) * _TIMEFRAME_SECONDS[unit]


def validate_order(side: Any, symbol: Any, amount: Any, type: Any, price: Any = None) -> str | None:
    """Return an error message for a bad order request, or None."""
    if not side or not symbol or not amount or not type:
        return "Missing required fields: side, symbol, amount, type"
    if type not in VALID_TYPES:
        return "Invalid order type. Must be market or limit"
    if side not in VALID_SIDES:
        return "Invalid side. Must be buy or sell"
    try:
        if float(amount) <= 0:
            return "Amount must be > 0"
    except (TypeError, ValueError):
        return "Amount must be numeric"
    if type == "limit":
        try:
            if price is None or float(price) <= 0:
                return "Limit order requires a price > 0"
        except (TypeError, ValueError):
            return "Price must be numeric"
    return None


class _CoinDCXClientPaper:
    """Mock exchange used in paper mode and local development."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)
        self._markets = ["BTCUSDT", "ETHUSDT", "SOLUSDT", "XRPUSDT", "DOGEUSDT", "BTCINR"]
        self._last_price_by_symbol: dict[str, float] = {}
        self._orders: dict[str, Order] = {}
        self._balances = [
            Balance(currency="BTC", free=0.5, used=0.1, total=0.6),
            Balance(currency="USDT", free=25000.0, used=5000.0, total=30000.0),
        ]
        self._lock = asyncio.Lock()

    async def test_connection(self) -> bool:
        return True

    async def get_markets(self) -> list[str]:
        return self._markets.copy()

    async def get_market_data(self, symbol: str) -> MarketData:
        symbol = self.normalize_symbol(symbol)
        return MarketData(
            symbol=symbol,
            price=self._next_price(symbol),
            change24h=(self._rng.random() - 0.5) * 10,
            volume24h=self._rng.random() * 1_000_000,
        )

    async def get_ohlcv(self, symbol: str, timeframe: str = "1h", limit: int = 100) -> list[Candle]:
        step = timeframe_seconds(timeframe)
        symbol = self.normalize_symbol(symbol)
        close = self._last_price_by_symbol.get(symbol) or self._seed_price()
        now = int(time.time()) // step * step

        candles: list[Candle] = []
        for i in range(int(limit)):
            open_ = close * (1 + self._rng.uniform(-0.005, 0.005))
            high = max(open_, close) * (1 + self._rng.uniform(0, 0.003))
            low = min(open_, close) * (1 - self._rng.uniform(0, 0.003))
            candles.append(
                Candle(
                    timestamp=(now - i * step) * 1000,
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=self._rng.random() * 100,
                )
            )
            close = open_
        candles.reverse()
        return candles

    async def get_balance(self) -> AccountBalance:
        return AccountBalance(balances=list(self._balances))

    async def place_order(
        self,
        symbol: str,
        side: str,
        type: str,
        amount: float,
        price: float | None = None,
    ) -> Order:
        error = validate_order(side, symbol, amount, type, price)
        if error is not None:
            raise InvalidInput(error)

        async with self._lock:
            symbol = self.normalize_symbol(symbol)
            order = Order(
                id=str(uuid.uuid4()),
                symbol=symbol,
                side=side,  # type: ignore[arg-type]
                type=type,  # type: ignore[arg-type]
                amount=float(amount),
                price=float(price) if price is not None else None,
                status="open",
            )
            current = self._last_price_by_symbol.get(symbol)
            if type == "market":
                order.price = current if current is not None else self._next_price(symbol)
                self._fill(order)
            elif current is not None and self._limit_should_fill(order.side, current, float(order.price or 0.0)):
                self._fill(order)
            self._orders[order.id] = order
            return order

    async def get_orders(self, symbol: str | None = None) -> list[Order]:
        normalized = self.normalize_symbol(symbol) if symbol else None
        orders = [o for o in self._orders.values() if normalized is None or o.symbol == normalized]
        return sorted(orders, key=lambda o: o.timestamp, reverse=True)

    async def cancel_order(self, order_id: str) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != "open":
                return False
            order.status = "cancelled"
            return True

    async def apply_market_price(self, symbol: str, current_price: float) -> None:
        async with self._lock:
            symbol = self.normalize_symbol(symbol)
            self._last_price_by_symbol[symbol] = current_price
            for order in self._orders.values():
                if order.symbol != symbol or order.type != "limit" or order.status != "open" or order.price is None:
                    continue
                if self._limit_should_fill(order.side, current_price, order.price):
                    self._fill(order)

    def normalize_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "").replace("-", "").replace("_", "").upper().strip()

    def _seed_price(self) -> float:
        return 50000 + self._rng.random() * 1000

    def _next_price(self, symbol: str) -> float:
        last = self._last_price_by_symbol.get(symbol)
        price = self._seed_price() if last is None else last * (1 + self._rng.uniform(-0.002, 0.002))
        self._last_price_by_symbol[symbol] = price
        return price

    def _fill(self, order: Order) -> None:
        order.status = "filled"
        order.filled = order.amount
        order.remaining = 0.0

    def _limit_should_fill(self, side: str, current_price: float, limit_price: float) -> bool:
        return (side == "buy" and current_price <= limit_price) or (side == "sell" and current_price >= limit_price)


class CoinDCXClient:
    """Common wrapper so callers do not depend on paper/live implementation."""

    def __init__(
        self,
        mode: str,
        api_key: str | None = None,
        api_secret: str | None = None,
        logger: Any | None = None,
        base_url: str = "https://api.coindcx.com",
        public_url: str = "https://public.coindcx.com",
        timeout_sec: float = 10.0,
        seed: int | None = None,
    ) -> None:
        self.mode = mode
        if mode == "live":
            if not api_key or not api_secret:
                raise ValueError("CoinDCX credentials not configured")
            self._client: Any = CoinDCXClientReal(
                api_key=api_key,
                api_secret=api_secret,
                logger=logger,
                base_url=base_url,
                public_url=public_url,
                timeout_sec=timeout_sec,
            )
        else:
            self._client = _CoinDCXClientPaper(seed=seed)

    @classmethod
    def from_config(cls, config: AppConfig, logger: Any | None = None) -> "CoinDCXClient":
        return cls(
            mode=config.mode,
            api_key=config.coindcx.api_key,
            api_secret=config.coindcx.api_secret,
            logger=logger,
            base_url=config.coindcx.base_url,
            public_url=config.coindcx.public_url,
            timeout_sec=config.coindcx.timeout_sec,
        )

    @property
    def is_paper(self) -> bool:
        return self.mode != "live"

    async def test_connection(self) -> bool:
        return await self._client.test_connection()

    async def get_markets(self) -> list[str]:
        return await self._client.get_markets()

    async def get_market_data(self, symbol: str) -> MarketData:
        return await self._client.get_market_data(symbol)

    async def get_ohlcv(self, symbol: str, timeframe: str = "1h", limit: int = 100) -> list[Candle]:
        return await self._client.get_ohlcv(symbol, timeframe, limit)

    async def get_balance(self) -> AccountBalance:
        return await self._client.get_balance()

    async def place_order(
        self,
        symbol: str,
        side: str,
        type: str,
        amount: float,
        price: float | None = None,
    ) -> Order:
        return await self._client.place_order(symbol, side, type, amount, price=price)

    async def get_orders(self, symbol: str | None = None) -> list[Order]:
        return await self._client.get_orders(symbol)

    async def cancel_order(self, order_id: str) -> bool:
        return await self._client.cancel_order(order_id)

    async def apply_market_price(self, symbol: str, current_price: float) -> None:
        await self._client.apply_market_price(symbol, current_price)

    def normalize_symbol(self, symbol: str) -> str:
        return self._client.normalize_symbol(symbol)
