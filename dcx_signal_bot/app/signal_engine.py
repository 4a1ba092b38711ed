"""Rolling-window signal engine: SMA/RSI/volatility and a rule-based decision."""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any

from dcx_signal_bot.app.config import SignalsConfig
from dcx_signal_bot.app.errors import ComputationError, InvalidInput
from dcx_signal_bot.app.indicators import rsi, sma, volatility
from dcx_signal_bot.app.models import (
    MACD,
    BollingerBands,
    Direction,
    MovingAverages,
    TechnicalIndicators,
    TradingSignal,
)

SHARED_WINDOW = "*"

INSUFFICIENT_DATA_REASONING = (
    "Insufficient data for reliable signal",
    "Waiting for more market data",
)
HIGH_VOLATILITY_NOTE = "High volatility detected - reducing confidence"


@dataclass(slots=True)
class Decision:
    direction: Direction
    confidence: float
    strength: float
    reasoning: list[str]


def decide(
    sma5: float,
    sma10: float,
    sma20: float,
    rsi_value: float,
    volatility_value: float,
    volatility_threshold: float = 0.05,
) -> Decision:
    if sma5 > sma10 > sma20 and rsi_value < 70:
        confidence = min(85, 50 + (20 if rsi_value < 30 else 0))
        decision = Decision(
            "buy",
            confidence,
            min(90, confidence + 10),
            [
                "SMA5 > SMA10 > SMA20 (bullish trend)",
                f"RSI at {rsi_value:.1f} indicates room for growth",
            ],
        )
    elif sma5 < sma10 < sma20 and rsi_value > 30:
        confidence = min(85, 50 + (20 if rsi_value > 70 else 0))
        decision = Decision(
            "sell",
            confidence,
            min(90, confidence + 10),
            [
                "SMA5 < SMA10 < SMA20 (bearish trend)",
                f"RSI at {rsi_value:.1f} indicates potential reversal",
            ],
        )
    else:
        decision = Decision(
            "hold",
            50,
            50,
            ["Market conditions are neutral", "Waiting for clearer trend signals"],
        )

    # Strength keeps its pre-dampening value.
    if volatility_value > volatility_threshold:
        decision.confidence = max(20, decision.confidence - 15)
        decision.reasoning.append(HIGH_VOLATILITY_NOTE)
    return decision


def parse_price(raw: Any) -> float:
    """Coerce a tick price (number or numeric string) and validate it."""
    if raw is None or isinstance(raw, bool):
        raise InvalidInput("price is required")
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            raise InvalidInput("price is required")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"price must be numeric, got {raw!r}") from exc
    if not math.isfinite(value):
        raise InvalidInput("price must be finite")
    if value < 0:
        raise InvalidInput("price must be >= 0")
    return value


def parse_symbol(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidInput("symbol must be a non-empty string")
    return raw.strip()


class PriceHistory:
    """Fixed-capacity FIFO of prices guarded by its own lock."""

    def __init__(self, capacity: int) -> None:
        self._prices: deque[float] = deque(maxlen=capacity)
        self.lock = threading.Lock()

    def append(self, price: float) -> None:
        self._prices.append(price)

    def snapshot(self) -> tuple[float, ...]:
        return tuple(self._prices)

    def preview(self, price: float) -> tuple[float, ...]:
        """Window as it would read after appending `price`, without mutating it."""
        return (*self._prices, price)[-self._prices.maxlen :]

    def clear(self) -> None:
        self._prices.clear()

    def __len__(self) -> int:
        return len(self._prices)


class SignalEngine:
    """Turns a stream of (symbol, price) ticks into TradingSignal snapshots.

    With ``partition_by_symbol=False`` every symbol shares one rolling window,
    which reproduces the legacy dashboard behavior.
    """

    def __init__(
        self,
        history_capacity: int = 20,
        min_history: int = 10,
        rsi_period: int = 14,
        volatility_threshold: float = 0.05,
        partition_by_symbol: bool = True,
        logger: Any | None = None,
    ) -> None:
        if history_capacity < 2:
            raise ValueError("history_capacity must be >= 2")
        if not 2 <= min_history <= history_capacity:
            raise ValueError("min_history must be in range 2..history_capacity")
        if rsi_period < 1:
            raise ValueError("rsi_period must be >= 1")
        self.history_capacity = history_capacity
        self.min_history = min_history
        self.rsi_period = rsi_period
        self.volatility_threshold = max(volatility_threshold, 0.0)
        self.partition_by_symbol = partition_by_symbol
        self.logger = logger
        self._windows: dict[str, PriceHistory] = {}
        self._registry_lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config: SignalsConfig, logger: Any | None = None) -> "SignalEngine":
        return cls(
            history_capacity=config.history_capacity,
            min_history=config.min_history,
            rsi_period=config.rsi_period,
            volatility_threshold=config.volatility_threshold,
            partition_by_symbol=config.partition_by_symbol,
            logger=logger,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "SignalEngine":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def ingest(self, symbol: str, price: float) -> TradingSignal:
        symbol = parse_symbol(symbol)
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise InvalidInput(f"price must be a number, got {type(price).__name__}")
        value = parse_price(price)

        window = self._window(symbol)
        # A tick that fails evaluation is never committed.
        with window.lock:
            prices = window.preview(value)
            signal = self._evaluate(symbol, prices)
            window.append(value)

        self._log_debug(
            "Signal symbol={} direction={} confidence={} strength={} window={}",
            signal.symbol,
            signal.direction,
            signal.confidence,
            signal.strength,
            len(prices),
        )
        return signal

    def history(self, symbol: str) -> tuple[float, ...]:
        key = self._key(parse_symbol(symbol))
        with self._registry_lock:
            window = self._windows.get(key)
        if window is None:
            return ()
        with window.lock:
            return window.snapshot()

    def symbols(self) -> list[str]:
        with self._registry_lock:
            return sorted(self._windows)

    def reset(self, symbol: str | None = None) -> None:
        with self._registry_lock:
            if symbol is None:
                windows = list(self._windows.values())
            else:
                window = self._windows.get(self._key(parse_symbol(symbol)))
                windows = [window] if window is not None else []
        for window in windows:
            with window.lock:
                window.clear()

    def close(self) -> None:
        with self._registry_lock:
            self._closed = True
            self._windows.clear()

    def _key(self, symbol: str) -> str:
        return symbol if self.partition_by_symbol else SHARED_WINDOW

    def _window(self, symbol: str) -> PriceHistory:
        key = self._key(symbol)
        with self._registry_lock:
            if self._closed:
                raise RuntimeError("SignalEngine is closed")
            window = self._windows.get(key)
            if window is None:
                window = PriceHistory(self.history_capacity)
                self._windows[key] = window
            return window

    def _evaluate(self, symbol: str, prices: tuple[float, ...]) -> TradingSignal:
        if len(prices) < self.min_history:
            return self._insufficient_data_signal(symbol, prices[-1])

        try:
            sma5 = sma(prices, 5)
            sma10 = sma(prices, 10)
            sma20 = sma(prices, 20)
            rsi_value = rsi(prices, self.rsi_period)
            vol = volatility(prices)
        except (OverflowError, ZeroDivisionError) as exc:
            raise ComputationError(f"indicator failure for {symbol}: {exc}") from exc

        decision = decide(sma5, sma10, sma20, rsi_value, vol, self.volatility_threshold)
        indicators = TechnicalIndicators(
            rsi=rsi_value,
            macd=MACD(value=sma5 - sma10, signal=sma10 - sma20, histogram=(sma5 - sma10) - (sma10 - sma20)),
            bollinger_bands=BollingerBands(upper=sma20 * 1.05, middle=sma20, lower=sma20 * 0.95),
            moving_averages=MovingAverages(sma20=sma20, sma50=sma20, ema12=sma5, ema26=sma10),
            atr=vol,
            volatility=vol,
        )
        _ensure_finite(symbol, indicators)
        return TradingSignal(
            symbol=symbol,
            direction=decision.direction,
            strength=decision.strength,
            confidence=decision.confidence,
            indicators=indicators,
            reasoning=tuple(decision.reasoning),
        )

    def _insufficient_data_signal(self, symbol: str, price: float) -> TradingSignal:
        indicators = TechnicalIndicators(
            rsi=50.0,
            macd=MACD(value=0.0, signal=0.0, histogram=0.0),
            bollinger_bands=BollingerBands(upper=price * 1.02, middle=price, lower=price * 0.98),
            moving_averages=MovingAverages(sma20=price, sma50=price, ema12=price, ema26=price),
            atr=0.01,
            volatility=0.01,
        )
        _ensure_finite(symbol, indicators)
        return TradingSignal(
            symbol=symbol,
            direction="hold",
            strength=30,
            confidence=40,
            indicators=indicators,
            reasoning=INSUFFICIENT_DATA_REASONING,
        )

    def _log_debug(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "debug"):
            self.logger.debug(message, *args)


def _ensure_finite(symbol: str, indicators: TechnicalIndicators) -> None:
    values = [
        indicators.rsi,
        indicators.atr,
        indicators.volatility,
        indicators.macd.value,
        indicators.macd.signal,
        indicators.macd.histogram,
        indicators.bollinger_bands.upper,
        indicators.bollinger_bands.middle,
        indicators.bollinger_bands.lower,
        indicators.moving_averages.sma20,
        indicators.moving_averages.ema12,
        indicators.moving_averages.ema26,
    ]
    if not all(math.isfinite(v) for v in values):
        raise ComputationError(f"non-finite indicator for {symbol}")
