"""Domain models for signals, market data and orders."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

Direction = Literal["buy", "sell", "hold"]
OrderSide = Literal["buy", "sell"]
OrderType = Literal["market", "limit"]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class MACD:
    value: float
    signal: float
    histogram: float


@dataclass(frozen=True, slots=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True, slots=True)
class MovingAverages:
    sma20: float
    sma50: float
    ema12: float
    ema26: float


@dataclass(frozen=True, slots=True)
class TechnicalIndicators:
    rsi: float
    macd: MACD
    bollinger_bands: BollingerBands
    moving_averages: MovingAverages
    atr: float
    volatility: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "rsi": self.rsi,
            "macd": asdict(self.macd),
            "bollingerBands": asdict(self.bollinger_bands),
            "movingAverages": asdict(self.moving_averages),
            "atr": self.atr,
            "volatility": self.volatility,
        }


@dataclass(frozen=True, slots=True)
class TradingSignal:
    """One decision produced by the engine for a single tick."""

    symbol: str
    direction: Direction
    strength: float
    confidence: float
    indicators: TechnicalIndicators
    reasoning: tuple[str, ...]
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction,
            "strength": self.strength,
            "confidence": self.confidence,
            "indicators": self.indicators.to_dict(),
            "timestamp": self.timestamp,
            "reasoning": list(self.reasoning),
        }


@dataclass(frozen=True, slots=True)
class Candle:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(slots=True)
class MarketData:
    symbol: str
    price: float
    change24h: float
    volume24h: float
    ohlcv: list[Candle] = field(default_factory=list)
    last_update: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change24h": self.change24h,
            "volume24h": self.volume24h,
            "ohlcv": [asdict(c) for c in self.ohlcv],
            "lastUpdate": self.last_update,
        }


@dataclass(frozen=True, slots=True)
class Balance:
    currency: str
    free: float
    used: float
    total: float


@dataclass(slots=True)
class AccountBalance:
    balances: list[Balance]
    last_update: int = field(default_factory=now_ms)

    @property
    def total_value(self) -> float:
        return sum(b.total for b in self.balances)

    def to_dict(self) -> dict[str, Any]:
        return {
            "balances": [asdict(b) for b in self.balances],
            "totalValue": self.total_value,
            "lastUpdate": self.last_update,
        }


@dataclass(slots=True)
class Order:
    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    amount: float
    price: float | None
    status: str
    timestamp: int = field(default_factory=now_ms)
    filled: float = 0.0
    remaining: float | None = None

    def to_dict(self) -> dict[str, Any]:
        remaining = self.remaining if self.remaining is not None else max(0.0, self.amount - self.filled)
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side,
            "type": self.type,
            "amount": self.amount,
            "price": self.price,
            "status": self.status,
            "timestamp": self.timestamp,
            "filled": self.filled,
            "remaining": remaining,
        }
