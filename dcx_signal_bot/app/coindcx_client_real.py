"""Real CoinDCX spot client with safe async wrappers."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger as default_logger

from dcx_signal_bot.app.coindcx_sign import build_query, signed_body
from dcx_signal_bot.app.errors import ExchangeError
from dcx_signal_bot.app.models import AccountBalance, Balance, Candle, MarketData, Order


class CoinDCXClientReal:
    """Best-effort async wrapper for the CoinDCX REST API."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        logger: Any | None = None,
        base_url: str = "https://api.coindcx.com",
        public_url: str = "https://public.coindcx.com",
        timeout_sec: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.public_url = public_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.logger = logger or default_logger
        self._pair_by_symbol: dict[str, str] = {}

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/exchange/v1/markets")
            return True
        except ExchangeError as exc:
            self._log_error("test_connection", exc)
            return False

    async def get_markets(self) -> list[str]:
        try:
            data = await self._request("GET", "/exchange/v1/markets")
        except ExchangeError as exc:
            self._log_error("get_markets", exc)
            raise
        if not isinstance(data, list):
            return []
        return [str(row) for row in data]

    async def get_market_data(self, symbol: str) -> MarketData:
        try:
            rows = await self._request("GET", "/exchange/ticker")
        except ExchangeError as exc:
            self._log_error("get_market_data", exc)
            raise
        if not isinstance(rows, list):
            raise ExchangeError("ticker payload is not a list")

        normalized = self.normalize_symbol(symbol)
        row = next((r for r in rows if str(r.get("market") or "").upper() == normalized), None)
        if row is None:
            raise ExchangeError(f"Symbol {symbol} not found in ticker data")

        price = _to_float(row.get("last_price"))
        return MarketData(
            symbol=normalized,
            price=price,
            change24h=_to_float(row.get("change_24_hour")),
            volume24h=_to_float(row.get("volume")),
        )

    async def get_ohlcv(self, symbol: str, timeframe: str = "1h", limit: int = 100) -> list[Candle]:
        pair = await self._resolve_pair(symbol)
        try:
            rows = await self._request(
                "GET",
                "/market_data/candles",
                {"pair": pair, "interval": timeframe, "limit": int(limit)},
                base_url=self.public_url,
            )
        except ExchangeError as exc:
            self._log_error("get_ohlcv", exc)
            raise
        if not isinstance(rows, list):
            return []
        candles = [
            Candle(
                timestamp=int(row.get("time") or 0),
                open=_to_float(row.get("open")),
                high=_to_float(row.get("high")),
                low=_to_float(row.get("low")),
                close=_to_float(row.get("close")),
                volume=_to_float(row.get("volume")),
            )
            for row in rows
        ]
        return sorted(candles, key=lambda c: c.timestamp)

    async def get_balance(self) -> AccountBalance:
        try:
            rows = await self._signed_request("/exchange/v1/users/balances")
        except ExchangeError as exc:
            self._log_error("get_balance", exc)
            raise
        balances: list[Balance] = []
        for row in rows if isinstance(rows, list) else []:
            free = _to_float(row.get("balance"))
            used = _to_float(row.get("locked_balance"))
            balances.append(Balance(currency=str(row.get("currency") or ""), free=free, used=used, total=free + used))
        return AccountBalance(balances=balances)

    async def place_order(
        self,
        symbol: str,
        side: str,
        type: str,
        amount: float,
        price: float | None = None,
    ) -> Order:
        normalized = self.normalize_symbol(symbol)
        payload: dict[str, object] = {
            "side": side.lower(),
            "order_type": "market_order" if type.lower() == "market" else "limit_order",
            "market": normalized,
            "total_quantity": float(amount),
            "price_per_unit": float(price) if price is not None else None,
        }
        try:
            data = await self._signed_request("/exchange/v1/orders/create", payload)
        except ExchangeError as exc:
            self._log_error("place_order", exc)
            raise

        rows = data.get("orders") if isinstance(data, dict) else None
        row = rows[0] if isinstance(rows, list) and rows else (data if isinstance(data, dict) else {})
        oid = row.get("id") or row.get("order_id")
        if oid is None:
            raise ExchangeError("exchange order id missing")
        return Order(
            id=str(oid),
            symbol=normalized,
            side=side.lower(),  # type: ignore[arg-type]
            type=type.lower(),  # type: ignore[arg-type]
            amount=float(amount),
            price=price,
            status=self._map_order_status(str(row.get("status") or "open")),
        )

    async def get_orders(self, symbol: str | None = None) -> list[Order]:
        payload: dict[str, object] = {"market": self.normalize_symbol(symbol) if symbol else None}
        try:
            data = await self._signed_request("/exchange/v1/orders/active_orders", payload)
        except ExchangeError as exc:
            self._log_error("get_orders", exc)
            raise
        rows = data.get("orders") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            return []
        return [self._order_from_row(row) for row in rows]

    async def cancel_order(self, order_id: str) -> bool:
        try:
            await self._signed_request("/exchange/v1/orders/cancel", {"id": order_id})
            return True
        except ExchangeError as exc:
            self._log_error("cancel_order", exc)
            return False

    async def apply_market_price(self, symbol: str, current_price: float) -> None:
        """No-op: the exchange matches limit orders itself."""

    def normalize_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "").replace("-", "").replace("_", "").upper().strip()

    async def _resolve_pair(self, symbol: str) -> str:
        normalized = self.normalize_symbol(symbol)
        if normalized in self._pair_by_symbol:
            return self._pair_by_symbol[normalized]
        try:
            rows = await self._request("GET", "/exchange/v1/markets_details")
        except ExchangeError as exc:
            self._log_error("markets_details", exc)
            raise
        for row in rows if isinstance(rows, list) else []:
            sym = str(row.get("symbol") or row.get("coindcx_name") or "").upper()
            pair = row.get("pair")
            if sym and pair:
                self._pair_by_symbol[sym] = str(pair)
        if normalized not in self._pair_by_symbol:
            raise ExchangeError(f"Market {symbol} not found")
        return self._pair_by_symbol[normalized]

    def _order_from_row(self, row: dict[str, Any]) -> Order:
        created = row.get("created_at")
        timestamp = 0
        if isinstance(created, (int, float)):
            timestamp = int(created)
        elif created:
            try:
                timestamp = int(datetime.fromisoformat(str(created).replace("Z", "+00:00")).timestamp() * 1000)
            except ValueError:
                timestamp = 0
        amount = _to_float(row.get("total_quantity"))
        remaining = _to_float(row.get("remaining_quantity"))
        return Order(
            id=str(row.get("id") or row.get("order_id") or ""),
            symbol=str(row.get("market") or row.get("symbol") or ""),
            side=str(row.get("side") or "buy").lower(),  # type: ignore[arg-type]
            type="market" if row.get("order_type") == "market_order" else "limit",
            amount=amount,
            price=_to_float(row.get("price_per_unit")) or None,
            status=self._map_order_status(str(row.get("status") or "open")),
            timestamp=timestamp,
            filled=max(0.0, amount - remaining),
            remaining=remaining,
        )

    def _map_order_status(self, status: str) -> str:
        mapping = {
            "init": "open",
            "open": "open",
            "partially_filled": "open",
            "filled": "filled",
            "partially_cancelled": "cancelled",
            "cancelled": "cancelled",
            "rejected": "cancelled",
        }
        return mapping.get(status.lower(), "open")

    async def safe_request(
        self,
        method: str,
        path: str,
        params: dict[str, object] | None = None,
        signed: bool = False,
        base_url: str | None = None,
    ) -> Any:
        retries = 3
        delay = 0.5
        last_exc: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                if signed:
                    return await self._signed_request_once(path, params)
                return await asyncio.to_thread(self._request_sync, method, path, params, None, None, base_url)
            except ExchangeError as exc:
                message = str(exc).lower()
                is_auth = "signature" in message or "http 401" in message
                is_retryable = any(k in message for k in ["timeout", "timed out", "http 5", "urlerror"])
                if is_auth:
                    self._log_error("safe_request_auth", exc)
                    raise
                if not is_retryable or attempt >= retries:
                    raise
                last_exc = exc
                self._log_warning("CoinDCX request retry {}/{} path={} err={}", attempt, retries, path, exc)
                await asyncio.sleep(delay)
                delay *= 2
        if last_exc is not None:
            raise last_exc
        raise ExchangeError("safe_request failed")

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, object] | None = None,
        base_url: str | None = None,
    ) -> Any:
        return await self.safe_request(method, path, params=params, signed=False, base_url=base_url)

    async def _signed_request(self, path: str, params: dict[str, object] | None = None) -> Any:
        return await self.safe_request("POST", path, params=params, signed=True)

    async def _signed_request_once(self, path: str, params: dict[str, object] | None = None) -> Any:
        payload, headers = signed_body(params or {}, self.api_key, self.api_secret)
        return await asyncio.to_thread(self._request_sync, "POST", path, None, headers, payload)

    def _request_sync(
        self,
        method: str,
        path: str,
        params: dict[str, object] | None = None,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        base_url: str | None = None,
    ) -> Any:
        url = f"{base_url or self.base_url}{path}"
        method = method.upper()
        data = None

        if method == "GET" and params:
            url = f"{url}?{build_query(params)}"
        elif method == "POST":
            data = (body if body is not None else json.dumps(params or {})).encode("utf-8")

        req = Request(url=url, data=data, method=method, headers=headers or {})

        try:
            with urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8")
        except HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="ignore")
            raise ExchangeError(f"HTTP {exc.code}: {raw}") from exc
        except URLError as exc:
            raise ExchangeError(f"URLError: {exc}") from exc
        except TimeoutError as exc:
            raise ExchangeError(f"timeout: {exc}") from exc

        try:
            return json.loads(raw or "null")
        except json.JSONDecodeError as exc:
            raise ExchangeError(f"invalid JSON from {path}: {raw[:200]}") from exc

    def _log_warning(self, message: str, *args: object) -> None:
        if hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)
        elif hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _log_error(self, scope: str, exc: Exception) -> None:
        if hasattr(self.logger, "error"):
            self.logger.error("CoinDCX real client error [{}]: {}", scope, exc)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
