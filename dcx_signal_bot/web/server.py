"""Web API for signals, market data, orders and bot state."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger as app_logger

from dcx_signal_bot.app.coindcx_client import CoinDCXClient, validate_order
from dcx_signal_bot.app.config import AppConfig, load_config
from dcx_signal_bot.app.errors import ComputationError, InvalidInput
from dcx_signal_bot.app.models import now_ms
from dcx_signal_bot.app.signal_engine import SignalEngine, parse_price
from dcx_signal_bot.app.signal_feed import SignalFeed, sync_trade_counts, ws_message
from dcx_signal_bot.app.state import BOT_ACTIONS, BotManager

CONFIG_ENV = "DCX_SIGNAL_BOT_CONFIG"

LOGGER = logging.getLogger(__name__)


def _base_config() -> AppConfig:
    env_path = os.getenv(CONFIG_ENV)
    if env_path:
        return load_config(env_path)
    for candidate in (Path("config.yml"), Path("config.yml.example")):
        if candidate.exists():
            return load_config(candidate)
    return AppConfig()


class DashboardHub:
    """Fans dashboard messages out to every connected WebSocket client."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def join(self, websocket: WebSocket, greeting: dict[str, Any]) -> None:
        await websocket.accept()
        await websocket.send_json(greeting)
        async with self._lock:
            self._clients.add(websocket)

    async def leave(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)

    async def publish(self, message: dict[str, Any]) -> int:
        """Send to all clients; drop the ones whose send fails. Returns deliveries."""
        async with self._lock:
            clients = list(self._clients)
        results = await asyncio.gather(*(c.send_json(message) for c in clients), return_exceptions=True)
        stale = [c for c, result in zip(clients, results) if isinstance(result, Exception)]
        if stale:
            async with self._lock:
                self._clients.difference_update(stale)
            LOGGER.info("Dropped %d stale dashboard client(s) on %s", len(stale), message.get("type"))
        return len(clients) - len(stale)


@dataclass
class ServiceContext:
    """Everything a request handler needs; built and torn down by the app lifespan."""

    config: AppConfig
    engine: SignalEngine
    client: CoinDCXClient
    bot: BotManager
    hub: DashboardHub = field(default_factory=DashboardHub)
    feed: SignalFeed | None = None
    _feed_task: asyncio.Task[None] | None = None

    @classmethod
    def build(cls, config: AppConfig, logger: Any | None = None) -> "ServiceContext":
        engine = SignalEngine.from_config(config.signals, logger=logger)
        client = CoinDCXClient.from_config(config, logger=logger)
        bot = BotManager(demo_mode=client.is_paper)
        context = cls(config=config, engine=engine, client=client, bot=bot)
        if config.feed.enabled:
            context.feed = SignalFeed(
                client=client,
                engine=engine,
                bot=bot,
                symbol=config.trading.symbol,
                interval_sec=config.feed.interval_sec,
                broadcast=context.hub.publish,
                logger=logger,
            )
        return context

    async def start(self) -> None:
        if self.feed is not None:
            self._feed_task = asyncio.create_task(self.feed.run_loop(), name="signal-feed")

    async def close(self) -> None:
        if self._feed_task is not None:
            self._feed_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._feed_task
            self._feed_task = None
        self.engine.close()


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data, "timestamp": now_ms()}


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, "timestamp": now_ms()})


router = APIRouter()


@router.get("/api/ai/signals")
async def api_signal(
    symbol: str | None = Query(default=None),
    price: str | None = Query(default=None),
    context: ServiceContext = Depends(get_context),
):
    if not symbol or not symbol.strip() or price is None or not price.strip():
        return _fail(400, "Symbol and price parameters are required")
    try:
        signal = context.engine.ingest(symbol, parse_price(price))
    except InvalidInput as exc:
        return _fail(400, str(exc))
    except ComputationError as exc:
        LOGGER.exception("Signal computation failed: %s", exc)
        return _fail(500, str(exc))

    context.bot.record_signal(signal)
    payload = signal.to_dict()
    await context.hub.publish(ws_message("signal_update", payload))
    return _ok(payload)


@router.get("/api/ai/signals/history")
async def api_signal_history(
    symbol: str | None = Query(default=None),
    context: ServiceContext = Depends(get_context),
):
    if not symbol or not symbol.strip():
        return _fail(400, "Symbol parameter is required")
    prices = context.engine.history(symbol)
    return _ok({"symbol": symbol.strip(), "prices": list(prices), "capacity": context.engine.history_capacity})


@router.get("/api/market")
async def api_market(
    symbol: str | None = Query(default=None),
    timeframe: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    context: ServiceContext = Depends(get_context),
):
    if not symbol:
        return _fail(400, "Symbol parameter is required")
    try:
        market = await context.client.get_market_data(symbol)
        market.ohlcv = await context.client.get_ohlcv(
            symbol,
            timeframe or context.config.trading.default_timeframe,
            limit or context.config.trading.candle_limit,
        )
    except InvalidInput as exc:
        return _fail(400, str(exc))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Market endpoint error: %s", exc)
        return _fail(500, str(exc))
    payload = market.to_dict()
    await context.hub.publish(ws_message("market_data", payload))
    return _ok(payload)


@router.get("/api/ohlcv")
async def api_ohlcv(
    symbol: str | None = Query(default=None),
    timeframe: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=1000),
    context: ServiceContext = Depends(get_context),
):
    if not symbol:
        return _fail(400, "Symbol parameter is required")
    try:
        candles = await context.client.get_ohlcv(symbol, timeframe or context.config.trading.default_timeframe, limit)
    except InvalidInput as exc:
        return _fail(400, str(exc))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("OHLCV endpoint error: %s", exc)
        return _fail(500, str(exc))
    return _ok([
        {"timestamp": c.timestamp, "open": c.open, "high": c.high, "low": c.low, "close": c.close, "volume": c.volume}
        for c in candles
    ])


@router.get("/api/balance")
async def api_balance(context: ServiceContext = Depends(get_context)):
    try:
        balance = await context.client.get_balance()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Balance endpoint error: %s", exc)
        return _fail(500, str(exc))
    return _ok(balance.to_dict())


@router.get("/api/markets")
async def api_markets(context: ServiceContext = Depends(get_context)):
    try:
        markets = await context.client.get_markets()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Markets endpoint error: %s", exc)
        return _fail(500, str(exc))
    return _ok(markets)


@router.get("/api/orders")
async def api_orders(
    symbol: str | None = Query(default=None),
    context: ServiceContext = Depends(get_context),
):
    try:
        orders = await context.client.get_orders(symbol or None)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Orders endpoint error: %s", exc)
        return _fail(500, str(exc))
    return _ok([o.to_dict() for o in orders])


@router.post("/api/orders")
async def api_place_order(request: Request, context: ServiceContext = Depends(get_context)):
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return _fail(400, "Request body must be JSON")
    if not isinstance(body, dict):
        return _fail(400, "Request body must be a JSON object")

    side, symbol, amount, type = body.get("side"), body.get("symbol"), body.get("amount"), body.get("type")
    price = body.get("price")
    error = validate_order(side, symbol, amount, type, price)
    if error is not None:
        return _fail(400, error)

    try:
        order = await context.client.place_order(
            symbol,
            side,
            type,
            float(amount),
            price=float(price) if price not in (None, "") else None,
        )
        await sync_trade_counts(context.client, context.bot)
    except InvalidInput as exc:
        return _fail(400, str(exc))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Place order error: %s", exc)
        return _fail(500, str(exc))
    return _ok(order.to_dict())


@router.post("/api/orders/{order_id}/cancel")
async def api_cancel_order(order_id: str, context: ServiceContext = Depends(get_context)):
    try:
        cancelled = await context.client.cancel_order(order_id)
        if cancelled:
            await sync_trade_counts(context.client, context.bot)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Cancel order error: %s", exc)
        return _fail(500, str(exc))
    if not cancelled:
        return _fail(404, f"Order {order_id} not found or not open")
    return _ok({"id": order_id, "status": "cancelled"})


@router.get("/api/bot/status")
async def api_bot_status(context: ServiceContext = Depends(get_context)):
    return _ok(context.bot.get_status().to_dict())


@router.post("/api/bot/status")
async def api_bot_action(request: Request, context: ServiceContext = Depends(get_context)):
    try:
        body = await request.json()
    except json.JSONDecodeError:
        body = {}
    action = body.get("action") if isinstance(body, dict) else None
    if not action:
        return _fail(400, "Action parameter is required")
    if action not in BOT_ACTIONS:
        return _fail(400, "Invalid action. Must be start, pause, or stop")

    payload = context.bot.apply(action).to_dict()
    await context.hub.publish(ws_message("bot_status", payload))
    return _ok(payload)


@router.get("/api/health")
async def api_health(context: ServiceContext = Depends(get_context)):
    try:
        exchange_ok = await context.client.test_connection()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Health check error: %s", exc)
        exchange_ok = False
    return _ok(
        {
            "exchange": "OK" if exchange_ok else "ERROR",
            "mode": context.config.mode,
            "symbols": context.engine.symbols(),
            "bot": context.bot.get_status().status,
            "dashboardClients": context.hub.client_count,
        }
    )


@router.websocket("/ws/dashboard")
async def ws_dashboard(websocket: WebSocket):
    context: ServiceContext = websocket.app.state.context
    await context.hub.join(websocket, ws_message("bot_status", context.bot.get_status().to_dict()))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("WS client error: %s", exc)
    finally:
        await context.hub.leave(websocket)


def create_app(config: AppConfig | None = None, logger: Any | None = None) -> FastAPI:
    app_config = config or _base_config()
    service_logger = logger or app_logger

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = ServiceContext.build(app_config, logger=service_logger)
        app.state.context = context
        await context.start()
        service_logger.info(
            "Signal service started mode={} symbol={} partition_by_symbol={} feed={}",
            app_config.mode,
            app_config.trading.symbol,
            app_config.signals.partition_by_symbol,
            app_config.feed.enabled,
        )
        try:
            yield
        finally:
            await context.close()
            service_logger.info("Signal service stopped")

    app = FastAPI(title="dcx_signal_bot", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError):
        return _fail(400, f"Invalid request: {exc.errors()}")

    app.include_router(router)
    return app
