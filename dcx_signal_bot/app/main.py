"""Application entrypoint."""

from __future__ import annotations

import os
from pathlib import Path

import uvicorn

from dcx_signal_bot.app.config import AppConfig, load_config
from dcx_signal_bot.app.logger import setup_logger
from dcx_signal_bot.web.server import CONFIG_ENV, create_app


def run() -> None:
    config_path = Path(os.getenv(CONFIG_ENV, "config.yml"))
    config: AppConfig = load_config(config_path)
    logger = setup_logger(config.log_dir)

    logger.info("Config loaded from {}", config_path)
    logger.info(
        "Starting signal service mode={} symbol={} host={} port={}",
        config.mode,
        config.trading.symbol,
        config.server.host,
        config.server.port,
    )
    if config.mode == "live" and not (config.coindcx.api_key and config.coindcx.api_secret):
        logger.error("Live mode requested but COINDCX_API_KEY / COINDCX_SECRET are not set")
        raise SystemExit(1)

    app = create_app(config, logger=logger)
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None, log_level="info")


if __name__ == "__main__":
    run()
