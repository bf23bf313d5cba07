"""ICT bot — application entry point.

Boots the FastAPI status server next to the live paper-trading loop and
provides the CLI for paper, backtest and data-fetch modes.
"""

import logging

from fastapi import FastAPI

from ictbot.api.routers import router

app = FastAPI(title="ICT Bot Status API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("ictbot")


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(prog="ictbot", description="ICT multi-timeframe trading bot")
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env)")
    sub = parser.add_subparsers(dest="command")

    paper = sub.add_parser("paper", help="Run the live paper-trading loop (default)")
    paper.add_argument("--no-api", action="store_true", help="Do not start the status API server")

    backtest = sub.add_parser("backtest", help="Replay history through the full pipeline")
    backtest.add_argument("days_back", nargs="?", type=int, default=365, help="Days of history (default: 365)")
    backtest.add_argument("step_minutes", nargs="?", type=int, default=5, help="Simulated step (default: 5)")

    fetch = sub.add_parser("fetch", help="Download and cache history without backtesting")
    fetch.add_argument("days_back", nargs="?", type=int, default=365, help="Days of history (default: 365)")
    return parser


def _run_cli(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the selected mode."""
    import asyncio
    import signal

    from ictbot.config import load_config

    args = _build_parser().parse_args(argv)
    config = load_config(args.env_file)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    command = args.command or "paper"
    if command == "backtest":
        asyncio.run(_run_backtest(config, args.days_back, args.step_minutes))
        return
    if command == "fetch":
        asyncio.run(_fetch(config, args.days_back))
        return

    from ictbot.api.routers import configure_routers
    from ictbot.broker.coinbase_client import CoinbaseClient
    from ictbot.engine import TradingEngine

    engine = TradingEngine(config, CoinbaseClient(config))
    configure_routers(engine=engine, bot_status={"mode": "paper", "symbol": config.symbol})

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received, finishing the current tick.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    if getattr(args, "no_api", False):
        asyncio.run(engine.run())
    else:
        asyncio.run(_run_with_api(engine, config.health_port))

    from ictbot.cli.dashboard import print_status

    print_status(engine.status())


async def _run_with_api(engine, port: int) -> None:
    """Serve the status API and run the trading loop concurrently."""
    import asyncio

    import uvicorn

    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=port, log_level="warning"))

    async def _run_engine():
        try:
            await engine.run()
        finally:
            server.should_exit = True

    logger.info("Status API available at http://localhost:%d", port)
    results = await asyncio.gather(server.serve(), _run_engine(), return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.error("Shutdown with error: %s", result)


async def _fetch(config, days_back: int):
    """Download (or load from cache) every timeframe for the last *days_back* days."""
    from datetime import datetime, timedelta, timezone

    from ictbot.broker.coinbase_client import CoinbaseClient
    from ictbot.broker.data_fetcher import load_all_timeframes

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days_back)
    data = await load_all_timeframes(CoinbaseClient(config), start, end, config.data_dir)
    for tf, series in data.items():
        logger.info("  %s: %d candles", tf, len(series))
    return data


async def _run_backtest(config, days_back: int, step_minutes: int) -> None:
    """Fetch history, replay it, print the report and save it as JSON."""
    from dataclasses import replace
    from datetime import timedelta
    from pathlib import Path

    from ictbot.backtest.runner import BacktestRunner
    from ictbot.broker.historical import HistoricalExchange
    from ictbot.models.timeframe import Timeframe
    from ictbot.repos.json_store import write_json

    # Backtests churn less and accept nearer targets than the live loop.
    config = replace(config, min_tp_multiple=3.0, cooldown_minutes=30)

    print(f"ICT TRADING BOT BACKTESTER | {config.symbol} | {days_back} days | "
          f"{step_minutes}m step | ${config.initial_balance:.2f}")

    data = await _fetch(config, days_back)
    if not data.get(Timeframe.M1):
        logger.error("No 1-minute data available. Cannot backtest.")
        return

    exchange = HistoricalExchange(config.symbol)
    for tf, series in data.items():
        exchange.load(tf, series)

    data_start = exchange.earliest_time()
    data_end = exchange.latest_time()
    bt_start = data_start + timedelta(days=1)
    if bt_start >= data_end:
        logger.error("Not enough data for backtesting")
        return

    logger.info("Backtesting from %s to %s", f"{bt_start:%Y-%m-%d %H:%M}", f"{data_end:%Y-%m-%d %H:%M}")
    report = await BacktestRunner(exchange, config).run(bt_start, data_end, step_minutes)
    report.print_summary()

    path = Path(config.data_dir) / f"backtest_{report.start:%Y%m%d}_{report.end:%Y%m%d}.json"
    write_json(path, report.to_dict())
    print(f"\nReport saved to: {path}")


if __name__ == "__main__":
    _run_cli()
