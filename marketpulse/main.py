"""MarketPulse — application entry point.

Boots the FastAPI internal server and the monitor/sweep loops.
"""

import logging

from fastapi import FastAPI

from marketpulse.api.routers import router

app = FastAPI(title="MarketPulse Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("marketpulse")


@app.get("/health")
async def health():
    return {"status": "ok"}


def build_components(config) -> dict:
    """Wire every component from *config*; no I/O beyond the DB schema."""
    from marketpulse.alerts.dedup import AlertDeduplicator
    from marketpulse.alerts.notifier import build_notifiers
    from marketpulse.broker.bybit_client import BybitClient
    from marketpulse.executor import TradeExecutor
    from marketpulse.monitor import MarketMonitor
    from marketpulse.repos.db import init_db
    from marketpulse.repos.order_repo import OrderRepo
    from marketpulse.repos.signal_repo import SignalRepo
    from marketpulse.risk.position_sizer import PositionSizer
    from marketpulse.scheduler import TradingScheduler
    from marketpulse.strategy.decision import DecisionEngine

    init_db(config.db_path)

    broker = BybitClient(config)
    signal_repo = SignalRepo(config.db_path)
    order_repo = OrderRepo(config.db_path)
    deduplicator = AlertDeduplicator(
        threshold=config.alert_threshold,
        notifiers=build_notifiers(config.telegram_bot_token, config.telegram_chat_id),
    )
    sizer = PositionSizer(
        account_size=config.account_size_usd,
        max_risk_per_trade_pct=config.max_risk_per_trade_pct,
        default_position_notional=config.default_trade_size_usd,
        max_leverage=config.max_leverage,
    )
    decision_engine = DecisionEngine(
        sizer,
        activation_threshold=config.activation_threshold,
        neutral_policy=config.neutral_policy,
    )
    executor = TradeExecutor(
        broker,
        signal_repo,
        order_repo,
        order_type=config.order_type,
        take_profit_pct=config.take_profit_pct,
        stop_loss_pct=config.stop_loss_pct,
        close_backoff_seconds=config.close_backoff_seconds,
        order_pacing_seconds=config.order_pacing_seconds,
    )
    monitor = MarketMonitor(
        config, broker, deduplicator, decision_engine, signal_repo, executor,
    )
    scheduler = TradingScheduler(
        monitor,
        executor,
        monitor_interval=config.monitor_interval_seconds,
        sweep_interval=config.sweep_interval_seconds,
    )
    return {
        "broker": broker,
        "signal_repo": signal_repo,
        "order_repo": order_repo,
        "deduplicator": deduplicator,
        "sizer": sizer,
        "decision_engine": decision_engine,
        "executor": executor,
        "monitor": monitor,
        "scheduler": scheduler,
    }


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the service."""
    import argparse
    import asyncio

    from marketpulse.api.routers import configure_routers
    from marketpulse.config import load_config

    parser = argparse.ArgumentParser(description="MarketPulse market monitor and auto-trader")
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Run the loops without the API server",
    )
    parser.add_argument(
        "--no-trading",
        action="store_true",
        help="Analyze and alert only: auto-trading off, no pending-signal sweep",
    )
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    components = build_components(config)
    if args.no_trading:
        components["monitor"].set_auto_trading(False)
    configure_routers(**components)

    logger.info(
        "Monitoring %s on %s (testnet=%s, auto-trading=%s)",
        ", ".join(config.symbols), ", ".join(config.timeframes),
        config.bybit_testnet, components["monitor"].auto_trading,
    )

    try:
        asyncio.run(_run_service(
            components["scheduler"],
            trading=not args.no_trading,
            port=None if args.no_api else config.api_port,
        ))
    except KeyboardInterrupt:
        logger.info("Shutdown signal received — stopping.")


async def _run_service(scheduler, trading: bool, port: int | None) -> None:
    """Start the loops, then serve the API (or idle) until interrupted."""
    import asyncio

    scheduler.start(trading=trading)
    try:
        if port is None:
            await asyncio.Event().wait()
        else:
            import uvicorn

            uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
            server = uvicorn.Server(uvi_config)
            logger.info("API available at http://localhost:%d", port)
            await server.serve()
    finally:
        scheduler.stop()
        logger.info("MarketPulse stopped.")


if __name__ == "__main__":
    _run_cli()
