from __future__ import annotations

import argparse
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
import json
import logging
import signal
from typing import Iterable

from quoting_bot.agent import AgentDispatcher
from quoting_bot.config import BotConfig, TradingProperties, load_config, load_overrides, parse_targets
from quoting_bot.context import BaseContext, load_paper_context
from quoting_bot.estimator import MidEstimator
from quoting_bot.instructor import Instructor
from quoting_bot.pipeline import Pipeline
from quoting_bot.quote_engine import QuoteEngine
from quoting_bot.trader import Trader
from quoting_bot.venues import TemplateVenue

LOGGER = logging.getLogger("quoting_bot")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _apply_arguments(config: BotConfig, args: argparse.Namespace) -> BotConfig:
    if getattr(args, "interval", None) is not None:
        if args.interval < 0:
            raise ValueError("--interval must be >= 0")
        config = replace(config, trading_interval_seconds=float(args.interval))
    if getattr(args, "targets", None):
        targets = parse_targets(args.targets)
        if not targets:
            raise ValueError(f"no usable site:instrument pair in --targets={args.targets!r}")
        config = replace(config, trading_targets=targets)
    if getattr(args, "market", None):
        config = replace(config, market_path=args.market)
    if getattr(args, "inactive", False):
        config = replace(config, trading_active=False)
    if getattr(args, "active", False):
        config = replace(config, trading_active=True)
    return config


def build_pipeline(properties: TradingProperties, context: BaseContext) -> Pipeline:
    sites = properties.trading_targets().keys()
    handlers = {site: TemplateVenue(site) for site in sites}
    return Pipeline(
        properties=properties,
        context=context,
        estimator=MidEstimator(properties),
        engine=QuoteEngine(),
        instructor=Instructor(),
        agent=AgentDispatcher(properties, handlers),
    )


def _load_runtime(args: argparse.Namespace) -> tuple[TradingProperties, BaseContext] | None:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        config = _apply_arguments(config, args)
        overrides = load_overrides(config.overrides_path)
        context = load_paper_context(config.market_path)
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        LOGGER.error("startup_failed error=%s", exc)
        return None
    return TradingProperties(config, overrides), context


def _run_command(args: argparse.Namespace) -> int:
    loaded = _load_runtime(args)
    if loaded is None:
        return 2
    properties, context = loaded
    pipeline = build_pipeline(properties, context)
    trader = Trader(properties, pipeline)
    LOGGER.info(
        "Starting bot active=%s targets=%s interval=%s",
        properties.trading_active(),
        ",".join(f"{site}:{instrument}" for site, instrument in properties.config.trading_targets),
        properties.trading_interval(),
    )

    if args.once:
        with ThreadPoolExecutor(max_workers=trader.max_workers) as executor:
            trader.run_cycle(executor)
        return 0

    signal_count = {"count": 0}

    def _handle_signal(signum: int, _frame: object) -> None:
        signal_count["count"] += 1
        if signal_count["count"] >= 2:
            LOGGER.error("Received signal %s again, forcing exit now", signum)
            raise SystemExit(130)
        LOGGER.warning(
            "Received signal %s, stopping loop (press Ctrl+C again to force-exit)",
            signum,
        )
        trader.close()

    def _handle_trigger(signum: int, _frame: object) -> None:
        LOGGER.info("Received signal %s, triggering cycle", signum)
        trader.trigger()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, _handle_trigger)
    trader.run()
    return 0


def _advice_payload(pipeline: Pipeline, site: str, instrument: str) -> dict[str, object]:
    request = pipeline.create_request(pipeline.properties.now(), site, instrument)
    if request is None:
        return {"site": site, "instrument": instrument, "status": "unconfigured"}
    estimation = pipeline.estimator.estimate(pipeline.context, request)
    advice = pipeline.engine.advise(pipeline.context, request, estimation)
    return {
        "site": site,
        "instrument": instrument,
        "status": "ok",
        "estimate": estimation.price,
        "confidence": estimation.confidence,
        "buy_limit_price": advice.buy_limit_price,
        "buy_limit_size": advice.buy_limit_size,
        "sell_limit_price": advice.sell_limit_price,
        "sell_limit_size": advice.sell_limit_size,
    }


def _check_command(args: argparse.Namespace) -> int:
    loaded = _load_runtime(args)
    if loaded is None:
        return 2
    properties, context = loaded
    pipeline = build_pipeline(properties, context)
    report = [
        _advice_payload(pipeline, site, instrument)
        for site, instrument in properties.config.trading_targets
    ]
    print(json.dumps(report, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quoting_bot", description="Multi-venue market making loop"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run trading loop")
    run.add_argument("--interval", type=float, default=None, help="Cycle interval in seconds")
    run.add_argument("--targets", default=None, help="Comma separated site:instrument pairs")
    run.add_argument("--market", default=None, help="Market snapshot JSON for the paper context")
    mode = run.add_mutually_exclusive_group()
    mode.add_argument("--active", action="store_true", help="Submit instructions to venues")
    mode.add_argument("--inactive", action="store_true", help="Compute quotes but never submit them")
    run.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    run.set_defaults(func=_run_command)

    check = sub.add_parser("check", help="Print the current advice per target as JSON")
    check.add_argument("--targets", default=None, help="Comma separated site:instrument pairs")
    check.add_argument("--market", default=None, help="Market snapshot JSON for the paper context")
    check.set_defaults(func=_check_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
