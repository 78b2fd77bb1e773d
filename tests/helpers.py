from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from quoting_bot.config import BotConfig, TradingProperties, load_config  # noqa: E402
from quoting_bot.context import MarketState, PaperContext  # noqa: E402
from quoting_bot.models import ActiveOrder, CycleRequest, Execution, Key  # noqa: E402

NOW = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)
SITE = "paper"
INSTRUMENT = "BTC_JPY"
KEY = Key(site=SITE, instrument=INSTRUMENT)


def D(value: str | int) -> Decimal:
    return Decimal(str(value))


def test_config(**kwargs) -> BotConfig:
    cfg = load_config()
    return replace(cfg, **kwargs)


def test_properties(overrides: dict | None = None, now: datetime | None = NOW, **kwargs) -> TradingProperties:
    return TradingProperties(test_config(**kwargs), overrides or {}, clock=lambda: now)


test_config.__test__ = False  # type: ignore[attr-defined]
test_properties.__test__ = False  # type: ignore[attr-defined]


def build_request(**kwargs) -> CycleRequest:
    values = dict(
        site=SITE,
        instrument=INSTRUMENT,
        current_time=NOW,
        target_time=NOW + timedelta(seconds=60),
        trading_spread=D("0.008"),
        trading_spread_ask=D("0"),
        trading_spread_bid=D("0"),
        trading_exposure=D("0.1"),
        trading_aversion=D("1"),
        trading_split=1,
        trading_sigma=D("0"),
        trading_samples=60,
        trading_duration=timedelta(hours=1),
        funding_offset=D("0"),
        funding_positive_multiplier=D("1"),
        funding_negative_multiplier=D("1"),
        funding_multiplier_products={},
        hedge_products={},
    )
    values.update(kwargs)
    return CycleRequest(**values)


def build_state(**kwargs) -> MarketState:
    values = dict(
        best_bid=D("100"),
        best_ask=D("102"),
        commission_rate=D("0.001"),
        marginable=False,
        funding_position=D("10000"),
        instrument_position=D("100"),
        tick_size=D("0.5"),
        lot_size=D("0.01"),
    )
    values.update(kwargs)
    return MarketState(**values)


def build_context(state: MarketState | None = None, key: Key = KEY) -> PaperContext:
    return PaperContext({key: state if state is not None else build_state()})


def execution(minutes_ago: int, size: str, price: str) -> Execution:
    return Execution(time=NOW - timedelta(minutes=minutes_ago), price=D(price), size=D(size))


def active_order(order_id: str, price: str, quantity: str) -> ActiveOrder:
    return ActiveOrder(order_id=order_id, price=D(price), quantity=D(quantity))
