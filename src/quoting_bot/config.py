from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
import json
import logging
import os
from typing import Any, Callable, Mapping

from quoting_bot.models import ALL, parse_decimal, parse_int, utc_now

LOGGER = logging.getLogger("quoting_bot")

DEFAULT_TARGETS = (("paper", "BTC_JPY"),)


@dataclass(frozen=True)
class BotConfig:
    trading_active: bool
    trading_targets: tuple[tuple[str, str], ...]
    trading_interval_seconds: float | None
    trading_threads: int

    trading_spread: Decimal | None
    trading_spread_ask: Decimal | None
    trading_spread_bid: Decimal | None
    trading_exposure: Decimal | None
    trading_aversion: Decimal | None
    trading_split: int | None
    trading_sigma: Decimal | None
    trading_samples: int | None
    trading_duration_seconds: int | None
    funding_offset: Decimal | None
    funding_positive_multiplier: Decimal | None
    funding_negative_multiplier: Decimal | None

    estimation_confidence: Decimal | None
    overrides_path: str
    market_path: str
    log_level: str


def parse_targets(raw: str) -> tuple[tuple[str, str], ...]:
    targets: list[tuple[str, str]] = []
    for chunk in raw.split(","):
        site, sep, instrument = chunk.strip().partition(":")
        site = site.strip()
        instrument = instrument.strip()
        if not sep or not site or not instrument:
            continue
        if (site, instrument) not in targets:
            targets.append((site, instrument))
    return tuple(targets)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_decimal(name: str, default: str) -> Decimal | None:
    return parse_decimal(os.getenv(name, default))


def _env_int(name: str, default: str) -> int | None:
    return parse_int(os.getenv(name, default))


def _env_interval(name: str, default: str) -> float | None:
    raw = os.getenv(name, default).strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def load_config() -> BotConfig:
    raw_targets = os.getenv("TRADING_TARGETS", "").strip()
    targets = parse_targets(raw_targets) if raw_targets else DEFAULT_TARGETS
    threads = _env_int("TRADING_THREADS", "4")

    return BotConfig(
        trading_active=_env_flag("TRADING_ACTIVE", False),
        trading_targets=targets,
        trading_interval_seconds=_env_interval("TRADING_INTERVAL_SECONDS", "60"),
        trading_threads=max(1, threads or 1),
        trading_spread=_env_decimal("TRADING_SPREAD", "0.0050"),
        trading_spread_ask=_env_decimal("TRADING_SPREAD_ASK", "0"),
        trading_spread_bid=_env_decimal("TRADING_SPREAD_BID", "0"),
        trading_exposure=_env_decimal("TRADING_EXPOSURE", "0.0010"),
        trading_aversion=_env_decimal("TRADING_AVERSION", "1.0"),
        trading_split=_env_int("TRADING_SPLIT", "1"),
        trading_sigma=_env_decimal("TRADING_SIGMA", "0"),
        trading_samples=_env_int("TRADING_SAMPLES", "60"),
        trading_duration_seconds=_env_int("TRADING_DURATION_SECONDS", "3600"),
        funding_offset=_env_decimal("FUNDING_OFFSET", "0"),
        funding_positive_multiplier=_env_decimal("FUNDING_POSITIVE_MULTIPLIER", "1"),
        funding_negative_multiplier=_env_decimal("FUNDING_NEGATIVE_MULTIPLIER", "1"),
        estimation_confidence=_env_decimal("ESTIMATION_CONFIDENCE", "1"),
        overrides_path=os.getenv("BOT_OVERRIDES_PATH", ""),
        market_path=os.getenv("BOT_MARKET_PATH", "data/market.json"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def load_overrides(path: str) -> dict[str, dict[str, dict[str, Any]]]:
    """
    Per-pair overrides, most specific first:
      {"bitflyer": {"*": {"trading_spread": "0.002"}, "FX_BTC_JPY": {"trading_split": 3}}}
    """
    if not path:
        return {}
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"overrides must be a JSON object: {path}")
    return payload


class TradingProperties:
    """Configuration source for the trading loop. Every accessor may return None when unconfigured."""

    def __init__(
        self,
        config: BotConfig,
        overrides: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None,
        clock: Callable[[], datetime | None] = utc_now,
    ) -> None:
        self.config = config
        self.overrides = overrides or {}
        self.clock = clock

    def _lookup(self, site: str, instrument: str, name: str, default: Any) -> Any:
        for site_key in (site, ALL):
            per_site = self.overrides.get(site_key) or {}
            for instrument_key in (instrument, ALL):
                values = per_site.get(instrument_key) or {}
                if name in values:
                    return values[name]
        return default

    def now(self) -> datetime | None:
        return self.clock()

    def trading_active(self) -> bool:
        return self.config.trading_active

    def trading_targets(self) -> dict[str, tuple[str, ...]]:
        targets: dict[str, list[str]] = {}
        for site, instrument in self.config.trading_targets:
            targets.setdefault(site, []).append(instrument)
        return {site: tuple(instruments) for site, instruments in targets.items()}

    def trading_interval(self) -> timedelta | None:
        seconds = self.config.trading_interval_seconds
        if seconds is None:
            return None
        return timedelta(seconds=seconds)

    def trading_threads(self) -> int:
        return self.config.trading_threads

    def _decimal(self, site: str, instrument: str, name: str) -> Decimal | None:
        return parse_decimal(self._lookup(site, instrument, name, getattr(self.config, name)))

    def _int(self, site: str, instrument: str, name: str) -> int | None:
        return parse_int(self._lookup(site, instrument, name, getattr(self.config, name)))

    def _mapping(self, site: str, instrument: str, name: str) -> dict[str, Any] | None:
        value = self._lookup(site, instrument, name, {})
        if not isinstance(value, Mapping):
            return None
        return dict(value)

    def trading_spread(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "trading_spread")

    def trading_spread_ask(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "trading_spread_ask")

    def trading_spread_bid(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "trading_spread_bid")

    def trading_exposure(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "trading_exposure")

    def trading_aversion(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "trading_aversion")

    def trading_split(self, site: str, instrument: str) -> int | None:
        return self._int(site, instrument, "trading_split")

    def trading_sigma(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "trading_sigma")

    def trading_samples(self, site: str, instrument: str) -> int | None:
        return self._int(site, instrument, "trading_samples")

    def trading_duration(self, site: str, instrument: str) -> timedelta | None:
        seconds = self._int(site, instrument, "trading_duration_seconds")
        if seconds is None or seconds < 0:
            return None
        return timedelta(seconds=seconds)

    def funding_offset(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "funding_offset")

    def funding_positive_multiplier(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "funding_positive_multiplier")

    def funding_negative_multiplier(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "funding_negative_multiplier")

    def funding_multiplier_products(self, site: str, instrument: str) -> dict[str, Any] | None:
        return self._mapping(site, instrument, "funding_multiplier_products")

    def hedge_products(self, site: str, instrument: str) -> dict[str, Any] | None:
        return self._mapping(site, instrument, "hedge_products")

    def estimation_confidence(self, site: str, instrument: str) -> Decimal | None:
        return self._decimal(site, instrument, "estimation_confidence")
