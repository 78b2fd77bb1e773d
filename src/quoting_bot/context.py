from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
import json
import logging
import threading
from typing import Any, Iterable
import uuid

from quoting_bot.models import (
    ActiveOrder,
    CancelInstruction,
    CreateInstruction,
    Execution,
    Key,
    parse_decimal,
    parse_ts,
)
from quoting_bot.pricing import round_to_increment

LOGGER = logging.getLogger("quoting_bot")


class BaseContext:
    """Read-only market view for one cycle, plus the order primitives venue handlers use."""

    def get_best_bid_price(self, key: Key) -> Decimal | None:
        raise NotImplementedError

    def get_best_ask_price(self, key: Key) -> Decimal | None:
        raise NotImplementedError

    def get_mid_price(self, key: Key) -> Decimal | None:
        raise NotImplementedError

    def get_commission_rate(self, key: Key) -> Decimal | None:
        raise NotImplementedError

    def is_marginable(self, key: Key) -> bool | None:
        raise NotImplementedError

    def get_funding_position(self, key: Key) -> Decimal | None:
        raise NotImplementedError

    def get_instrument_position(self, key: Key) -> Decimal | None:
        raise NotImplementedError

    def list_executions(self, key: Key) -> list[Execution] | None:
        raise NotImplementedError

    def list_active_orders(self, key: Key) -> list[ActiveOrder] | None:
        raise NotImplementedError

    def round_tick_size(self, key: Key, value: Decimal | None, rounding: str) -> Decimal | None:
        raise NotImplementedError

    def round_lot_size(self, key: Key, value: Decimal | None, rounding: str) -> Decimal | None:
        raise NotImplementedError

    def create_orders(self, key: Key, instructions: Iterable[CreateInstruction]) -> dict[CreateInstruction, str]:
        return {}

    def cancel_orders(self, key: Key, instructions: Iterable[CancelInstruction]) -> dict[CancelInstruction, str]:
        return {}

    def find_order(self, key: Key, order_id: str) -> ActiveOrder | None:
        return None


@dataclass
class MarketState:
    best_bid: Decimal | None = None
    best_ask: Decimal | None = None
    mid: Decimal | None = None
    commission_rate: Decimal | None = None
    marginable: bool | None = None
    funding_position: Decimal | None = None
    instrument_position: Decimal | None = None
    tick_size: Decimal | None = None
    lot_size: Decimal | None = None
    executions: list[Execution] = field(default_factory=list)
    active_orders: dict[str, ActiveOrder] = field(default_factory=dict)

    @property
    def mid_price(self) -> Decimal | None:
        if self.mid is not None:
            return self.mid
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        return None


class PaperContext(BaseContext):
    """In-memory context. Orders rest until cancelled; nothing is ever matched."""

    def __init__(self, states: dict[Key, MarketState] | None = None) -> None:
        self.states: dict[Key, MarketState] = dict(states or {})
        self._lock = threading.Lock()

    def state(self, key: Key) -> MarketState | None:
        with self._lock:
            return self.states.get(key)

    def _field(self, key: Key, name: str) -> Any:
        state = self.state(key)
        if state is None:
            return None
        return getattr(state, name)

    def get_best_bid_price(self, key: Key) -> Decimal | None:
        return self._field(key, "best_bid")

    def get_best_ask_price(self, key: Key) -> Decimal | None:
        return self._field(key, "best_ask")

    def get_mid_price(self, key: Key) -> Decimal | None:
        return self._field(key, "mid_price")

    def get_commission_rate(self, key: Key) -> Decimal | None:
        return self._field(key, "commission_rate")

    def is_marginable(self, key: Key) -> bool | None:
        return self._field(key, "marginable")

    def get_funding_position(self, key: Key) -> Decimal | None:
        return self._field(key, "funding_position")

    def get_instrument_position(self, key: Key) -> Decimal | None:
        return self._field(key, "instrument_position")

    def list_executions(self, key: Key) -> list[Execution] | None:
        executions = self._field(key, "executions")
        return None if executions is None else list(executions)

    def list_active_orders(self, key: Key) -> list[ActiveOrder] | None:
        state = self.state(key)
        if state is None:
            return None
        with self._lock:
            return list(state.active_orders.values())

    def round_tick_size(self, key: Key, value: Decimal | None, rounding: str) -> Decimal | None:
        if value is None:
            return None
        return round_to_increment(value, self._field(key, "tick_size"), rounding)

    def round_lot_size(self, key: Key, value: Decimal | None, rounding: str) -> Decimal | None:
        if value is None:
            return None
        return round_to_increment(value, self._field(key, "lot_size"), rounding)

    def create_orders(self, key: Key, instructions: Iterable[CreateInstruction]) -> dict[CreateInstruction, str]:
        state = self.state(key)
        if state is None:
            return {}
        results: dict[CreateInstruction, str] = {}
        with self._lock:
            for instruction in instructions:
                order_id = f"paper-{uuid.uuid4().hex[:12]}"
                state.active_orders[order_id] = ActiveOrder(
                    order_id=order_id,
                    price=instruction.price,
                    quantity=instruction.size,
                )
                results[instruction] = order_id
        return results

    def cancel_orders(self, key: Key, instructions: Iterable[CancelInstruction]) -> dict[CancelInstruction, str]:
        state = self.state(key)
        if state is None:
            return {}
        results: dict[CancelInstruction, str] = {}
        with self._lock:
            for instruction in instructions:
                if state.active_orders.pop(instruction.order_id, None) is not None:
                    results[instruction] = instruction.order_id
        return results

    def find_order(self, key: Key, order_id: str) -> ActiveOrder | None:
        state = self.state(key)
        if state is None:
            return None
        with self._lock:
            return state.active_orders.get(order_id)


def _parse_state(raw: dict[str, Any]) -> MarketState:
    executions = [
        Execution(
            time=parse_ts(item.get("time")),
            price=parse_decimal(item.get("price")),
            size=parse_decimal(item.get("size")),
        )
        for item in raw.get("executions") or []
    ]
    state = MarketState(
        best_bid=parse_decimal(raw.get("best_bid")),
        best_ask=parse_decimal(raw.get("best_ask")),
        mid=parse_decimal(raw.get("mid")),
        commission_rate=parse_decimal(raw.get("commission_rate")),
        marginable=raw.get("marginable"),
        funding_position=parse_decimal(raw.get("funding_position")),
        instrument_position=parse_decimal(raw.get("instrument_position")),
        tick_size=parse_decimal(raw.get("tick_size")),
        lot_size=parse_decimal(raw.get("lot_size")),
        executions=executions,
    )
    for item in raw.get("active_orders") or []:
        order = ActiveOrder(
            order_id=str(item["order_id"]),
            price=parse_decimal(item.get("price")),
            quantity=parse_decimal(item.get("quantity")),
        )
        state.active_orders[order.order_id] = order
    return state


def load_paper_context(path: str | Path) -> PaperContext:
    """
    Load a market snapshot keyed by "site:instrument":
      {"paper:BTC_JPY": {"best_bid": "100", "best_ask": "101", "tick_size": "1", ...}}
    """
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"market snapshot must be a JSON object: {path}")
    states: dict[Key, MarketState] = {}
    for raw_key, raw_state in payload.items():
        site, sep, instrument = str(raw_key).partition(":")
        if not sep or not site or not instrument:
            LOGGER.warning("market_file_skip key=%s reason=expected site:instrument", raw_key)
            continue
        if not isinstance(raw_state, dict):
            LOGGER.warning("market_file_skip key=%s reason=expected object", raw_key)
            continue
        states[Key(site=site, instrument=instrument)] = _parse_state(raw_state)
    LOGGER.info("market_file_loaded path=%s keys=%s", path, len(states))
    return PaperContext(states)
