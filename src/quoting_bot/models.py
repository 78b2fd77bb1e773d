from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Mapping, Union
import uuid


ALL = "*"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str) or value == "":
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_decimal(raw: Any, default: Decimal | None = None) -> Decimal | None:
    if raw is None:
        return default
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, bool):
        return default
    if isinstance(raw, (int, float)):
        return Decimal(str(raw))
    if isinstance(raw, str) and raw.strip() == "":
        return default
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return default
    if not value.is_finite():
        return default
    return value


def parse_int(raw: Any, default: int | None = None) -> int | None:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def _frozen_mapping(raw: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if raw is None:
        return None
    return MappingProxyType(dict(raw))


@dataclass(frozen=True)
class CycleRequest:
    site: str | None
    instrument: str | None
    current_time: datetime | None = None
    target_time: datetime | None = None
    trading_spread: Decimal | None = None
    trading_spread_ask: Decimal | None = None
    trading_spread_bid: Decimal | None = None
    trading_exposure: Decimal | None = None
    trading_aversion: Decimal | None = None
    trading_split: int | None = None
    trading_sigma: Decimal | None = None
    trading_samples: int | None = None
    trading_duration: timedelta | None = None
    funding_offset: Decimal | None = None
    funding_positive_multiplier: Decimal | None = None
    funding_negative_multiplier: Decimal | None = None
    funding_multiplier_products: Mapping[str, Any] | None = None
    hedge_products: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        # Callers may hand in plain dicts; keep the snapshot read-only.
        object.__setattr__(
            self, "funding_multiplier_products", _frozen_mapping(self.funding_multiplier_products)
        )
        object.__setattr__(self, "hedge_products", _frozen_mapping(self.hedge_products))

    @staticmethod
    def is_invalid(request: "CycleRequest | None") -> bool:
        if request is None:
            return True
        if request.site is None or not request.site.strip():
            return True
        if request.instrument is None or not request.instrument.strip():
            return True
        return False


@dataclass(frozen=True)
class Key:
    site: str
    instrument: str

    @staticmethod
    def from_request(request: CycleRequest) -> "Key":
        return Key(site=str(request.site), instrument=str(request.instrument))

    def __str__(self) -> str:
        return f"{self.site}:{self.instrument}"


@dataclass(frozen=True)
class Estimation:
    price: Decimal | None = None
    confidence: Decimal | None = None


@dataclass(frozen=True)
class Advice:
    buy_limit_price: Decimal | None = None
    buy_limit_size: Decimal | None = None
    sell_limit_price: Decimal | None = None
    sell_limit_size: Decimal | None = None


@dataclass(frozen=True)
class Execution:
    time: datetime | None
    price: Decimal | None
    size: Decimal | None


@dataclass(frozen=True)
class ActiveOrder:
    order_id: str
    price: Decimal | None
    quantity: Decimal | None

    @property
    def is_buy(self) -> bool:
        return self.quantity is not None and self.quantity > 0

    @property
    def is_sell(self) -> bool:
        return self.quantity is not None and self.quantity < 0


def _instruction_uid() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class CreateInstruction:
    price: Decimal
    size: Decimal
    uid: str = field(default_factory=_instruction_uid)


@dataclass(frozen=True)
class CancelInstruction:
    order_id: str
    uid: str = field(default_factory=_instruction_uid)


Instruction = Union[CreateInstruction, CancelInstruction]
