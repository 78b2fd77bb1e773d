from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, ROUND_UP, Decimal
import logging
from typing import Callable

from quoting_bot.context import BaseContext
from quoting_bot.models import Advice, CycleRequest, Estimation, Execution, Key
from quoting_bot.pricing import EPSILON, HALF, ONE, SIGNUM_BUY, SIGNUM_SELL, ZERO, divide

LOGGER = logging.getLogger("quoting_bot")

Adjuster = Callable[[BaseContext, CycleRequest, Decimal], Decimal]


def keep_value(context: BaseContext, request: CycleRequest, value: Decimal) -> Decimal:
    return value


@dataclass(frozen=True)
class QuoteAdjustments:
    """Strategy hooks applied to intermediate results. Each must be a pure transform."""

    basis: Adjuster = keep_value
    buy_boundary: Adjuster = keep_value
    sell_boundary: Adjuster = keep_value
    buy_size: Adjuster = keep_value
    sell_size: Adjuster = keep_value


def _signum(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


class QuoteEngine:
    """
    Computes two-sided limit quotes from a fair price estimate.

    Both sides start from a confidence-weighted fair price and move away from it by a
    basis (round-trip commission plus spread). The basis widens on the side that would
    grow the current inventory skew, and on the side where recent fills are under water.
    Prices are then clamped so a quote never crosses the book, never chases our own
    resting order and never undercuts the cost of the net position built in the
    lookback window. Sizes are a fraction of the funding and instrument capacity.
    """

    def __init__(self, adjustments: QuoteAdjustments | None = None) -> None:
        self.adjustments = adjustments or QuoteAdjustments()

    def advise(
        self,
        context: BaseContext,
        request: CycleRequest,
        estimation: Estimation | None,
    ) -> Advice:
        weighed_price = self.calculate_weighed_price(context, request, estimation)
        basis = self.calculate_basis(context, request)
        buy_basis = self.calculate_buy_basis(context, request, basis)
        sell_basis = self.calculate_sell_basis(context, request, basis)
        buy_price = self.calculate_buy_limit_price(context, request, weighed_price, buy_basis)
        sell_price = self.calculate_sell_limit_price(context, request, weighed_price, sell_basis)
        buy_size = self.calculate_buy_limit_size(context, request, buy_price)
        sell_size = self.calculate_sell_limit_size(context, request, sell_price)

        advice = Advice(
            buy_limit_price=buy_price,
            buy_limit_size=buy_size,
            sell_limit_price=sell_price,
            sell_limit_size=sell_size,
        )
        LOGGER.debug(
            "advice site=%s instrument=%s buy=%s@%s sell=%s@%s",
            request.site,
            request.instrument,
            buy_size,
            buy_price,
            sell_size,
            sell_price,
        )
        return advice

    def calculate_weighed_price(
        self,
        context: BaseContext,
        request: CycleRequest,
        estimation: Estimation | None,
    ) -> Decimal | None:
        if estimation is None or estimation.price is None:
            LOGGER.debug("weighed_price_unavailable reason=no_estimate estimation=%s", estimation)
            return None
        confidence = estimation.confidence
        if confidence is None or confidence <= 0 or confidence > ONE:
            LOGGER.debug("weighed_price_unavailable reason=confidence estimation=%s", estimation)
            return None

        mid = context.get_mid_price(Key.from_request(request))
        if mid is None:
            LOGGER.debug("weighed_price_unavailable reason=no_mid")
            return None

        weighed = mid * (ONE - confidence) + estimation.price * confidence
        LOGGER.debug("weighed_price=%s mid=%s estimation=%s", weighed, mid, estimation)
        return weighed

    def calculate_basis(self, context: BaseContext, request: CycleRequest) -> Decimal | None:
        commission = context.get_commission_rate(Key.from_request(request))
        if commission is None:
            LOGGER.debug("basis_unavailable reason=no_commission")
            return None
        spread = request.trading_spread
        if spread is None:
            LOGGER.debug("basis_unavailable reason=no_spread")
            return None
        # Commission is paid on both the opening and the closing trade.
        return self.adjustments.basis(context, request, spread + commission + commission)

    def calculate_position_ratio(self, context: BaseContext, request: CycleRequest) -> Decimal | None:
        key = Key.from_request(request)
        mid = context.get_mid_price(key)
        funding = context.get_funding_position(key)
        instrument = context.get_instrument_position(key)
        if mid is None or funding is None or instrument is None:
            LOGGER.debug(
                "position_ratio_unavailable mid=%s funding=%s instrument=%s",
                mid,
                funding,
                instrument,
            )
            return None

        offset = request.funding_offset if request.funding_offset is not None else ZERO
        adj_funding = funding * (ONE + offset)
        equivalent = instrument * mid

        if context.is_marginable(key) is True:
            # Half of the funding backs each side, so the ratio is equivalent / (funding / 2).
            # Unbounded: a leveraged short can exceed the funding.
            if adj_funding == 0:
                return ZERO
            ratio = divide(equivalent + equivalent, adj_funding)
        else:
            # Difference over average: 2 * (x - y) / (x + y)
            total = equivalent + adj_funding
            if total == 0:
                return ZERO
            diff = equivalent - adj_funding
            ratio = divide(diff + diff, total)

        aversion = request.trading_aversion if request.trading_aversion is not None else ONE
        result = (ratio * aversion).quantize(EPSILON, rounding=ROUND_HALF_UP)
        LOGGER.debug(
            "position_ratio=%s ratio=%s funding=%s instrument=%s mid=%s",
            result,
            ratio,
            adj_funding,
            instrument,
            mid,
        )
        return result

    def _list_recent_executions(self, context: BaseContext, request: CycleRequest) -> list[Execution]:
        current = request.current_time
        duration = request.trading_duration
        if current is None or duration is None:
            return []
        cutoff = current - duration
        executions = [
            execution
            for execution in context.list_executions(Key.from_request(request)) or []
            if execution is not None
            and execution.time is not None
            and cutoff <= execution.time <= current
            and execution.price is not None
            and execution.price != 0
            and execution.size is not None
            and execution.size != 0
        ]
        # Stable sort: executions sharing a timestamp keep their reported order.
        return sorted(executions, key=lambda execution: execution.time)

    def calculate_recent_price(
        self,
        context: BaseContext,
        request: CycleRequest,
        signum: int,
    ) -> Decimal | None:
        lots: deque[tuple[Decimal, Decimal]] = deque()
        for execution in self._list_recent_executions(context, request):
            size = execution.size
            # Offset the oldest opposite lots first; same-signed lots accumulate.
            while lots and size != 0:
                lot_price, lot_size = lots[0]
                if _signum(lot_size) == _signum(size):
                    break
                total = lot_size + size
                if _signum(total) == _signum(lot_size):
                    lots[0] = (lot_price, total)
                    size = ZERO
                else:
                    lots.popleft()
                    size = total
            if size != 0:
                lots.append((execution.price, size))

        if not lots:
            return None

        basis = self.calculate_basis(context, request)
        if basis is None:
            basis = ZERO

        result: Decimal | None = None
        for price, size in lots:
            if _signum(size) != signum:
                continue
            if signum == SIGNUM_BUY:
                adjusted = price * (ONE + basis)
                result = adjusted if result is None else max(result, adjusted)
            elif signum == SIGNUM_SELL:
                adjusted = price * (ONE - basis)
                result = adjusted if result is None else min(result, adjusted)
        return result

    def calculate_buy_loss_ratio(self, context: BaseContext, request: CycleRequest) -> Decimal:
        market = context.get_best_bid_price(Key.from_request(request))
        if market is None:
            return ZERO
        latest = self.calculate_recent_price(context, request, SIGNUM_BUY)
        if latest is None or latest == 0:
            return ZERO
        loss_ratio = divide(max(latest - market, ZERO), latest, ROUND_UP)
        aversion = request.trading_aversion if request.trading_aversion is not None else ONE
        return max(loss_ratio * aversion, ZERO)

    def calculate_sell_loss_ratio(self, context: BaseContext, request: CycleRequest) -> Decimal:
        market = context.get_best_ask_price(Key.from_request(request))
        if market is None:
            return ZERO
        latest = self.calculate_recent_price(context, request, SIGNUM_SELL)
        if latest is None or latest == 0:
            return ZERO
        loss_ratio = divide(max(market - latest, ZERO), latest, ROUND_UP)
        aversion = request.trading_aversion if request.trading_aversion is not None else ONE
        return max(loss_ratio * aversion, ZERO)

    def calculate_buy_basis(
        self,
        context: BaseContext,
        request: CycleRequest,
        base: Decimal | None,
    ) -> Decimal | None:
        if base is None:
            return None
        ratio = self.calculate_position_ratio(context, request)
        if ratio is None:
            ratio = ZERO
        return base * (ONE + max(ratio, ZERO)) + self.calculate_buy_loss_ratio(context, request)

    def calculate_sell_basis(
        self,
        context: BaseContext,
        request: CycleRequest,
        base: Decimal | None,
    ) -> Decimal | None:
        if base is None:
            return None
        ratio = self.calculate_position_ratio(context, request)
        if ratio is None:
            ratio = ZERO
        return base * (ONE + abs(min(ratio, ZERO))) + self.calculate_sell_loss_ratio(context, request)

    @staticmethod
    def _has_resting_order(context: BaseContext, key: Key, signum: int, price: Decimal) -> bool:
        for order in context.list_active_orders(key) or []:
            if order is None or order.quantity is None or order.price is None:
                continue
            if _signum(order.quantity) == signum and order.price == price:
                return True
        return False

    def calculate_buy_boundary_price(self, context: BaseContext, request: CycleRequest) -> Decimal | None:
        key = Key.from_request(request)
        ask0 = context.get_best_ask_price(key)
        if ask0 is None:
            return None
        ask1 = context.round_tick_size(key, ask0 - EPSILON, ROUND_DOWN)
        if ask1 is None:
            return None

        recent = self.calculate_recent_price(context, request, SIGNUM_SELL)
        if recent is None:
            recent = ask0

        bid0 = context.get_best_bid_price(key)
        if bid0 is None:
            bid0 = ask0
        bid1 = bid0
        # Step inside the spread unless the best bid is already our own order.
        if not self._has_resting_order(context, key, SIGNUM_BUY, bid0):
            stepped = context.round_tick_size(key, bid0 + EPSILON, ROUND_UP)
            bid1 = stepped if stepped is not None else bid0

        price = min(ask1, bid1, recent)
        return self.adjustments.buy_boundary(context, request, price)

    def calculate_sell_boundary_price(self, context: BaseContext, request: CycleRequest) -> Decimal | None:
        key = Key.from_request(request)
        bid0 = context.get_best_bid_price(key)
        if bid0 is None:
            return None
        bid1 = context.round_tick_size(key, bid0 + EPSILON, ROUND_UP)
        if bid1 is None:
            return None

        recent = self.calculate_recent_price(context, request, SIGNUM_BUY)
        if recent is None:
            recent = bid0

        ask0 = context.get_best_ask_price(key)
        if ask0 is None:
            ask0 = bid0
        ask1 = ask0
        if not self._has_resting_order(context, key, SIGNUM_SELL, ask0):
            stepped = context.round_tick_size(key, ask0 - EPSILON, ROUND_DOWN)
            ask1 = stepped if stepped is not None else ask0

        price = max(bid1, ask1, recent)
        return self.adjustments.sell_boundary(context, request, price)

    def calculate_buy_limit_price(
        self,
        context: BaseContext,
        request: CycleRequest,
        weighed_price: Decimal | None,
        basis: Decimal | None,
    ) -> Decimal | None:
        if weighed_price is None or basis is None:
            LOGGER.debug("buy_price_unavailable weighed=%s basis=%s", weighed_price, basis)
            return None
        bound = self.calculate_buy_boundary_price(context, request)
        if bound is None:
            LOGGER.debug("buy_price_unavailable reason=no_bound")
            return None
        basis_price = weighed_price * (ONE - basis)
        target = min(basis_price, bound)
        rounded = context.round_tick_size(Key.from_request(request), target, ROUND_DOWN)
        LOGGER.debug("buy_price=%s target=%s basis_price=%s", rounded, target, basis_price)
        return rounded

    def calculate_sell_limit_price(
        self,
        context: BaseContext,
        request: CycleRequest,
        weighed_price: Decimal | None,
        basis: Decimal | None,
    ) -> Decimal | None:
        if weighed_price is None or basis is None:
            LOGGER.debug("sell_price_unavailable weighed=%s basis=%s", weighed_price, basis)
            return None
        bound = self.calculate_sell_boundary_price(context, request)
        if bound is None:
            LOGGER.debug("sell_price_unavailable reason=no_bound")
            return None
        basis_price = weighed_price * (ONE + basis)
        target = max(basis_price, bound)
        rounded = context.round_tick_size(Key.from_request(request), target, ROUND_UP)
        LOGGER.debug("sell_price=%s target=%s basis_price=%s", rounded, target, basis_price)
        return rounded

    def calculate_funding_exposure_size(
        self,
        context: BaseContext,
        request: CycleRequest,
        price: Decimal | None,
    ) -> Decimal:
        if price is None or price == 0:
            return ZERO
        funding = context.get_funding_position(Key.from_request(request))
        if funding is None:
            return ZERO
        offset = request.funding_offset if request.funding_offset is not None else ZERO
        product = divide(funding * (ONE + offset), price)
        exposure = request.trading_exposure if request.trading_exposure is not None else ZERO
        return product * exposure

    def calculate_instrument_exposure_size(self, context: BaseContext, request: CycleRequest) -> Decimal:
        position = context.get_instrument_position(Key.from_request(request))
        if position is None:
            return ZERO
        exposure = request.trading_exposure if request.trading_exposure is not None else ZERO
        return position * exposure

    def calculate_buy_limit_size(
        self,
        context: BaseContext,
        request: CycleRequest,
        price: Decimal | None,
    ) -> Decimal:
        key = Key.from_request(request)
        funding_size = self.calculate_funding_exposure_size(context, request, price)
        instrument_size = self.calculate_instrument_exposure_size(context, request)
        if context.is_marginable(key) is True:
            size = max(funding_size - instrument_size, ZERO) * HALF
        else:
            excess = max(instrument_size - funding_size, ZERO) * HALF
            size = max(funding_size - excess, ZERO)
        rounded = context.round_lot_size(key, size, ROUND_HALF_UP)
        LOGGER.debug("buy_size=%s funding=%s instrument=%s", rounded, funding_size, instrument_size)
        return self.adjustments.buy_size(context, request, rounded if rounded is not None else ZERO)

    def calculate_sell_limit_size(
        self,
        context: BaseContext,
        request: CycleRequest,
        price: Decimal | None,
    ) -> Decimal:
        key = Key.from_request(request)
        funding_size = self.calculate_funding_exposure_size(context, request, price)
        instrument_size = self.calculate_instrument_exposure_size(context, request)
        if context.is_marginable(key) is True:
            size = max(funding_size + instrument_size, ZERO) * HALF
        else:
            excess = max(funding_size - instrument_size, ZERO) * HALF
            size = max(instrument_size - excess, ZERO)
        rounded = context.round_lot_size(key, size, ROUND_HALF_UP)
        LOGGER.debug("sell_size=%s funding=%s instrument=%s", rounded, funding_size, instrument_size)
        return self.adjustments.sell_size(context, request, rounded if rounded is not None else ZERO)
