from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
import logging

from quoting_bot.context import BaseContext
from quoting_bot.models import (
    ActiveOrder,
    Advice,
    CancelInstruction,
    CreateInstruction,
    CycleRequest,
    Instruction,
    Key,
)
from quoting_bot.pricing import SIGNUM_BUY, SIGNUM_SELL, ZERO

LOGGER = logging.getLogger("quoting_bot")


class Instructor:
    """Turns an advice into cancel/create instructions against the resting orders."""

    def instruct(
        self,
        context: BaseContext,
        request: CycleRequest,
        advice: Advice | None,
    ) -> list[Instruction]:
        if CycleRequest.is_invalid(request) or advice is None:
            return []
        key = Key.from_request(request)
        active = [
            order
            for order in context.list_active_orders(key) or []
            if order is not None and order.price is not None and order.quantity is not None
        ]

        cancels: list[Instruction] = []
        creates: list[Instruction] = []
        sides = (
            (SIGNUM_BUY, advice.buy_limit_price, advice.buy_limit_size),
            (SIGNUM_SELL, advice.sell_limit_price, advice.sell_limit_size),
        )
        for signum, price, size in sides:
            if price is None or size is None:
                # No opinion on this side; leave its orders alone.
                continue
            resting = [order for order in active if self._side_of(order) == signum]
            wanted = self.split_size(context, key, size, request.trading_split)
            for order in resting:
                quantity = abs(order.quantity)
                if order.price == price and quantity in wanted:
                    wanted.remove(quantity)
                else:
                    cancels.append(CancelInstruction(order_id=order.order_id))
            creates.extend(CreateInstruction(price=price, size=quantity * signum) for quantity in wanted)

        instructions = cancels + creates
        LOGGER.debug(
            "instruct site=%s instrument=%s cancels=%s creates=%s",
            request.site,
            request.instrument,
            len(cancels),
            len(creates),
        )
        return instructions

    @staticmethod
    def _side_of(order: ActiveOrder) -> int:
        if order.is_buy:
            return SIGNUM_BUY
        if order.is_sell:
            return SIGNUM_SELL
        return 0

    @staticmethod
    def split_size(context: BaseContext, key: Key, size: Decimal, split: int | None) -> list[Decimal]:
        if size <= 0:
            return []
        count = max(1, split or 1)
        piece = context.round_lot_size(key, size / count, ROUND_DOWN)
        if piece is None or piece <= 0:
            return [size]
        pieces = [piece] * count
        remainder = size - piece * count
        if remainder > ZERO:
            pieces[0] = piece + remainder
        return pieces
