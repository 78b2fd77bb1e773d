from __future__ import annotations

import logging
from typing import Mapping, Sequence

from quoting_bot.context import BaseContext
from quoting_bot.models import CancelInstruction, CreateInstruction, CycleRequest, Instruction, Key

LOGGER = logging.getLogger("quoting_bot")


class BaseVenue:
    def manage(
        self,
        context: BaseContext,
        request: CycleRequest,
        instructions: Sequence[Instruction],
    ) -> dict[Instruction, str]:
        raise NotImplementedError

    def reconcile(
        self,
        context: BaseContext,
        request: CycleRequest,
        instructions: Mapping[Instruction, str],
    ) -> dict[Instruction, bool]:
        raise NotImplementedError


class TemplateVenue(BaseVenue):
    """Places and cancels through the context's order primitives."""

    def __init__(self, site: str) -> None:
        self.site = site

    def manage(
        self,
        context: BaseContext,
        request: CycleRequest,
        instructions: Sequence[Instruction],
    ) -> dict[Instruction, str]:
        key = Key.from_request(request)
        cancels = [i for i in instructions if isinstance(i, CancelInstruction)]
        creates = [i for i in instructions if isinstance(i, CreateInstruction)]
        results: dict[Instruction, str] = {}
        # Cancel first so the venue never holds both the old and the new quote.
        if cancels:
            results.update(context.cancel_orders(key, cancels) or {})
        if creates:
            results.update(context.create_orders(key, creates) or {})
        LOGGER.debug(
            "venue_manage site=%s key=%s cancels=%s creates=%s accepted=%s",
            self.site,
            key,
            len(cancels),
            len(creates),
            len(results),
        )
        return results

    def reconcile(
        self,
        context: BaseContext,
        request: CycleRequest,
        instructions: Mapping[Instruction, str],
    ) -> dict[Instruction, bool]:
        key = Key.from_request(request)
        results: dict[Instruction, bool] = {}
        for instruction, order_id in instructions.items():
            order = context.find_order(key, order_id)
            if isinstance(instruction, CancelInstruction):
                results[instruction] = order is None
            else:
                results[instruction] = order is not None
        return results
