from __future__ import annotations

import logging
from typing import Mapping, Sequence

from quoting_bot.config import TradingProperties
from quoting_bot.context import BaseContext
from quoting_bot.models import CycleRequest, Instruction
from quoting_bot.venues import BaseVenue

LOGGER = logging.getLogger("quoting_bot")


class AgentDispatcher:
    """Routes manage/reconcile to the venue handler registered for the request's site."""

    def __init__(self, properties: TradingProperties, handlers: Mapping[str, BaseVenue]) -> None:
        self.properties = properties
        self.handlers = dict(handlers)

    def _handler_for(self, request: CycleRequest | None) -> BaseVenue | None:
        if CycleRequest.is_invalid(request):
            LOGGER.debug("agent_skip reason=invalid_request request=%s", request)
            return None
        handler = self.handlers.get(request.site)
        if handler is None:
            LOGGER.debug("agent_skip reason=no_handler site=%s", request.site)
        return handler

    def manage(
        self,
        context: BaseContext,
        request: CycleRequest | None,
        instructions: Sequence[Instruction] | None,
    ) -> dict[Instruction, str]:
        handler = self._handler_for(request)
        if handler is None:
            return {}
        values = list(instructions or [])
        if not self.properties.trading_active():
            LOGGER.debug("agent_manage_skip reason=trading_inactive instructions=%s", len(values))
            return {}
        results = handler.manage(context, request, values) or {}
        LOGGER.debug("agent_managed site=%s instrument=%s count=%s", request.site, request.instrument, len(results))
        for instruction, order_id in results.items():
            LOGGER.debug("agent_managed id=%s instruction=%s", order_id, instruction)
        return dict(results)

    def reconcile(
        self,
        context: BaseContext,
        request: CycleRequest | None,
        instructions: Mapping[Instruction, str] | None,
    ) -> dict[Instruction, bool]:
        # Not gated by trading_active: resting orders must stay truthful while paused.
        handler = self._handler_for(request)
        if handler is None:
            return {}
        results = handler.reconcile(context, request, dict(instructions or {})) or {}
        LOGGER.debug("agent_reconciled site=%s instrument=%s count=%s", request.site, request.instrument, len(results))
        for instruction, done in results.items():
            LOGGER.debug("agent_reconciled done=%s instruction=%s", done, instruction)
        return dict(results)
