from __future__ import annotations

from decimal import Decimal

from quoting_bot.config import TradingProperties
from quoting_bot.context import BaseContext
from quoting_bot.models import CycleRequest, Estimation, Key
from quoting_bot.pricing import ONE


class BaseEstimator:
    def estimate(self, context: BaseContext, request: CycleRequest) -> Estimation:
        raise NotImplementedError


class MidEstimator(BaseEstimator):
    """
    Fair price = current mid. Useful as a neutral baseline and for paper runs.
    Confidence is resolved per pair from the properties; full confidence without them.
    """

    def __init__(self, properties: TradingProperties | None = None) -> None:
        self.properties = properties

    def _confidence(self, request: CycleRequest) -> Decimal | None:
        if self.properties is None:
            return ONE
        return self.properties.estimation_confidence(str(request.site), str(request.instrument))

    def estimate(self, context: BaseContext, request: CycleRequest) -> Estimation:
        mid = context.get_mid_price(Key.from_request(request))
        if mid is None:
            return Estimation(price=None, confidence=None)
        return Estimation(price=mid, confidence=self._confidence(request))
