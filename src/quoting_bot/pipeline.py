from __future__ import annotations

from datetime import datetime
import logging

from quoting_bot.agent import AgentDispatcher
from quoting_bot.config import TradingProperties
from quoting_bot.context import BaseContext
from quoting_bot.estimator import BaseEstimator
from quoting_bot.instructor import Instructor
from quoting_bot.models import CycleRequest
from quoting_bot.quote_engine import QuoteEngine

LOGGER = logging.getLogger("quoting_bot")


class Pipeline:
    def __init__(
        self,
        properties: TradingProperties,
        context: BaseContext,
        estimator: BaseEstimator,
        engine: QuoteEngine,
        instructor: Instructor,
        agent: AgentDispatcher,
    ) -> None:
        self.properties = properties
        self.context = context
        self.estimator = estimator
        self.engine = engine
        self.instructor = instructor
        self.agent = agent

    def create_request(
        self,
        time: datetime | None,
        site: str | None,
        instrument: str | None,
    ) -> CycleRequest | None:
        if time is None or site is None or instrument is None:
            return None

        p = self.properties
        values = {
            "current_time": p.now(),
            "trading_spread": p.trading_spread(site, instrument),
            "trading_spread_ask": p.trading_spread_ask(site, instrument),
            "trading_spread_bid": p.trading_spread_bid(site, instrument),
            "trading_exposure": p.trading_exposure(site, instrument),
            "trading_aversion": p.trading_aversion(site, instrument),
            "trading_split": p.trading_split(site, instrument),
            "trading_sigma": p.trading_sigma(site, instrument),
            "trading_samples": p.trading_samples(site, instrument),
            "trading_duration": p.trading_duration(site, instrument),
            "funding_offset": p.funding_offset(site, instrument),
            "funding_positive_multiplier": p.funding_positive_multiplier(site, instrument),
            "funding_negative_multiplier": p.funding_negative_multiplier(site, instrument),
            "funding_multiplier_products": p.funding_multiplier_products(site, instrument),
            "hedge_products": p.hedge_products(site, instrument),
        }
        missing = sorted(name for name, value in values.items() if value is None)
        if missing:
            LOGGER.debug("request_skip site=%s instrument=%s missing=%s", site, instrument, ",".join(missing))
            return None

        return CycleRequest(site=site, instrument=instrument, target_time=time, **values)

    def process(self, time: datetime | None, site: str | None, instrument: str | None) -> None:
        request = self.create_request(time, site, instrument)
        if request is None:
            return

        estimation = self.estimator.estimate(self.context, request)
        advice = self.engine.advise(self.context, request, estimation)
        instructions = self.instructor.instruct(self.context, request, advice)
        managed = self.agent.manage(self.context, request, instructions)
        reconciled = self.agent.reconcile(self.context, request, managed)
        LOGGER.info(
            "pipeline site=%s instrument=%s target=%s estimate=%s buy=%s@%s sell=%s@%s instructions=%s managed=%s reconciled=%s",
            site,
            instrument,
            time.isoformat(),
            estimation.price if estimation is not None else None,
            advice.buy_limit_size,
            advice.buy_limit_price,
            advice.sell_limit_size,
            advice.sell_limit_price,
            len(instructions or []),
            len(managed or {}),
            sum(1 for done in (reconciled or {}).values() if done),
        )
