from __future__ import annotations

from datetime import timedelta
from pathlib import Path
import sys
import unittest
from unittest.mock import Mock

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from quoting_bot.agent import AgentDispatcher
from quoting_bot.config import TradingProperties
from quoting_bot.estimator import BaseEstimator, MidEstimator
from quoting_bot.instructor import Instructor
from quoting_bot.models import Advice, CreateInstruction, Estimation
from quoting_bot.pipeline import Pipeline
from quoting_bot.quote_engine import QuoteEngine
from quoting_bot.venues import TemplateVenue
from tests.helpers import D, INSTRUMENT, KEY, NOW, SITE, build_context, test_properties

PROPERTY_VALUES = {
    "now": NOW,
    "trading_spread": D("2"),
    "trading_spread_ask": D("7"),
    "trading_spread_bid": D("8"),
    "trading_sigma": D("9"),
    "trading_samples": 10,
    "trading_exposure": D("3"),
    "trading_aversion": D("6"),
    "trading_split": 4,
    "trading_duration": timedelta(0),
    "funding_offset": D("5"),
    "funding_multiplier_products": {},
    "funding_positive_multiplier": D("11"),
    "funding_negative_multiplier": D("12"),
    "hedge_products": {},
}


def _mock_properties(**overrides) -> Mock:
    properties = Mock(spec=TradingProperties)
    values = dict(PROPERTY_VALUES)
    values.update(overrides)
    for name, value in values.items():
        getattr(properties, name).return_value = value
    return properties


def _mock_pipeline(properties: Mock) -> Pipeline:
    return Pipeline(
        properties=properties,
        context=Mock(),
        estimator=Mock(spec=BaseEstimator),
        engine=Mock(spec=QuoteEngine),
        instructor=Mock(spec=Instructor),
        agent=Mock(spec=AgentDispatcher),
    )


class CreateRequestTests(unittest.TestCase):
    def test_request_copies_configuration(self) -> None:
        pipeline = _mock_pipeline(_mock_properties())
        target = NOW + timedelta(milliseconds=5)
        request = pipeline.create_request(target, "test", "i")
        self.assertIsNotNone(request)
        self.assertEqual(request.site, "test")
        self.assertEqual(request.instrument, "i")
        self.assertEqual(request.current_time, NOW)
        self.assertEqual(request.target_time, target)
        self.assertEqual(request.trading_spread, D("2"))
        self.assertEqual(request.trading_spread_ask, D("7"))
        self.assertEqual(request.trading_spread_bid, D("8"))
        self.assertEqual(request.trading_exposure, D("3"))
        self.assertEqual(request.trading_aversion, D("6"))
        self.assertEqual(request.trading_sigma, D("9"))
        self.assertEqual(request.trading_samples, 10)
        self.assertEqual(request.trading_split, 4)
        self.assertEqual(request.trading_duration, timedelta(0))
        self.assertEqual(request.funding_offset, D("5"))
        self.assertEqual(dict(request.funding_multiplier_products), {})
        self.assertEqual(request.funding_positive_multiplier, D("11"))
        self.assertEqual(request.funding_negative_multiplier, D("12"))
        self.assertEqual(dict(request.hedge_products), {})

    def test_absent_arguments(self) -> None:
        pipeline = _mock_pipeline(_mock_properties())
        self.assertIsNone(pipeline.create_request(None, "test", "i"))
        self.assertIsNone(pipeline.create_request(NOW, None, "i"))
        self.assertIsNone(pipeline.create_request(NOW, "test", None))

    def test_any_unconfigured_value_aborts(self) -> None:
        for name in PROPERTY_VALUES:
            pipeline = _mock_pipeline(_mock_properties(**{name: None}))
            self.assertIsNone(pipeline.create_request(NOW, "test", "i"), name)

    def test_request_is_immutable(self) -> None:
        pipeline = _mock_pipeline(_mock_properties(hedge_products={"FX": "BTC"}))
        request = pipeline.create_request(NOW, "test", "i")
        with self.assertRaises(AttributeError):
            request.trading_spread = D("1")  # type: ignore[misc]
        with self.assertRaises(TypeError):
            request.hedge_products["FX"] = "ETH"  # type: ignore[index]


class ProcessTests(unittest.TestCase):
    def test_stages_run_in_order(self) -> None:
        pipeline = _mock_pipeline(_mock_properties())
        calls: list[str] = []
        estimation = Estimation(price=D("100"), confidence=D("1"))
        advice = Advice()
        instructions = [CreateInstruction(price=D("99"), size=D("1"))]
        managed = {instructions[0]: "id-1"}
        reconciled = {instructions[0]: True}

        def _stage(name, value):
            def _call(*args):
                calls.append(name)
                return value

            return _call

        pipeline.estimator.estimate.side_effect = _stage("estimate", estimation)
        pipeline.engine.advise.side_effect = _stage("advise", advice)
        pipeline.instructor.instruct.side_effect = _stage("instruct", instructions)
        pipeline.agent.manage.side_effect = _stage("manage", managed)
        pipeline.agent.reconcile.side_effect = _stage("reconcile", reconciled)

        pipeline.process(NOW, SITE, INSTRUMENT)

        self.assertEqual(calls, ["estimate", "advise", "instruct", "manage", "reconcile"])
        request = pipeline.estimator.estimate.call_args.args[1]
        context = pipeline.context
        pipeline.engine.advise.assert_called_once_with(context, request, estimation)
        pipeline.instructor.instruct.assert_called_once_with(context, request, advice)
        pipeline.agent.manage.assert_called_once_with(context, request, instructions)
        pipeline.agent.reconcile.assert_called_once_with(context, request, managed)

    def test_no_request_runs_no_stage(self) -> None:
        pipeline = _mock_pipeline(_mock_properties())
        pipeline.process(None, None, None)
        pipeline.estimator.estimate.assert_not_called()
        pipeline.engine.advise.assert_not_called()
        pipeline.instructor.instruct.assert_not_called()
        pipeline.agent.manage.assert_not_called()
        pipeline.agent.reconcile.assert_not_called()

    def test_unconfigured_pair_runs_no_stage(self) -> None:
        pipeline = _mock_pipeline(_mock_properties(trading_spread=None))
        pipeline.process(NOW, SITE, INSTRUMENT)
        pipeline.estimator.estimate.assert_not_called()
        pipeline.agent.manage.assert_not_called()


class EndToEndTests(unittest.TestCase):
    def build(self, active: bool) -> tuple[Pipeline, object]:
        properties = test_properties(
            trading_active=active,
            trading_targets=((SITE, INSTRUMENT),),
            trading_spread=D("0.008"),
            trading_exposure=D("0.1"),
            trading_split=2,
            trading_duration_seconds=3600,
        )
        context = build_context()
        pipeline = Pipeline(
            properties=properties,
            context=context,
            estimator=MidEstimator(),
            engine=QuoteEngine(),
            instructor=Instructor(),
            agent=AgentDispatcher(properties, {SITE: TemplateVenue(SITE)}),
        )
        return pipeline, context

    def test_active_cycle_places_split_quotes(self) -> None:
        pipeline, context = self.build(active=True)
        pipeline.process(NOW, SITE, INSTRUMENT)
        orders = context.list_active_orders(KEY)
        buys = sorted(order.quantity for order in orders if order.is_buy)
        sells = sorted(order.quantity for order in orders if order.is_sell)
        self.assertEqual(len(buys), 2)
        self.assertEqual(len(sells), 2)
        self.assertTrue(all(order.price < D("102") for order in orders if order.is_buy))
        self.assertTrue(all(order.price > D("100") for order in orders if order.is_sell))

    def test_second_cycle_keeps_matching_orders(self) -> None:
        pipeline, context = self.build(active=True)
        pipeline.process(NOW, SITE, INSTRUMENT)
        first = {order.order_id for order in context.list_active_orders(KEY)}
        pipeline.process(NOW, SITE, INSTRUMENT)
        second = {order.order_id for order in context.list_active_orders(KEY)}
        self.assertEqual(first, second)

    def test_inactive_cycle_places_nothing(self) -> None:
        pipeline, context = self.build(active=False)
        pipeline.process(NOW, SITE, INSTRUMENT)
        self.assertEqual(context.list_active_orders(KEY), [])


if __name__ == "__main__":
    unittest.main()
