from __future__ import annotations

from pathlib import Path
import sys
import unittest
from unittest.mock import Mock

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from quoting_bot.agent import AgentDispatcher
from quoting_bot.models import CancelInstruction, CreateInstruction
from quoting_bot.venues import BaseVenue
from tests.helpers import D, SITE, build_context, build_request, test_properties


class AgentDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.context = build_context()
        self.handler = Mock(spec=BaseVenue)
        self.create = CreateInstruction(price=D("99"), size=D("1"))
        self.cancel = CancelInstruction(order_id="o1")

    def agent(self, active: bool = True) -> AgentDispatcher:
        return AgentDispatcher(test_properties(trading_active=active), {SITE: self.handler})

    def test_manage_delegates_to_site_handler(self) -> None:
        self.handler.manage.return_value = {self.create: "id-1"}
        request = build_request()
        results = self.agent().manage(self.context, request, [self.create])
        self.assertEqual(results, {self.create: "id-1"})
        self.handler.manage.assert_called_once_with(self.context, request, [self.create])

    def test_reconcile_delegates_to_site_handler(self) -> None:
        self.handler.reconcile.return_value = {self.create: True}
        request = build_request()
        results = self.agent().reconcile(self.context, request, {self.create: "id-1"})
        self.assertEqual(results, {self.create: True})
        self.handler.reconcile.assert_called_once_with(self.context, request, {self.create: "id-1"})

    def test_invalid_request_skips_handler(self) -> None:
        agent = self.agent()
        for request in (None, build_request(site=None), build_request(site=" "), build_request(instrument="")):
            self.assertEqual(agent.manage(self.context, request, [self.create]), {})
            self.assertEqual(agent.reconcile(self.context, request, {self.create: "id-1"}), {})
        self.handler.manage.assert_not_called()
        self.handler.reconcile.assert_not_called()

    def test_unknown_site(self) -> None:
        agent = self.agent()
        request = build_request(site="elsewhere")
        self.assertEqual(agent.manage(self.context, request, [self.create]), {})
        self.assertEqual(agent.reconcile(self.context, request, {}), {})
        self.handler.manage.assert_not_called()

    def test_inactive_trading_gates_manage_only(self) -> None:
        self.handler.reconcile.return_value = {self.cancel: False}
        agent = self.agent(active=False)
        request = build_request()
        self.assertEqual(agent.manage(self.context, request, [self.cancel]), {})
        self.handler.manage.assert_not_called()
        self.assertEqual(agent.reconcile(self.context, request, {self.cancel: "o1"}), {self.cancel: False})
        self.handler.reconcile.assert_called_once()

    def test_absent_collections_and_results(self) -> None:
        self.handler.manage.return_value = None
        self.handler.reconcile.return_value = None
        agent = self.agent()
        request = build_request()
        self.assertEqual(agent.manage(self.context, request, None), {})
        self.handler.manage.assert_called_once_with(self.context, request, [])
        self.assertEqual(agent.reconcile(self.context, request, None), {})
        self.handler.reconcile.assert_called_once_with(self.context, request, {})


if __name__ == "__main__":
    unittest.main()
