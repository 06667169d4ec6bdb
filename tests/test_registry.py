"""
Tests for policy dispatch and the action log.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from spendguard.domain.schema import (
    ActionKind,
    AgentConfig,
    AgentContext,
    AgentType,
    DecisionAction,
    Product,
    SpendingLimits,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies import registry

AGENT = AgentConfig(
    id="shopping-agent",
    name="Shopper",
    type=AgentType.SHOPPING,
    spending_limits=SpendingLimits(
        per_transaction=Decimal("100"), daily=Decimal("300"), auto_approve_threshold=Decimal("25"),
    ),
)
PRODUCT = Product(id="prod-1", name="Milo 1.5kg", category="Groceries",
                  merchant_id="fairprice", price=Decimal("14.95"), rating=4.8)


class TestRegistry:

    def test_every_agent_type_has_a_policy(self):
        assert set(registry.POLICIES) == set(AgentType)

    def test_evaluate_for_dispatches_by_type(self):
        context = AgentContext(balance=Decimal("500"), current_time=0)
        decision = registry.evaluate_for(AgentType.SHOPPING, PRODUCT, context, AGENT)
        assert decision.action == DecisionAction.APPROVE

    def test_wrong_item_model(self):
        context = AgentContext(balance=Decimal("500"), current_time=0)
        with pytest.raises(TypeError):
            registry.evaluate_for(AgentType.BILLPAY, PRODUCT, context, AGENT)


class TestActionLog:

    def setup_method(self):
        self.log = ActionLog()

    def test_append_and_filter(self):
        self.log.append("a", ActionKind.EVALUATE, "looking", timestamp=1)
        self.log.append("b", ActionKind.DECIDE, "decided", data={"risk_level": 1}, timestamp=2)
        assert len(self.log) == 2
        assert [e.description for e in self.log.for_agent("b")] == ["decided"]
        assert [e.agent_id for e in self.log.of_type(ActionKind.EVALUATE)] == ["a"]

    def test_logs_are_independent(self):
        other = ActionLog()
        self.log.append("a", ActionKind.WAIT, "waiting")
        assert len(other) == 0

    def test_entries_is_a_snapshot(self):
        self.log.append("a", ActionKind.WAIT, "waiting")
        snapshot = self.log.entries()
        self.log.clear()
        assert len(snapshot) == 1
        assert len(self.log) == 0
