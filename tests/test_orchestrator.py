"""
Tests for the headless scenario runner.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from spendguard.domain.schema import (
    ApprovalRequest,
    ApprovalType,
    DecisionNode,
    EngineState,
    NodeType,
)
from spendguard.orchestrator import ApprovalRule, run_scenario


def _request(risk_level: int) -> ApprovalRequest:
    return ApprovalRequest(
        agent_id="shopping-agent",
        type=ApprovalType.TRANSACTION,
        amount=Decimal("59.90"),
        description="Purchase: USB-C Hub",
        reasoning="test",
        risk_level=risk_level,
        decision_tree=DecisionNode(id="root", type=NodeType.CONDITION, label="Purchase"),
    )


class TestApprovalRule:

    def test_all_and_none(self):
        assert ApprovalRule.ALL.grants(_request(5)) is True
        assert ApprovalRule.NONE.grants(_request(0)) is False

    def test_low_risk(self):
        assert ApprovalRule.LOW_RISK.grants(_request(2)) is True
        assert ApprovalRule.LOW_RISK.grants(_request(3)) is False

    def test_parsed_from_cli_value(self):
        assert ApprovalRule("low-risk") is ApprovalRule.LOW_RISK


class TestRunScenario:

    def test_unknown_scenario(self):
        with pytest.raises(ValueError):
            asyncio.run(run_scenario("no-such-scenario"))

    def test_shopping_scenario_runs_to_completion(self):
        engine = asyncio.run(run_scenario("shopping-basics", speed=10, rule=ApprovalRule.NONE))
        assert engine.state == EngineState.COMPLETED
        assert engine.event_queue.get_stats()["pending"] == 0
        assert engine.wallet.verify_chain()[0] is True
        assert engine.wallet.balance <= Decimal("500")
        assert engine.wallet.reserved_amount == Decimal("0")
