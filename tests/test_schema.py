"""
Tests for the SpendGuard schema models.

Validates:
- Default mandate bundle values
- Agent configuration overrides and guardrail isolation
- Decision immutability and explanation-tree navigation
- Content model constraints
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from spendguard.domain.schema import (
    DEFAULT_MANDATES,
    AgentConfig,
    AgentConfigOverrides,
    AgentType,
    Decision,
    DecisionAction,
    DecisionNode,
    NodeResult,
    NodeType,
    PaymentMethod,
    RiskSettings,
    SpendingLimits,
    Subscription,
    SubscriptionAlternative,
    new_id,
)
from spendguard.domain.scenarios import get_scenario, sample_scenarios


def _limits(per_tx="100", daily="300", auto="25") -> SpendingLimits:
    return SpendingLimits(
        per_transaction=Decimal(per_tx),
        daily=Decimal(daily),
        auto_approve_threshold=Decimal(auto),
    )


class TestDefaultMandates:
    """The built-in guardrail bundle."""

    def test_values(self):
        assert DEFAULT_MANDATES.confirmation_threshold.value == Decimal("50")
        assert DEFAULT_MANDATES.max_transactions_per_hour.value == 5
        assert DEFAULT_MANDATES.transaction_cooldown_seconds.value == 60
        assert DEFAULT_MANDATES.require_verification_for_new_merchants.value is True

    def test_blocked_categories(self):
        blocked = DEFAULT_MANDATES.blocked_categories.value
        assert "Gambling" in blocked
        assert "Job Scams" in blocked
        assert len(blocked) == 6

    def test_grabpay_not_allowed(self):
        allowed = DEFAULT_MANDATES.allowed_payment_methods.value
        assert PaymentMethod.PAYNOW in allowed
        assert PaymentMethod.GRABPAY not in allowed

    def test_every_mandate_names_its_risk(self):
        for name in type(DEFAULT_MANDATES).model_fields:
            constraint = getattr(DEFAULT_MANDATES, name)
            assert constraint.risk_mitigated, f"{name} should state the risk it mitigates"


class TestAgentConfig:

    def test_guardrails_are_copied_per_agent(self):
        a = AgentConfig(id="a", name="A", type=AgentType.SHOPPING, spending_limits=_limits())
        b = AgentConfig(id="b", name="B", type=AgentType.SHOPPING, spending_limits=_limits())
        a.guardrails.blocked_categories.value.append("Electronics")
        assert "Electronics" not in b.guardrails.blocked_categories.value
        assert "Electronics" not in DEFAULT_MANDATES.blocked_categories.value

    def test_with_overrides_applies_only_given_fields(self):
        agent = AgentConfig(
            id="a", name="A", type=AgentType.SHOPPING,
            spending_limits=_limits(), blocked_merchants=["shady"],
        )
        updated = agent.with_overrides(AgentConfigOverrides(
            spending_limits=_limits(per_tx="50"),
            risk_settings=RiskSettings(max_risk_level=3, require_approval_above=2),
        ))
        assert updated.spending_limits.per_transaction == Decimal("50")
        assert updated.risk_settings.require_approval_above == 2
        assert updated.blocked_merchants == ["shady"]
        assert agent.spending_limits.per_transaction == Decimal("100")

    def test_per_transaction_must_be_positive(self):
        with pytest.raises(ValidationError):
            _limits(per_tx="0")

    def test_risk_settings_bounds(self):
        with pytest.raises(ValidationError):
            RiskSettings(max_risk_level=6)


class TestDecision:

    def _tree(self) -> DecisionNode:
        leaf = DecisionNode(id="outcome", type=NodeType.OUTCOME, label="Reject", result=NodeResult.FAIL)
        check = DecisionNode(
            id="stock_check", type=NodeType.CONDITION, label="In Stock?",
            result=NodeResult.FAIL, children=[leaf],
        )
        return DecisionNode(id="root", type=NodeType.CONDITION, label="Purchase", children=[check])

    def test_requires_approval_follows_action(self):
        tree = self._tree()
        pending = Decision(
            action=DecisionAction.REQUEST_APPROVAL, reason="r", risk_level=3, decision_tree=tree
        )
        approved = Decision(action=DecisionAction.APPROVE, reason="r", risk_level=1, decision_tree=tree)
        assert pending.requires_approval is True
        assert approved.requires_approval is False

    def test_decision_is_frozen(self):
        decision = Decision(
            action=DecisionAction.REJECT, reason="r", risk_level=0, decision_tree=self._tree()
        )
        with pytest.raises(ValidationError):
            decision.action = DecisionAction.APPROVE

    def test_risk_level_bounds(self):
        with pytest.raises(ValidationError):
            Decision(action=DecisionAction.REJECT, reason="r", risk_level=6, decision_tree=self._tree())

    def test_find_and_walk(self):
        tree = self._tree()
        assert tree.find("stock_check").label == "In Stock?"
        assert tree.find("missing") is None
        assert [node.id for node in tree.walk()] == ["root", "stock_check", "outcome"]


class TestContentModels:

    def test_best_alternative_first_wins_ties(self):
        sub = Subscription(
            id="s", name="Plan", monthly_amount=Decimal("10"), category="Entertainment",
            usage_score=0.1, renewal_date=0,
            alternatives=[
                SubscriptionAlternative(id="x", name="X", monthly_amount=Decimal("2"), savings=Decimal("8")),
                SubscriptionAlternative(id="y", name="Y", monthly_amount=Decimal("2"), savings=Decimal("8")),
                SubscriptionAlternative(id="z", name="Z", monthly_amount=Decimal("5"), savings=Decimal("5")),
            ],
        )
        assert sub.best_alternative.id == "x"

    def test_usage_score_bounds(self):
        with pytest.raises(ValidationError):
            Subscription(
                id="s", name="Plan", monthly_amount=Decimal("10"), category="c",
                usage_score=1.5, renewal_date=0,
            )

    def test_new_id_prefix(self):
        first, second = new_id("evt"), new_id("evt")
        assert first.startswith("evt_")
        assert first != second


class TestSampleScenarios:

    def test_catalogue(self):
        ids = [scenario.id for scenario in sample_scenarios(0)]
        assert ids == ["shopping-basics", "subscription-manager", "bill-pay", "investment-basics"]

    def test_dates_are_anchored(self):
        scenario = get_scenario("bill-pay", 1_000_000)
        assert all(bill.due_date > 1_000_000 for bill in scenario.bills)

    def test_unknown_scenario(self):
        assert get_scenario("nope", 0) is None
