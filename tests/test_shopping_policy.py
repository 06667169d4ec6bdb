"""
Tests for the Shopping Policy.

Validates:
- The end-to-end purchase cases (approve / escalate / reject)
- The auto-approve boundary
- Risk tiers and increments
- Explanation trees that follow the branch actually taken
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from spendguard.domain.schema import (
    ActionKind,
    AgentConfig,
    AgentContext,
    AgentType,
    ApprovalType,
    DecisionAction,
    NodeResult,
    Product,
    SpendingLimits,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies import shopping
from spendguard.policies.base import PolicyPreconditionError, risk_tier


def _agent(**overrides) -> AgentConfig:
    fields = dict(
        id="shopping-agent",
        name="Shopper",
        type=AgentType.SHOPPING,
        spending_limits=SpendingLimits(
            per_transaction=Decimal("100"),
            daily=Decimal("300"),
            auto_approve_threshold=Decimal("25"),
        ),
    )
    fields.update(overrides)
    return AgentConfig(**fields)


def _product(price, **overrides) -> Product:
    fields = dict(
        id="prod-1", name="Milo 1.5kg", category="Groceries",
        merchant_id="fairprice", price=Decimal(str(price)), rating=4.5,
    )
    fields.update(overrides)
    return Product(**fields)


def _context(balance="500", spent="0", limit="500") -> AgentContext:
    return AgentContext(
        balance=Decimal(balance), daily_spent=Decimal(spent),
        daily_limit=Decimal(limit), current_time=1_000,
    )


class TestShoppingEvaluate:

    def setup_method(self):
        self.agent = _agent()
        self.context = _context()

    def test_small_purchase_auto_approved(self):
        decision = shopping.evaluate(_product(15), self.context, self.agent)
        assert decision.action == DecisionAction.APPROVE
        assert decision.risk_level <= 2
        assert decision.amount == Decimal("15")
        assert decision.reason.startswith("Auto-approved")

    def test_mid_price_requests_approval(self):
        decision = shopping.evaluate(_product(75), self.context, self.agent)
        assert decision.action == DecisionAction.REQUEST_APPROVAL
        assert "exceeds auto-approval threshold" in decision.reason

    def test_out_of_stock_rejected(self):
        decision = shopping.evaluate(_product(20, in_stock=False), self.context, self.agent)
        assert decision.action == DecisionAction.REJECT
        assert "out of stock" in decision.reason

    def test_over_per_transaction_limit_rejected(self):
        decision = shopping.evaluate(_product(150), self.context, self.agent)
        assert decision.action == DecisionAction.REJECT
        assert "exceeds per-transaction limit" in decision.reason
        assert decision.risk_level == 5

    def test_daily_limit_rejected(self):
        agent = _agent(spending_limits=SpendingLimits(
            per_transaction=Decimal("100"), daily=Decimal("500"),
            auto_approve_threshold=Decimal("25"),
        ))
        decision = shopping.evaluate(_product(50), _context(spent="475", limit="500"), agent)
        assert decision.action == DecisionAction.REJECT
        assert "daily" in decision.reason

    def test_auto_approve_boundary(self):
        at = shopping.evaluate(_product("25"), self.context, self.agent)
        above = shopping.evaluate(_product("25.01"), self.context, self.agent)
        assert at.action == DecisionAction.APPROVE
        assert above.action == DecisionAction.REQUEST_APPROVAL

    def test_blocked_merchant_rejected(self):
        agent = _agent(blocked_merchants=["fairprice"])
        decision = shopping.evaluate(_product(10), self.context, agent)
        assert decision.action == DecisionAction.REJECT
        assert decision.reason == "Merchant is blocked"

    def test_disallowed_category_escalated(self):
        agent = _agent(allowed_categories=["Electronics"])
        decision = shopping.evaluate(_product(10), self.context, agent)
        assert decision.action == DecisionAction.REQUEST_APPROVAL
        assert decision.reason == 'Category "Groceries" requires approval'

    def test_low_rating_raises_risk_above_threshold(self):
        agent = _agent(risk_settings={"max_risk_level": 4, "require_approval_above": 1})
        decision = shopping.evaluate(_product(10, rating=2.0), self.context, agent)
        assert decision.action == DecisionAction.REQUEST_APPROVAL
        assert decision.risk_level == 2
        assert decision.reason.startswith("Risk level 2 exceeds approval threshold")

    def test_evaluation_is_logged(self):
        log = ActionLog()
        shopping.evaluate(_product(15), self.context, self.agent, log=log)
        entries = log.entries()
        assert len(entries) == 1
        assert entries[0].type == ActionKind.EVALUATE
        assert entries[0].timestamp == 1_000


class TestShoppingTree:

    def test_rejected_tree_stops_at_failed_check(self):
        decision = shopping.evaluate(_product(150), _context(), _agent())
        ids = [node.id for node in decision.decision_tree.walk()]
        assert ids == ["root", "stock_check", "budget_check", "outcome"]
        assert decision.decision_tree.find("budget_check").result == NodeResult.FAIL

    def test_approved_tree_walks_every_check(self):
        decision = shopping.evaluate(_product(15), _context(), _agent())
        ids = [node.id for node in decision.decision_tree.walk()]
        assert ids == [
            "root", "stock_check", "budget_check", "daily_limit_check",
            "merchant_check", "category_check", "risk_check",
            "auto_approve_check", "outcome",
        ]
        assert decision.decision_tree.find("outcome").result == NodeResult.PASS


class TestRisk:

    @pytest.mark.parametrize("amount,expected", [
        ("10", 1), ("25", 2), ("50", 3), ("75", 4), ("100", 5),
    ])
    def test_risk_tier(self, amount, expected):
        assert risk_tier(Decimal(amount), Decimal("100")) == expected

    def test_risk_tier_requires_positive_limit(self):
        with pytest.raises(PolicyPreconditionError):
            risk_tier(Decimal("1"), Decimal("0"))

    def test_balance_share_bumps_risk(self):
        options = shopping.ShoppingOptions()
        agent = _agent(spending_limits=SpendingLimits(
            per_transaction=Decimal("1000"), daily=Decimal("1000"),
            auto_approve_threshold=Decimal("25"),
        ))
        assert shopping.product_risk(_product(80), _context(balance="100"), agent, options) == 3

    def test_markup_bumps_risk(self):
        options = shopping.ShoppingOptions()
        marked_up = _product(16, original_price=Decimal("10"))
        assert shopping.product_risk(marked_up, _context(), _agent(), options) == 2


class TestApprovalRequest:

    def test_request_mirrors_decision(self):
        product = _product(75)
        agent = _agent()
        decision = shopping.evaluate(product, _context(), agent)
        request = shopping.create_approval_request(product, decision, agent, created_at=5_000)
        assert request.type == ApprovalType.TRANSACTION
        assert request.amount == Decimal("75")
        assert request.description == "Purchase: Milo 1.5kg"
        assert request.risk_level == decision.risk_level
        assert request.decision_tree == decision.decision_tree
        assert request.created_at == 5_000

    def test_product_score_prefers_discounts(self):
        agent = _agent()
        plain = shopping.product_score(_product(20), agent)
        discounted = shopping.product_score(_product(20, original_price=Decimal("40")), agent)
        assert discounted > plain
