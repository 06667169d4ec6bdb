"""
Policy Base — helpers shared by every decision policy.

Policies are plain functions: ``evaluate(item, context, config, ...)``
returns a :class:`Decision`; nothing here keeps state between calls.
This module supplies the pieces they have in common:

- limit checks against an agent's SpendingLimits
- the amount-to-limit risk tier
- construction of the explanation tree, bottom-up from the outcome leaf
- appending an ``evaluate`` step to a caller-supplied ActionLog
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Sequence

from spendguard.domain.schema import (
    ActionKind,
    AgentConfig,
    AgentContext,
    Decision,
    DecisionAction,
    DecisionNode,
    NodeResult,
    NodeType,
)

if TYPE_CHECKING:
    from spendguard.ledger.actions import ActionLog


class PolicyPreconditionError(ValueError):
    """Raised when a policy is called with input that breaks its contract."""
    pass


# ════════════════════════════════════════════════════════════════
# Limit checks
# ════════════════════════════════════════════════════════════════


def risk_tier(amount: Decimal, per_transaction: Decimal) -> int:
    """Base risk 1-5 from the amount's share of the per-transaction limit."""
    if per_transaction <= 0:
        raise PolicyPreconditionError("per-transaction limit must be positive")
    ratio = amount / per_transaction
    if ratio < Decimal("0.25"):
        return 1
    if ratio < Decimal("0.5"):
        return 2
    if ratio < Decimal("0.75"):
        return 3
    if ratio < 1:
        return 4
    return 5


def bump(risk: int, steps: int = 1) -> int:
    return min(5, risk + steps)


def within_per_transaction(config: AgentConfig, amount: Decimal) -> bool:
    return amount <= config.spending_limits.per_transaction


def within_daily(daily_cap: Decimal, amount: Decimal, daily_spent: Decimal) -> bool:
    return daily_spent + amount <= daily_cap


def can_auto_approve(config: AgentConfig, amount: Decimal) -> bool:
    return amount <= config.spending_limits.auto_approve_threshold


def category_allowed(config: AgentConfig, category: str) -> bool:
    if not config.allowed_categories:
        return True
    return category in config.allowed_categories


def merchant_blocked(config: AgentConfig, merchant_id: str) -> bool:
    return merchant_id in config.blocked_merchants


def require_positive(value: Decimal, what: str) -> None:
    if value <= 0:
        raise PolicyPreconditionError(f"{what} must be positive, got {value}")


def daily_cap(config: AgentConfig, context: AgentContext) -> Decimal:
    """The tighter of the agent's own daily limit and the wallet's."""
    return min(config.spending_limits.daily, context.daily_limit)


# ════════════════════════════════════════════════════════════════
# Explanation tree
# ════════════════════════════════════════════════════════════════


@dataclass
class Step:
    """A check that was actually evaluated, in evaluation order."""

    id: str
    label: str
    result: NodeResult
    description: str | None = None
    type: NodeType = NodeType.CONDITION

    def node(self, children: Sequence[DecisionNode] = ()) -> DecisionNode:
        return DecisionNode(
            id=self.id,
            type=self.type,
            label=self.label,
            description=self.description,
            result=self.result,
            children=list(children),
        )


def passed(ok: bool, otherwise: NodeResult = NodeResult.FAIL) -> NodeResult:
    return NodeResult.PASS if ok else otherwise


def build_tree(label: str, steps: Sequence[Step], outcome: Step | None = None) -> DecisionNode:
    """
    Nest the evaluated steps into a single chain under a root node.

    The chain is assembled bottom-up: the outcome leaf first, then each
    step wraps the one after it.
    """
    children: list[DecisionNode] = [outcome.node()] if outcome is not None else []
    for step in reversed(steps):
        children = [step.node(children)]
    return DecisionNode(
        id="root",
        type=NodeType.CONDITION,
        label=label,
        is_active=True,
        children=children,
    )


def outcome(label: str, result: NodeResult) -> Step:
    return Step(id="outcome", label=label, result=result, type=NodeType.OUTCOME)


OUTCOME_FOR_ACTION = {
    DecisionAction.APPROVE: ("Auto-Approve", NodeResult.PASS),
    DecisionAction.REQUEST_APPROVAL: ("Request Approval", NodeResult.PENDING),
    DecisionAction.REJECT: ("Reject", NodeResult.FAIL),
}


def append_child(tree: DecisionNode, child: DecisionNode) -> DecisionNode:
    """Copy of ``tree`` with ``child`` appended to the root's children."""
    return tree.model_copy(update={"children": [*tree.children, child]})


def decide(
    action: DecisionAction,
    reason: str,
    risk_level: int,
    label: str,
    steps: Sequence[Step],
    amount: Decimal | None = None,
    details: dict[str, Any] | None = None,
    outcome_label: str | None = None,
) -> Decision:
    """Finish an evaluation: attach the outcome leaf and freeze the verdict."""
    default_label, result = OUTCOME_FOR_ACTION[action]
    tree = build_tree(label, steps, outcome(outcome_label or default_label, result))
    return Decision(
        action=action,
        reason=reason,
        risk_level=risk_level,
        decision_tree=tree,
        amount=amount,
        details=details or {},
    )


# ════════════════════════════════════════════════════════════════
# Action log
# ════════════════════════════════════════════════════════════════


def record_evaluation(
    log: ActionLog | None,
    config: AgentConfig,
    description: str,
    data: dict[str, Any] | None = None,
    timestamp: int | None = None,
) -> None:
    if log is None:
        return
    log.append(
        agent_id=config.id,
        type=ActionKind.EVALUATE,
        description=description,
        data=data,
        timestamp=timestamp,
    )


def percent(ratio: float) -> int:
    """0.2 -> 20, rounded half up like a UI percentage."""
    return int(Decimal(str(ratio * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
