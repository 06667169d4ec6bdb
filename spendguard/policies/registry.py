"""
Policy Registry — the closed set of decision policies, keyed by agent type.

Each agent type maps to exactly one policy module exposing the same two
operations, ``evaluate`` and ``create_approval_request``. Dispatch is a
dictionary lookup; adding an agent type means adding an entry here.
"""

from __future__ import annotations

from typing import Any, Callable, NamedTuple

from pydantic import BaseModel

from spendguard.domain.schema import (
    AgentConfig,
    AgentContext,
    AgentType,
    ApprovalRequest,
    Bill,
    Decision,
    Investment,
    Product,
    Subscription,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies import billpay, investment, shopping, subscription


class PolicyVariant(NamedTuple):
    """One member of the policy union."""

    item_model: type[BaseModel]
    options_model: type[BaseModel]
    evaluate: Callable[..., Decision]
    create_approval_request: Callable[..., ApprovalRequest]


POLICIES: dict[AgentType, PolicyVariant] = {
    AgentType.SHOPPING: PolicyVariant(
        Product, shopping.ShoppingOptions,
        shopping.evaluate, shopping.create_approval_request,
    ),
    AgentType.BILLPAY: PolicyVariant(
        Bill, billpay.BillPayOptions,
        billpay.evaluate, billpay.create_approval_request,
    ),
    AgentType.SUBSCRIPTION: PolicyVariant(
        Subscription, subscription.SubscriptionOptions,
        subscription.evaluate, subscription.create_approval_request,
    ),
    AgentType.INVESTMENT: PolicyVariant(
        Investment, investment.InvestmentOptions,
        investment.evaluate, investment.create_approval_request,
    ),
}


def policy_for(agent_type: AgentType) -> PolicyVariant:
    return POLICIES[agent_type]


def evaluate_for(
    agent_type: AgentType,
    item: Any,
    context: AgentContext,
    config: AgentConfig,
    options: BaseModel | None = None,
    log: ActionLog | None = None,
) -> Decision:
    """
    Evaluate ``item`` with the policy registered for ``agent_type``.

    Raises:
        TypeError: If ``item`` is not the content model the policy expects.
    """
    variant = POLICIES[agent_type]
    if not isinstance(item, variant.item_model):
        raise TypeError(
            f"{agent_type.value} policy expects {variant.item_model.__name__}, "
            f"got {type(item).__name__}"
        )
    return variant.evaluate(item, context, config, options, log)


def approval_request_for(
    agent_type: AgentType,
    item: Any,
    decision: Decision,
    config: AgentConfig,
    created_at: int | None = None,
) -> ApprovalRequest:
    return POLICIES[agent_type].create_approval_request(item, decision, config, created_at)
