"""
Subscription Policy — renewal review for a recurring plan.

Inactive plans are rejected. A plan whose usage score is below the usage
threshold is escalated: with a switch suggestion when some alternative
saves at least the savings threshold, otherwise with a cancellation
suggestion. Plans in use are renewed automatically, as high value from a
usage score of 0.8 and as moderate value below that.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, Field

from spendguard.domain.schema import (
    AgentConfig,
    AgentContext,
    ApprovalRequest,
    ApprovalType,
    Decision,
    DecisionAction,
    DecisionNode,
    NodeResult,
    NodeType,
    Subscription,
    SubscriptionAlternative,
    now_ms,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies.base import (
    Step,
    append_child,
    decide,
    passed,
    percent,
    record_evaluation,
)

HIGH_USAGE = 0.8

TREE_LABEL = "Subscription Review"

SWITCH = "switch"
CANCEL = "cancel"
KEEP = "keep"


class SubscriptionOptions(BaseModel):
    usage_threshold: float = Field(default=0.3, ge=0, le=1)
    savings_threshold: Decimal = Field(default=Decimal("5"), ge=0)


def best_alternative(
    subscription: Subscription,
    options: SubscriptionOptions | None = None,
) -> SubscriptionAlternative | None:
    """
    Highest-savings alternative, provided it clears the savings threshold.

    Returns None when no alternative saves enough.
    """
    options = options or SubscriptionOptions()
    best = subscription.best_alternative
    if best is None or best.savings < options.savings_threshold:
        return None
    return best


def evaluate(
    subscription: Subscription,
    context: AgentContext,
    config: AgentConfig,
    options: SubscriptionOptions | None = None,
    log: ActionLog | None = None,
) -> Decision:
    """Review ``subscription`` at renewal time."""
    options = options or SubscriptionOptions()
    usage = percent(subscription.usage_score)

    record_evaluation(
        log, config,
        f"Reviewing subscription: {subscription.name} (${subscription.monthly_amount}/month)",
        data={"subscription_id": subscription.id, "usage_score": subscription.usage_score},
        timestamp=context.current_time,
    )

    steps: list[Step] = []

    def verdict(
        action: DecisionAction,
        reason: str,
        risk: int,
        change: str,
        amount: Decimal,
        label: str,
        alternative: SubscriptionAlternative | None = None,
    ) -> Decision:
        details = {"subscription_id": subscription.id, "change": change}
        if alternative is not None:
            details["alternative_id"] = alternative.id
            details["alternative_name"] = alternative.name
            details["savings"] = str(alternative.savings)
        return decide(
            action, reason, risk, TREE_LABEL, steps,
            amount=amount, details=details, outcome_label=label,
        )

    steps.append(Step("active_check", "Is Active?", passed(subscription.is_active)))
    if not subscription.is_active:
        return verdict(
            DecisionAction.REJECT, "Subscription is not active", 0,
            KEEP, Decimal("0"), "Reject",
        )

    low_usage = subscription.usage_score < options.usage_threshold
    steps.append(Step(
        "usage_check", f"Usage > {percent(options.usage_threshold)}%?",
        passed(not low_usage), description=f"Current: {usage}%",
    ))

    if low_usage:
        alternative = best_alternative(subscription, options)
        steps.append(Step("alternative_check", "Better alternative?", passed(alternative is not None)))
        if alternative is not None:
            decision = verdict(
                DecisionAction.REQUEST_APPROVAL,
                f"Low usage ({usage}%) detected. Consider switching to "
                f"{alternative.name} to save ${alternative.savings}/month.",
                2, SWITCH, alternative.monthly_amount, "Suggest Switch", alternative,
            )
            suggestion = DecisionNode(
                id="alternative_suggestion",
                type=NodeType.ACTION,
                label=f"Switch to {alternative.name}",
                description=f"Save ${alternative.savings}/month",
                result=NodeResult.PENDING,
            )
            return decision.model_copy(
                update={"decision_tree": append_child(decision.decision_tree, suggestion)}
            )
        return verdict(
            DecisionAction.REQUEST_APPROVAL,
            f"Low usage detected ({usage}%). Consider canceling to save "
            f"${subscription.monthly_amount}/month.",
            3, CANCEL, Decimal("0"), "Consider Cancel",
        )

    if subscription.usage_score >= HIGH_USAGE:
        return verdict(
            DecisionAction.APPROVE,
            f"High usage ({usage}%). Subscription provides good value.",
            1, KEEP, subscription.monthly_amount, "Good Value",
        )
    return verdict(
        DecisionAction.APPROVE,
        f"Moderate usage ({usage}%). Subscription maintained.",
        2, KEEP, subscription.monthly_amount, "Good Value",
    )


def create_approval_request(
    subscription: Subscription,
    decision: Decision,
    config: AgentConfig,
    created_at: int | None = None,
) -> ApprovalRequest:
    alternative_id = decision.details.get("alternative_id")
    alternative = next(
        (alt for alt in subscription.alternatives if alt.id == alternative_id), None
    )
    if alternative is not None:
        description = f"Switch from {subscription.name} to {alternative.name}"
        amount = alternative.savings
    else:
        description = f"Cancel {subscription.name}"
        amount = subscription.monthly_amount
    return ApprovalRequest(
        agent_id=config.id,
        type=ApprovalType.SUBSCRIPTION_CHANGE,
        amount=amount,
        description=description,
        reasoning=decision.reason,
        risk_level=decision.risk_level,
        decision_tree=decision.decision_tree,
        created_at=now_ms() if created_at is None else created_at,
    )


def potential_savings(
    subscriptions: Iterable[Subscription],
    options: SubscriptionOptions | None = None,
) -> Decimal:
    """Monthly savings from switching or cancelling every low-usage plan."""
    options = options or SubscriptionOptions()
    total = Decimal("0")
    for subscription in subscriptions:
        if subscription.usage_score >= options.usage_threshold:
            continue
        best = subscription.best_alternative
        total += best.savings if best is not None else subscription.monthly_amount
    return total
