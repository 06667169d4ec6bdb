"""
Shopping Policy — purchase decisions for a single product.

Checks run in a fixed order and the first failure decides:

1. in stock                        → reject
2. within per-transaction limit    → reject
3. within daily limit              → reject
4. merchant not blocked            → reject
5. category allowed                → request approval
6. risk and auto-approve threshold → approve or request approval

Risk starts from the amount's share of the per-transaction limit and is
raised one level each when the price takes more than half, then more than
three quarters, of the balance, when the rating is below 3, and when the
price is marked up beyond the tolerated multiple of the original price.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from spendguard.domain.schema import (
    AgentConfig,
    AgentContext,
    ApprovalRequest,
    ApprovalType,
    Decision,
    DecisionAction,
    NodeResult,
    Product,
    now_ms,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies.base import (
    Step,
    bump,
    can_auto_approve,
    category_allowed,
    daily_cap,
    decide,
    merchant_blocked,
    passed,
    record_evaluation,
    risk_tier,
    within_daily,
    within_per_transaction,
)

TREE_LABEL = "Purchase Decision"


class ShoppingOptions(BaseModel):
    """Tunables of the shopping policy."""

    max_price_multiplier: Decimal = Field(
        default=Decimal("1.5"), gt=0, description="Tolerated markup over the original price"
    )
    preferred_categories: list[str] = Field(default_factory=list)


def product_risk(
    product: Product,
    context: AgentContext,
    config: AgentConfig,
    options: ShoppingOptions,
) -> int:
    """Risk level 1-5 of buying ``product`` from the current wallet."""
    price = product.price
    risk = risk_tier(price, config.spending_limits.per_transaction)

    if context.balance > 0:
        balance_ratio = price / context.balance
    else:
        balance_ratio = Decimal("Infinity") if price > 0 else Decimal("0")
    if balance_ratio > Decimal("0.5"):
        risk = bump(risk)
    if balance_ratio > Decimal("0.75"):
        risk = bump(risk)

    if product.rating < 3:
        risk = bump(risk)

    if product.original_price and price > product.original_price * options.max_price_multiplier:
        risk = bump(risk)

    return risk


def evaluate(
    product: Product,
    context: AgentContext,
    config: AgentConfig,
    options: ShoppingOptions | None = None,
    log: ActionLog | None = None,
) -> Decision:
    """
    Decide whether the agent may buy ``product``.

    Args:
        product: The product on offer.
        context: Wallet snapshot at evaluation time.
        config: The shopping agent's configuration.
        options: Policy tunables; defaults apply when omitted.
        log: Optional action log that receives an ``evaluate`` entry.

    Returns:
        Decision with the explanation tree of the checks actually run.
    """
    options = options or ShoppingOptions()
    limits = config.spending_limits
    price = product.price
    cap = daily_cap(config, context)

    record_evaluation(
        log, config,
        f"Evaluating product: {product.name} at ${price}",
        data={"product_id": product.id, "price": str(price)},
        timestamp=context.current_time,
    )

    steps: list[Step] = []

    def verdict(action: DecisionAction, reason: str, risk: int) -> Decision:
        return decide(
            action, reason, risk, TREE_LABEL, steps,
            amount=price,
            details={"merchant_id": product.merchant_id, "category": product.category},
        )

    steps.append(Step("stock_check", "In Stock?", passed(product.in_stock)))
    if not product.in_stock:
        return verdict(DecisionAction.REJECT, "Product is out of stock", 0)

    under_limit = within_per_transaction(config, price)
    steps.append(Step("budget_check", f"Under ${limits.per_transaction} limit?", passed(under_limit)))
    if not under_limit:
        return verdict(
            DecisionAction.REJECT,
            f"Price ${price} exceeds per-transaction limit of ${limits.per_transaction}",
            5,
        )

    under_daily = within_daily(cap, price, context.daily_spent)
    steps.append(Step(
        "daily_limit_check", "Within daily limit?", passed(under_daily),
        description=f"${context.daily_spent} spent of ${cap}",
    ))
    if not under_daily:
        return verdict(
            DecisionAction.REJECT,
            f"Purchase would exceed daily spending limit of ${cap}",
            5,
        )

    blocked = merchant_blocked(config, product.merchant_id)
    steps.append(Step("merchant_check", "Merchant allowed?", passed(not blocked)))
    if blocked:
        return verdict(DecisionAction.REJECT, "Merchant is blocked", 3)

    allowed = category_allowed(config, product.category)
    steps.append(Step(
        "category_check", f'Category "{product.category}" allowed?',
        passed(allowed, NodeResult.PENDING),
    ))
    if not allowed:
        return verdict(
            DecisionAction.REQUEST_APPROVAL,
            f'Category "{product.category}" requires approval',
            3,
        )

    risk = product_risk(product, context, config, options)
    risk_ok = risk <= config.risk_settings.require_approval_above
    steps.append(Step(
        "risk_check", f"Risk {risk}/5 within approval threshold?",
        passed(risk_ok, NodeResult.PENDING),
        description=f"Approval required above {config.risk_settings.require_approval_above}",
    ))

    auto = can_auto_approve(config, price)
    steps.append(Step(
        "auto_approve_check", f"Under ${limits.auto_approve_threshold} auto-approve?",
        passed(auto, NodeResult.PENDING),
    ))

    if auto and risk_ok:
        return verdict(
            DecisionAction.APPROVE,
            f"Auto-approved: Price ${price} is within auto-approval threshold",
            risk,
        )
    if not auto:
        reason = (
            f"Price ${price} exceeds auto-approval threshold of "
            f"${limits.auto_approve_threshold}"
        )
    else:
        reason = (
            f"Risk level {risk} exceeds approval threshold of "
            f"{config.risk_settings.require_approval_above}"
        )
    return verdict(DecisionAction.REQUEST_APPROVAL, reason, risk)


def create_approval_request(
    product: Product,
    decision: Decision,
    config: AgentConfig,
    created_at: int | None = None,
) -> ApprovalRequest:
    return ApprovalRequest(
        agent_id=config.id,
        type=ApprovalType.TRANSACTION,
        amount=product.price,
        description=f"Purchase: {product.name}",
        reasoning=decision.reason,
        risk_level=decision.risk_level,
        decision_tree=decision.decision_tree,
        created_at=now_ms() if created_at is None else created_at,
        merchant_name=product.merchant_id,
        product_name=product.name,
    )


def product_score(
    product: Product,
    config: AgentConfig,
    options: ShoppingOptions | None = None,
) -> float:
    """Ranking score 0-100: rating, preference and discount up; price down."""
    options = options or ShoppingOptions()
    score = 50.0 + product.rating * 10

    if product.category in options.preferred_categories:
        score += 15

    if product.original_price and product.price < product.original_price:
        discount = (product.original_price - product.price) / product.original_price
        score += float(discount) * 30

    price_ratio = product.price / config.spending_limits.per_transaction
    score -= float(price_ratio) * 20

    return max(0.0, min(100.0, score))
