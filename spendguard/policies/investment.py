"""
Investment Policy — buy / sell / hold screening for a single instrument.

Instruments riskier than the tolerance are escalated (or refused outright
when approval for high-risk trades is disabled). Everything else goes
through a small scoring heuristic:

    price fell more than 10%              buy  +2
    price rose more than 20%              sell +2
    expected return beats volatility      buy  +1
    return per risk level above 0.05      buy  +1
    within risk tolerance                 buy  +0.5   (else sell +1)

A side wins when it leads the other by more than one point; confidence is
then 0.5 + 0.1 per point, capped at 0.95. Otherwise the recommendation is
hold at 0.6. The suggested position is the smaller of the max position
fraction of the balance and the per-transaction limit.

Only a confident buy (>= 0.7) whose size fits the auto-approve threshold
is approved without a human.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from pydantic import BaseModel, field_validator

from spendguard.domain.schema import (
    AgentConfig,
    AgentContext,
    ApprovalRequest,
    ApprovalType,
    Decision,
    DecisionAction,
    Investment,
    NodeResult,
    NodeType,
    TradeAction,
    now_ms,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies.base import (
    PolicyPreconditionError,
    Step,
    decide,
    passed,
    percent,
    record_evaluation,
    require_positive,
)

CONFIDENT = 0.7
TREE_LABEL = "Investment Analysis"


class InvestmentOptions(BaseModel):
    """Tunables of the investment policy; out-of-range values are clamped."""

    risk_tolerance: int = 3
    max_position_size: float = 0.2
    require_approval_for_high_risk: bool = True

    @field_validator("risk_tolerance")
    @classmethod
    def _clamp_tolerance(cls, value: int) -> int:
        return max(1, min(5, value))

    @field_validator("max_position_size")
    @classmethod
    def _clamp_position(cls, value: float) -> float:
        return max(0.01, min(1.0, value))


@dataclass(frozen=True)
class InvestmentAnalysis:
    """Output of the scoring heuristic."""

    action: TradeAction
    confidence: float
    suggested_amount: Decimal
    buy_score: float
    sell_score: float
    reasoning: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InvestmentRecommendation:
    """A trade proposal, independent of the approval flow."""

    investment_id: str
    action: TradeAction
    amount: Decimal
    reasoning: str
    risk_score: int
    requires_approval: bool


def analyze(
    investment: Investment,
    context: AgentContext,
    config: AgentConfig,
    options: InvestmentOptions | None = None,
) -> InvestmentAnalysis:
    """
    Run the buy/sell scoring heuristic.

    Raises:
        PolicyPreconditionError: On a non-positive previous price or a
            risk level outside 1-5.
    """
    options = options or InvestmentOptions()
    require_positive(investment.previous_price, "previous price")
    if not 1 <= investment.risk_level <= 5:
        raise PolicyPreconditionError(
            f"risk level must be between 1 and 5, got {investment.risk_level}"
        )

    reasoning: list[str] = []
    buy_score = 0.0
    sell_score = 0.0

    price_change = (investment.current_price - investment.previous_price) / investment.previous_price
    if price_change < Decimal("-0.1"):
        buy_score += 2
        reasoning.append("Price dropped >10% - potential buying opportunity")
    elif price_change > Decimal("0.2"):
        sell_score += 2
        reasoning.append("Price up >20% - consider taking profits")

    if investment.expected_return > investment.volatility:
        buy_score += 1
        reasoning.append("Expected return exceeds volatility")

    if investment.expected_return / investment.risk_level > 0.05:
        buy_score += 1
        reasoning.append("Good risk-adjusted return")

    if investment.risk_level <= options.risk_tolerance:
        buy_score += 0.5
        reasoning.append("Within risk tolerance")
    else:
        sell_score += 1
        reasoning.append("Exceeds risk tolerance")

    if buy_score > sell_score + 1:
        action = TradeAction.BUY
        confidence = min(0.95, 0.5 + buy_score * 0.1)
    elif sell_score > buy_score + 1:
        action = TradeAction.SELL
        confidence = min(0.95, 0.5 + sell_score * 0.1)
    else:
        action = TradeAction.HOLD
        confidence = 0.6

    max_amount = max(context.balance, Decimal("0")) * Decimal(str(options.max_position_size))
    suggested = min(max_amount, config.spending_limits.per_transaction)

    return InvestmentAnalysis(
        action=action,
        confidence=confidence,
        suggested_amount=suggested,
        buy_score=buy_score,
        sell_score=sell_score,
        reasoning=reasoning,
    )


def evaluate(
    investment: Investment,
    context: AgentContext,
    config: AgentConfig,
    options: InvestmentOptions | None = None,
    log: ActionLog | None = None,
) -> Decision:
    """Screen ``investment`` and decide whether a trade may proceed."""
    options = options or InvestmentOptions()
    analysis = analyze(investment, context, config, options)
    confidence = percent(analysis.confidence)
    position_size = (
        analysis.suggested_amount / context.balance if context.balance > 0 else Decimal("0")
    )
    max_position = Decimal(str(options.max_position_size))

    record_evaluation(
        log, config,
        f"Analyzing investment: {investment.name} ({investment.type.value})",
        data={
            "investment_id": investment.id,
            "recommendation": analysis.action.value,
            "confidence": analysis.confidence,
        },
        timestamp=context.current_time,
    )

    within_tolerance = investment.risk_level <= options.risk_tolerance
    steps: list[Step] = [
        Step(
            "risk_assessment", f"Risk Level: {investment.risk_level}/5",
            passed(within_tolerance, NodeResult.PENDING),
        ),
        Step(
            "market_analysis", "Market Analysis", NodeResult.PASS,
            description="; ".join(analysis.reasoning),
        ),
    ]

    def verdict(action: DecisionAction, reason: str, risk: int) -> Decision:
        return decide(
            action, reason, risk, TREE_LABEL, steps,
            amount=analysis.suggested_amount,
            details={
                "investment_id": investment.id,
                "recommendation": analysis.action.value,
                "confidence": analysis.confidence,
                "reasoning": list(analysis.reasoning),
            },
        )

    if not within_tolerance:
        if options.require_approval_for_high_risk:
            return verdict(
                DecisionAction.REQUEST_APPROVAL,
                f"Risk level {investment.risk_level} exceeds tolerance of "
                f"{options.risk_tolerance}. Human approval required.",
                investment.risk_level,
            )
        return verdict(
            DecisionAction.REJECT,
            f"Risk level {investment.risk_level} exceeds maximum tolerance of "
            f"{options.risk_tolerance}",
            investment.risk_level,
        )

    if analysis.action == TradeAction.BUY and context.balance <= 0:
        steps.append(Step(
            "funds_check", f"Sufficient Funds? (${context.balance})", NodeResult.FAIL,
        ))
        return verdict(
            DecisionAction.REJECT,
            "Insufficient balance to open a position",
            investment.risk_level,
        )

    position_ok = position_size <= max_position
    steps.append(Step(
        "position_check",
        f"Position {position_size * 100:.1f}% within {max_position * 100:.1f}%?",
        passed(position_ok, NodeResult.PENDING),
    ))
    if not position_ok:
        return verdict(
            DecisionAction.REQUEST_APPROVAL,
            f"Position size ({position_size * 100:.1f}%) exceeds max of "
            f"{max_position * 100:.1f}%",
            4,
        )

    steps.append(Step(
        "confidence_check", f"Confidence: {confidence}%",
        passed(analysis.confidence >= CONFIDENT, NodeResult.PENDING),
    ))
    steps.append(Step(
        "recommendation", f"Recommendation: {analysis.action.value.upper()}",
        NodeResult.PASS if analysis.action == TradeAction.HOLD else NodeResult.PENDING,
        type=NodeType.ACTION,
    ))

    if (
        analysis.action == TradeAction.BUY
        and analysis.confidence >= CONFIDENT
        and analysis.suggested_amount <= config.spending_limits.auto_approve_threshold
    ):
        return verdict(
            DecisionAction.APPROVE,
            f"High confidence ({confidence}%) buy signal. Amount within auto-approve.",
            investment.risk_level,
        )

    return verdict(
        DecisionAction.REQUEST_APPROVAL,
        f"{analysis.action.value.upper()} recommendation with {confidence}% confidence.",
        investment.risk_level,
    )


def create_approval_request(
    investment: Investment,
    decision: Decision,
    config: AgentConfig,
    created_at: int | None = None,
) -> ApprovalRequest:
    recommendation = decision.details.get("recommendation", TradeAction.HOLD.value)
    return ApprovalRequest(
        agent_id=config.id,
        type=ApprovalType.INVESTMENT,
        amount=decision.amount if decision.amount is not None else Decimal("0"),
        description=f"{recommendation.upper()} {investment.name}",
        reasoning=decision.reason,
        risk_level=decision.risk_level,
        decision_tree=decision.decision_tree,
        created_at=now_ms() if created_at is None else created_at,
    )


def create_investment_decision(
    investment: Investment,
    context: AgentContext,
    config: AgentConfig,
    options: InvestmentOptions | None = None,
) -> InvestmentRecommendation:
    options = options or InvestmentOptions()
    analysis = analyze(investment, context, config, options)
    return InvestmentRecommendation(
        investment_id=investment.id,
        action=analysis.action,
        amount=analysis.suggested_amount,
        reasoning=" ".join(analysis.reasoning),
        risk_score=investment.risk_level,
        requires_approval=(
            investment.risk_level > options.risk_tolerance
            or analysis.suggested_amount > config.spending_limits.auto_approve_threshold
        ),
    )
