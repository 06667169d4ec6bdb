"""
Bill Pay Policy — whether and how to pay a bill that has fallen due.

Paid bills and bills the balance cannot cover are rejected. Otherwise the
bill's priority drives the verdict:

- essential: auto-pay when enabled (risk 1), else ask (risk 2)
- important: always ask; risk 3 when due within 3 days, else 2
- optional:  always ask; risk 4 when paying leaves under 20% of the
  balance, else 3

"Days until due" is measured against the context's virtual time and
rounded up to whole days.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from spendguard.domain.schema import (
    AgentConfig,
    AgentContext,
    ApprovalRequest,
    ApprovalType,
    Bill,
    BillPriority,
    Decision,
    DecisionAction,
    NodeResult,
    now_ms,
)
from spendguard.ledger.actions import ActionLog
from spendguard.policies.base import (
    Step,
    decide,
    passed,
    record_evaluation,
)

DAY_MS = 24 * 60 * 60 * 1000
URGENT_DAYS = 3
LOW_BALANCE_PERCENT = Decimal("20")

PRIORITY_ORDER = [BillPriority.ESSENTIAL, BillPriority.IMPORTANT, BillPriority.OPTIONAL]

TREE_LABEL = "Bill Payment Decision"


class BillPayOptions(BaseModel):
    auto_pay_essential: bool = True


def days_until_due(bill: Bill, now: int) -> int:
    return math.ceil((bill.due_date - now) / DAY_MS)


def evaluate(
    bill: Bill,
    context: AgentContext,
    config: AgentConfig,
    options: BillPayOptions | None = None,
    log: ActionLog | None = None,
) -> Decision:
    """Decide whether ``bill`` is paid now, escalated, or refused."""
    options = options or BillPayOptions()
    amount = bill.amount
    days = days_until_due(bill, context.current_time)

    record_evaluation(
        log, config,
        f"Evaluating bill: {bill.name} - ${amount} ({bill.priority.value})",
        data={"bill_id": bill.id, "amount": str(amount), "days_until_due": days},
        timestamp=context.current_time,
    )

    steps: list[Step] = []

    def verdict(action: DecisionAction, reason: str, risk: int, label: str | None = None) -> Decision:
        return decide(
            action, reason, risk, TREE_LABEL, steps,
            amount=amount,
            details={"bill_id": bill.id, "days_until_due": days},
            outcome_label=label,
        )

    steps.append(Step("paid_check", "Already Paid?", passed(not bill.is_paid)))
    if bill.is_paid:
        return verdict(DecisionAction.REJECT, "Bill is already paid", 0)

    has_funds = context.balance >= amount
    steps.append(Step("funds_check", f"Sufficient Funds? (${context.balance})", passed(has_funds)))
    if not has_funds:
        return verdict(
            DecisionAction.REJECT,
            f"Insufficient balance. Need ${amount}, have ${context.balance}",
            5,
        )

    steps.append(Step("priority_check", f"Priority: {bill.priority.value}", NodeResult.PASS))
    steps.append(Step(
        "due_date_check", f"Due in {days} days",
        NodeResult.PENDING if days <= URGENT_DAYS else NodeResult.PASS,
    ))

    if bill.priority == BillPriority.ESSENTIAL:
        if options.auto_pay_essential:
            return verdict(
                DecisionAction.APPROVE,
                f"Essential bill auto-approved. Due in {days} days.",
                1,
                label="Auto-Pay",
            )
        return verdict(
            DecisionAction.REQUEST_APPROVAL,
            f"Essential bill due in {days} days. Amount: ${amount}",
            2,
        )

    if bill.priority == BillPriority.IMPORTANT:
        if days <= URGENT_DAYS:
            return verdict(
                DecisionAction.REQUEST_APPROVAL,
                f"Important bill due soon ({days} days). Amount: ${amount}",
                3,
            )
        return verdict(
            DecisionAction.REQUEST_APPROVAL,
            f"Important bill due in {days} days. Amount: ${amount}",
            2,
        )

    if context.balance > 0:
        remaining_percent = (context.balance - amount) / context.balance * 100
    else:
        remaining_percent = Decimal("0")
    low = remaining_percent < LOW_BALANCE_PERCENT
    steps.append(Step(
        "balance_check", f"Leaves {remaining_percent:.1f}% of balance",
        passed(not low, NodeResult.PENDING),
    ))
    if low:
        return verdict(
            DecisionAction.REQUEST_APPROVAL,
            f"Optional bill. Paying would leave only {remaining_percent:.1f}% of balance.",
            4,
        )
    return verdict(
        DecisionAction.REQUEST_APPROVAL,
        f"Optional bill due in {days} days. Amount: ${amount}",
        3,
    )


def create_approval_request(
    bill: Bill,
    decision: Decision,
    config: AgentConfig,
    created_at: int | None = None,
) -> ApprovalRequest:
    return ApprovalRequest(
        agent_id=config.id,
        type=ApprovalType.TRANSACTION,
        amount=bill.amount,
        description=f"Pay Bill: {bill.name}",
        reasoning=decision.reason,
        risk_level=decision.risk_level,
        decision_tree=decision.decision_tree,
        created_at=now_ms() if created_at is None else created_at,
    )


# ════════════════════════════════════════════════════════════════
# Planning helpers
# ════════════════════════════════════════════════════════════════


def schedule_bills(bills: Iterable[Bill]) -> list[Bill]:
    """Order bills by priority (essential first), then by due date."""
    return sorted(bills, key=lambda b: (PRIORITY_ORDER.index(b.priority), b.due_date))


def total_due(bills: Iterable[Bill]) -> Decimal:
    return sum((b.amount for b in bills if not b.is_paid), Decimal("0"))


def upcoming_bills(bills: Iterable[Bill], now: int, days_ahead: int = 7) -> list[Bill]:
    """Unpaid bills due within ``days_ahead`` days of ``now``."""
    horizon = now + days_ahead * DAY_MS
    return [b for b in bills if not b.is_paid and b.due_date <= horizon]
