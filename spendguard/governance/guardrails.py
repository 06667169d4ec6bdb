"""
Guardrail Validator — mandate enforcement for candidate transactions.

Every transaction an agent wants to make passes through this check before
it may touch the wallet. The result is one of:

- ALLOWED: no mandate objects → proceed
- REQUIRES_APPROVAL: a soft mandate tripped → escalate to a human
- BLOCKED: a compliance mandate tripped → deny, approval cannot override

Mandates are evaluated in a fixed order and the first violated one wins:
blocked category, new-merchant verification, confirmation threshold,
hourly rate limit, cooldown, payment-method allow-list. A bundle with a
missing mandate fails closed.

The validator is a pure function of its inputs; "now" is a parameter so
histories in simulated time (or synthetic test histories) work unchanged.

References:
    GuardrailSettings / DEFAULT_MANDATES in spendguard.domain.schema
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from spendguard.config import settings
from spendguard.domain.schema import (
    AgentConfig,
    PaymentMethod,
    Severity,
    Transaction,
    TransactionDraft,
    now_ms,
)

logger = logging.getLogger(__name__)

ONE_HOUR_MS = 3_600_000

REQUIRED_MANDATES = (
    "blocked_categories",
    "require_verification_for_new_merchants",
    "confirmation_threshold",
    "max_transactions_per_hour",
    "transaction_cooldown_seconds",
    "allowed_payment_methods",
)


@dataclass
class ValidationResult:
    """Outcome of checking a transaction against an agent's mandates."""

    allowed: bool
    requires_approval: bool
    reason: str | None = None
    mitigation_risk: str | None = None
    severity: Severity | None = None
    mandate: str | None = None

    @property
    def is_blocked(self) -> bool:
        """Hard rejection: not allowed and no approval path."""
        return not self.allowed and not self.requires_approval


def validate_mandate(
    agent: AgentConfig,
    transaction: TransactionDraft,
    history: Sequence[Transaction],
    is_new_merchant: bool,
    now: int | None = None,
) -> ValidationResult:
    """
    Check a candidate transaction against the agent's mandate bundle.

    Args:
        agent: Agent whose guardrails apply.
        transaction: The candidate transaction.
        history: Recent transactions, newest first.
        is_new_merchant: Whether the merchant has never been transacted with.
        now: Reference time in ms for the rate-limit and cooldown windows.
            Defaults to the wall clock.

    Returns:
        ValidationResult; the first violated mandate determines it.
    """
    guardrails = getattr(agent, "guardrails", None)
    missing = [
        name for name in REQUIRED_MANDATES
        if guardrails is None or getattr(guardrails, name, None) is None
    ]
    if missing:
        logger.warning(
            "Mandate bundle incomplete for agent=%s missing=%s; failing closed",
            agent.id, ",".join(missing),
        )
        return ValidationResult(
            allowed=False,
            requires_approval=False,
            reason=f"Mandate bundle incomplete: missing {', '.join(missing)}.",
            severity=Severity.HIGH,
            mandate=missing[0],
        )

    now = now_ms() if now is None else now

    # 1. Blocked categories (regulatory compliance, no approval path)
    blocked = guardrails.blocked_categories
    if transaction.category and transaction.category in blocked.value:
        logger.warning(
            "Guardrail block: agent=%s category=%s", agent.id, transaction.category
        )
        return ValidationResult(
            allowed=False,
            requires_approval=False,
            reason=f"Transaction blocked: Category '{transaction.category}' is restricted.",
            mitigation_risk=blocked.risk_mitigated,
            severity=blocked.severity,
            mandate="blocked_categories",
        )

    # 2. New merchant verification
    verification = guardrails.require_verification_for_new_merchants
    if is_new_merchant and verification.value:
        merchant = transaction.merchant_name or transaction.merchant_id
        return _needs_approval(
            "require_verification_for_new_merchants",
            verification,
            f"New merchant detected: '{merchant}'. Manual mandating required.",
        )

    # 3. Confirmation threshold
    threshold = guardrails.confirmation_threshold
    if transaction.amount > Decimal(threshold.value):
        return _needs_approval(
            "confirmation_threshold",
            threshold,
            f"Amount ${transaction.amount} exceeds autonomous mandate threshold "
            f"(${threshold.value}).",
        )

    # 4. Hourly rate limit
    rate = guardrails.max_transactions_per_hour
    window_start = now - ONE_HOUR_MS
    in_window = sum(1 for past in history if past.timestamp > window_start)
    if in_window >= rate.value:
        return _needs_approval(
            "max_transactions_per_hour",
            rate,
            f"Rate limit exceeded: Max {rate.value} transactions per hour.",
        )

    # 5. Cooldown since the most recent transaction
    cooldown = guardrails.transaction_cooldown_seconds
    if history:
        seconds_since_last = (now - history[0].timestamp) / 1000
        if seconds_since_last < cooldown.value:
            wait = math.ceil(cooldown.value - seconds_since_last)
            return _needs_approval(
                "transaction_cooldown_seconds",
                cooldown,
                f"Cooling period active. Please wait {wait}s.",
            )

    # 6. Payment channel allow-list
    methods = guardrails.allowed_payment_methods
    method = transaction.payment_method or PaymentMethod(settings.default_payment_method)
    if method not in methods.value:
        allowed = ", ".join(m.value for m in methods.value)
        return _needs_approval(
            "allowed_payment_methods",
            methods,
            f"Payment method '{method.value}' is restricted. Allowed: {allowed}.",
        )

    return ValidationResult(allowed=True, requires_approval=False)


def _needs_approval(name: str, constraint, reason: str) -> ValidationResult:
    logger.info("Guardrail escalation: mandate=%s reason=%s", name, reason)
    return ValidationResult(
        allowed=False,
        requires_approval=True,
        reason=reason,
        mitigation_risk=constraint.risk_mitigated,
        severity=constraint.severity,
        mandate=name,
    )
