"""
SpendGuard Schema — Pydantic models for every simulation entity.

These models are the canonical data structures shared by the event queue,
the guardrail validator, the decision policies, the wallet ledger and the
simulation engine. Money is always ``Decimal``; scores and ratios are
``float``; virtual time is integer milliseconds.

References:
    Event Queue       — SimulationEvent / EventSpec
    Agent roster      — AgentConfig, SpendingLimits, RiskSettings
    Guardrails        — MandateConstraint, GuardrailSettings, DEFAULT_MANDATES
    Decision output   — Decision, DecisionNode, ApprovalRequest
    Scenario content  — Merchant, Product, Bill, Subscription, Investment
"""

from __future__ import annotations

import enum
import time
from decimal import Decimal
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

T = TypeVar("T")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    """Generate a short unique identifier such as ``evt_3f9a0c1d2e4b``."""
    return f"{prefix}_{uuid4().hex[:12]}"


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class AgentType(str, enum.Enum):
    """Agent specialisations; each maps to exactly one decision policy."""

    SHOPPING = "shopping"
    BILLPAY = "billpay"
    SUBSCRIPTION = "subscription"
    INVESTMENT = "investment"


class AgentStatus(str, enum.Enum):
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING = "executing"
    WAITING_APPROVAL = "waiting_approval"
    COMPLETED = "completed"


class EventType(str, enum.Enum):
    """Kinds of scheduled simulation events."""

    AGENT_ACTION = "agent_action"
    BILL_DUE = "bill_due"
    MARKET_CHANGE = "market_change"
    MERCHANT_OFFER = "merchant_offer"
    USER_TRIGGER = "user_trigger"


class DecisionAction(str, enum.Enum):
    """Verdict of a decision policy."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_APPROVAL = "request_approval"


class NodeType(str, enum.Enum):
    CONDITION = "condition"
    ACTION = "action"
    OUTCOME = "outcome"


class NodeResult(str, enum.Enum):
    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GovernanceCategory(str, enum.Enum):
    """What a mandate constraint governs."""

    AUTHORIZATION = "authorization"
    SPENDING_LIMIT = "spending_limit"
    CATEGORY_RESTRICTION = "category_restriction"
    COOLDOWN = "cooldown"


class PaymentMethod(str, enum.Enum):
    """Local payment rails a transaction may be routed through."""

    PAYNOW = "PayNow"
    NETS = "NETS"
    GRABPAY = "GrabPay"
    PAYLAH = "DBS PayLah!"


class TransactionType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"
    RESERVED = "reserved"


class BillPriority(str, enum.Enum):
    """Bill priorities in scheduling order (essential first)."""

    ESSENTIAL = "essential"
    IMPORTANT = "important"
    OPTIONAL = "optional"


class ApprovalType(str, enum.Enum):
    TRANSACTION = "transaction"
    SUBSCRIPTION_CHANGE = "subscription_change"
    INVESTMENT = "investment"


class ActionKind(str, enum.Enum):
    """Step types recorded in the agent action log."""

    SEARCH = "search"
    EVALUATE = "evaluate"
    DECIDE = "decide"
    EXECUTE = "execute"
    WAIT = "wait"
    COMPLETE = "complete"


class InvestmentKind(str, enum.Enum):
    STOCK = "stock"
    BOND = "bond"
    ETF = "etf"
    CRYPTO = "crypto"


class TradeAction(str, enum.Enum):
    """Recommendation produced by the investment scoring heuristic."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class ScenarioType(str, enum.Enum):
    SHOPPING = "shopping"
    SUBSCRIPTION = "subscription"
    BILLPAY = "billpay"
    INVESTMENT = "investment"


class Difficulty(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class EngineState(str, enum.Enum):
    """Lifecycle states of the simulation engine."""

    UNINITIALIZED = "uninitialized"
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"


# ════════════════════════════════════════════════════════════════
# Events
# ════════════════════════════════════════════════════════════════


class EventSpec(BaseModel):
    """An event as submitted for scheduling (no id, not yet processed)."""

    scheduled_time: int = Field(description="Virtual time (ms) at which the event becomes ready")
    type: EventType
    priority: int = Field(default=0, description="Higher is more urgent on equal scheduled time")
    payload: dict[str, Any] = Field(default_factory=dict)


class SimulationEvent(EventSpec):
    """A scheduled event held by the event queue."""

    id: str
    processed: bool = False


# ════════════════════════════════════════════════════════════════
# Guardrails (mandate bundle)
# ════════════════════════════════════════════════════════════════


class MandateConstraint(BaseModel, Generic[T]):
    """A named guardrail with its value and the risk it mitigates."""

    value: T
    risk_mitigated: str = Field(description="The concrete risk this constraint defends against")
    severity: Severity
    category: GovernanceCategory
    description: str = ""


class GuardrailSettings(BaseModel):
    """
    The mandate bundle: exactly six named constraints.

    The validator walks these in a fixed order and fails closed when any
    of them is missing.
    """

    require_verification_for_new_merchants: MandateConstraint[bool]
    confirmation_threshold: MandateConstraint[Decimal]
    max_transactions_per_hour: MandateConstraint[int]
    transaction_cooldown_seconds: MandateConstraint[int]
    blocked_categories: MandateConstraint[list[str]]
    allowed_payment_methods: MandateConstraint[list[PaymentMethod]]


DEFAULT_MANDATES = GuardrailSettings(
    require_verification_for_new_merchants=MandateConstraint[bool](
        value=True,
        risk_mitigated="Prevents Merchant Impersonation (Scam Defense)",
        severity=Severity.HIGH,
        category=GovernanceCategory.AUTHORIZATION,
        description=(
            "Requires manual verification if the merchant is not previously "
            "trusted or PayNow-registered."
        ),
    ),
    confirmation_threshold=MandateConstraint[Decimal](
        value=Decimal("50"),
        risk_mitigated="Mitigates Large Unauthorized FAST/PayNow Transfers",
        severity=Severity.MEDIUM,
        category=GovernanceCategory.SPENDING_LIMIT,
        description="Threshold amount above which explicit user confirmation is required.",
    ),
    max_transactions_per_hour=MandateConstraint[int](
        value=5,
        risk_mitigated="Prevents Runaway Transaction Loops / API Errors",
        severity=Severity.MEDIUM,
        category=GovernanceCategory.SPENDING_LIMIT,
        description="Rate limiting for autonomous payments within a 1-hour window.",
    ),
    transaction_cooldown_seconds=MandateConstraint[int](
        value=60,
        risk_mitigated="Phishing Defense & Impulse Control",
        severity=Severity.LOW,
        category=GovernanceCategory.COOLDOWN,
        description="Minimum time window between consecutive autonomous transactions.",
    ),
    blocked_categories=MandateConstraint[list[str]](
        value=[
            "Gambling",
            "Unregulated Crypto",
            "Offshore Investment",
            "CPF Schemes",
            "Unlicensed Financial Advice",
            "Job Scams",
        ],
        risk_mitigated="Regulatory Compliance (MAS/CPF) & High-Risk Exposure",
        severity=Severity.HIGH,
        category=GovernanceCategory.CATEGORY_RESTRICTION,
        description=(
            "Blocks payments for restricted or illegal categories in Singapore "
            "(MAS FAA, SFA, CPF Act)."
        ),
    ),
    allowed_payment_methods=MandateConstraint[list[PaymentMethod]](
        value=[PaymentMethod.PAYNOW, PaymentMethod.NETS, PaymentMethod.PAYLAH],
        risk_mitigated="Payment Channel Security",
        severity=Severity.LOW,
        category=GovernanceCategory.AUTHORIZATION,
        description="Restricts payment to verified local Singapore payment channels.",
    ),
)


# ════════════════════════════════════════════════════════════════
# Agent configuration
# ════════════════════════════════════════════════════════════════


class SpendingLimits(BaseModel):
    """
    Monetary bounds for an agent.

    ``auto_approve_threshold`` is expected to be no greater than
    ``per_transaction``; policies assume this but do not enforce it.
    """

    per_transaction: Decimal = Field(gt=0, description="Maximum amount of a single transaction")
    daily: Decimal = Field(ge=0, description="Maximum total spend per simulated day")
    auto_approve_threshold: Decimal = Field(
        ge=0, description="Amount at or below which no human review is needed"
    )


class RiskSettings(BaseModel):
    max_risk_level: int = Field(default=4, ge=1, le=5)
    require_approval_above: int = Field(
        default=3, ge=0, le=5, description="Risk level above which a human must approve"
    )


class AgentConfigOverrides(BaseModel):
    """Partial agent configuration supplied by a scenario."""

    spending_limits: SpendingLimits | None = None
    risk_settings: RiskSettings | None = None
    allowed_categories: list[str] | None = None
    blocked_merchants: list[str] | None = None


class AgentConfig(BaseModel):
    """Identity, limits and guardrails of one autonomous agent."""

    id: str
    name: str
    type: AgentType
    enabled: bool = True
    spending_limits: SpendingLimits
    risk_settings: RiskSettings = Field(default_factory=RiskSettings)
    allowed_categories: list[str] = Field(
        default_factory=list, description="Empty means every category is allowed"
    )
    blocked_merchants: list[str] = Field(default_factory=list)
    guardrails: GuardrailSettings = Field(
        default_factory=lambda: DEFAULT_MANDATES.model_copy(deep=True)
    )

    def with_overrides(self, overrides: AgentConfigOverrides) -> AgentConfig:
        """Return a copy with every non-null override applied."""
        update = {
            key: getattr(overrides, key)
            for key in AgentConfigOverrides.model_fields
            if getattr(overrides, key) is not None
        }
        return self.model_copy(update=update)


# ════════════════════════════════════════════════════════════════
# Decisions and approvals
# ════════════════════════════════════════════════════════════════


class DecisionNode(BaseModel):
    """One node of the explanation tree attached to every decision."""

    model_config = {"frozen": True}

    id: str
    type: NodeType
    label: str
    description: str | None = None
    result: NodeResult | None = None
    children: list[DecisionNode] = Field(default_factory=list)
    is_active: bool | None = None

    def find(self, node_id: str) -> DecisionNode | None:
        """Depth-first lookup of a node by id."""
        if self.id == node_id:
            return self
        for child in self.children:
            found = child.find(node_id)
            if found is not None:
                return found
        return None

    def walk(self) -> list[DecisionNode]:
        """All nodes in pre-order."""
        nodes = [self]
        for child in self.children:
            nodes.extend(child.walk())
        return nodes


DecisionNode.model_rebuild()


class Decision(BaseModel):
    """A policy verdict with its explanation. Immutable once produced."""

    model_config = {"frozen": True}

    action: DecisionAction
    reason: str
    risk_level: int = Field(ge=0, le=5)
    decision_tree: DecisionNode
    amount: Decimal | None = Field(
        default=None, description="Amount a commit of this decision would move"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def requires_approval(self) -> bool:
        return self.action == DecisionAction.REQUEST_APPROVAL


class ApprovalRequest(BaseModel):
    """A decision escalated to a human; resolved by approve or reject."""

    id: str = Field(default_factory=lambda: new_id("approval"))
    agent_id: str
    type: ApprovalType
    amount: Decimal
    description: str
    reasoning: str
    risk_level: int = Field(ge=0, le=5)
    decision_tree: DecisionNode
    created_at: int = Field(default_factory=now_ms)
    expires_at: int | None = None
    merchant_name: str | None = None
    product_name: str | None = None


# ════════════════════════════════════════════════════════════════
# Ledger-facing entities
# ════════════════════════════════════════════════════════════════


class TransactionDraft(BaseModel):
    """A candidate transaction, before it reaches the wallet ledger."""

    amount: Decimal = Field(ge=0)
    type: TransactionType = TransactionType.DEBIT
    agent_id: str = ""
    description: str = ""
    merchant_id: str | None = None
    merchant_name: str | None = None
    category: str | None = None
    payment_method: PaymentMethod | None = None
    reasoning: str | None = None


class Transaction(BaseModel):
    """A committed wallet ledger transaction."""

    id: str
    timestamp: int
    amount: Decimal
    type: TransactionType
    status: TransactionStatus
    agent_id: str
    description: str
    merchant_id: str | None = None
    merchant_name: str | None = None
    category: str | None = None
    reasoning: str | None = None
    reservation_id: str | None = None
    payment_method: PaymentMethod | None = None


class Reservation(BaseModel):
    """Funds earmarked against the balance pending a final commit."""

    id: str
    amount: Decimal
    agent_id: str
    reason: str
    merchant_id: str | None = None
    created_at: int
    expires_at: int | None = None


class AgentAction(BaseModel):
    """One entry of the append-only agent action log."""

    id: str = Field(default_factory=lambda: new_id("action"))
    agent_id: str
    type: ActionKind
    description: str
    data: dict[str, Any] | None = None
    timestamp: int = Field(default_factory=now_ms)


class AgentContext(BaseModel):
    """Wallet snapshot handed to a decision policy."""

    balance: Decimal
    daily_spent: Decimal = Decimal("0")
    daily_limit: Decimal = Decimal("500")
    recent_transactions: list[Transaction] = Field(default_factory=list)
    current_time: int = Field(
        default_factory=now_ms, description="Virtual time (ms) of the evaluation"
    )


# ════════════════════════════════════════════════════════════════
# Scenario content
# ════════════════════════════════════════════════════════════════


class Merchant(BaseModel):
    id: str
    name: str
    category: str
    trust_score: float = 0.0
    average_price: Decimal = Decimal("0")
    delivery_time: str = ""


class Product(BaseModel):
    id: str
    name: str
    category: str
    merchant_id: str
    price: Decimal = Field(ge=0)
    original_price: Decimal | None = None
    rating: float = Field(default=0.0, ge=0, le=5)
    in_stock: bool = True
    priority: int | None = None
    payment_method: PaymentMethod | None = None


class Bill(BaseModel):
    id: str
    name: str
    amount: Decimal = Field(ge=0)
    due_date: int = Field(description="Virtual time (ms) the bill falls due")
    category: str
    priority: BillPriority
    is_paid: bool = False
    is_recurring: bool = False
    recurring_interval: str | None = None


class SubscriptionAlternative(BaseModel):
    id: str
    name: str
    monthly_amount: Decimal = Field(ge=0)
    features: list[str] = Field(default_factory=list)
    savings: Decimal = Field(description="Monthly saving relative to the current plan")


class Subscription(BaseModel):
    id: str
    name: str
    monthly_amount: Decimal = Field(ge=0)
    category: str
    value: int = 0
    usage_score: float = Field(ge=0, le=1, description="Share of the plan actually used")
    alternatives: list[SubscriptionAlternative] = Field(default_factory=list)
    is_active: bool = True
    renewal_date: int

    @property
    def best_alternative(self) -> SubscriptionAlternative | None:
        """Alternative with the highest savings (first one wins ties)."""
        best: SubscriptionAlternative | None = None
        for alternative in self.alternatives:
            if best is None or alternative.savings > best.savings:
                best = alternative
        return best


class Investment(BaseModel):
    id: str
    name: str
    type: InvestmentKind
    current_price: Decimal
    previous_price: Decimal
    risk_level: int = Field(description="1 (lowest) to 5 (highest)")
    expected_return: float
    volatility: float


class ScenarioObjective(BaseModel):
    id: str
    description: str
    is_completed: bool = False
    is_optional: bool = False
    concept_id: str | None = None


class Scenario(BaseModel):
    """Static input bundle seeding one simulation run."""

    id: str
    name: str
    description: str = ""
    type: ScenarioType
    difficulty: Difficulty = Difficulty.BEGINNER
    initial_balance: Decimal
    daily_limit: Decimal = Decimal("500")
    initial_config: AgentConfigOverrides = Field(default_factory=AgentConfigOverrides)
    objectives: list[ScenarioObjective] = Field(default_factory=list)
    merchants: list[Merchant] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    bills: list[Bill] = Field(default_factory=list)
    subscriptions: list[Subscription] = Field(default_factory=list)
    investments: list[Investment] = Field(default_factory=list)
