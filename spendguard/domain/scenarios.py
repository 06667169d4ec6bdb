"""
Sample Scenarios — static content bundles for headless runs and tests.

Scenarios are plain data: the engine only reads them to seed events.
Due dates and renewal dates are offsets from a reference time so that a
run started "now" meets its bills and renewals within minutes.
"""

from __future__ import annotations

from decimal import Decimal

from spendguard.domain.schema import (
    AgentConfigOverrides,
    Bill,
    BillPriority,
    Difficulty,
    Investment,
    InvestmentKind,
    Merchant,
    Product,
    RiskSettings,
    Scenario,
    ScenarioObjective,
    ScenarioType,
    SpendingLimits,
    Subscription,
    SubscriptionAlternative,
)

SECOND_MS = 1000

MERCHANTS = [
    Merchant(id="fairprice", name="FairPrice", category="Groceries", trust_score=4.8,
             average_price=Decimal("45"), delivery_time="1-2 days"),
    Merchant(id="cold-storage", name="Cold Storage", category="Groceries", trust_score=4.7,
             average_price=Decimal("65"), delivery_time="1 day"),
    Merchant(id="sheng-siong", name="Sheng Siong", category="Groceries", trust_score=4.6,
             average_price=Decimal("35"), delivery_time="1-2 days"),
    Merchant(id="ya-kun", name="Ya Kun Kaya Toast", category="F&B", trust_score=4.9,
             average_price=Decimal("8"), delivery_time="Same day"),
    Merchant(id="maxwell", name="Maxwell Food Centre", category="Hawker", trust_score=4.8,
             average_price=Decimal("5"), delivery_time="Same day"),
    Merchant(id="challenger", name="Challenger", category="Electronics", trust_score=4.5,
             average_price=Decimal("150"), delivery_time="2-3 days"),
]

PRODUCTS = [
    Product(id="prod-1", name="Milo 1.5kg", category="Groceries", merchant_id="fairprice",
            price=Decimal("14.95"), rating=4.8, priority=1),
    Product(id="prod-2", name="Jasmine Rice 5kg", category="Groceries", merchant_id="fairprice",
            price=Decimal("12.50"), rating=4.7, priority=2),
    Product(id="prod-4", name="Mechanical Keyboard", category="Electronics",
            merchant_id="challenger", price=Decimal("129.00"), rating=4.5, priority=1),
    Product(id="prod-5", name="USB-C Hub", category="Electronics", merchant_id="challenger",
            price=Decimal("59.90"), rating=4.3, priority=2),
    Product(id="prod-6", name="Chicken Rice", category="Hawker", merchant_id="maxwell",
            price=Decimal("4.50"), rating=4.9, priority=4),
    Product(id="prod-8", name="Tiger Beer 6-Pack", category="Groceries",
            merchant_id="cold-storage", price=Decimal("18.90"), rating=4.4, priority=6),
    Product(id="prod-11", name="Lucky Draw Tickets", category="Gambling",
            merchant_id="sg-lucky-88", price=Decimal("20.00"), rating=2.1,
            in_stock=True, priority=9),
]


def _bills(now: int) -> list[Bill]:
    return [
        Bill(id="bill-1", name="HDB Service & Conservancy", amount=Decimal("85"),
             due_date=now + 45 * SECOND_MS, category="Housing",
             priority=BillPriority.ESSENTIAL, is_recurring=True, recurring_interval="monthly"),
        Bill(id="bill-2", name="SP Group Utilities", amount=Decimal("150"),
             due_date=now + 30 * SECOND_MS, category="Utilities",
             priority=BillPriority.ESSENTIAL, is_recurring=True, recurring_interval="monthly"),
        Bill(id="bill-3", name="SingTel Mobile", amount=Decimal("68"),
             due_date=now + 90 * SECOND_MS, category="Telecommunications",
             priority=BillPriority.IMPORTANT, is_recurring=True, recurring_interval="monthly"),
        Bill(id="bill-5", name="EZ-Link Auto Top-up", amount=Decimal("50"),
             due_date=now + 135 * SECOND_MS, category="Transport",
             priority=BillPriority.IMPORTANT, is_recurring=True, recurring_interval="monthly"),
        Bill(id="bill-6", name="Voluntary Savings Top-up", amount=Decimal("500"),
             due_date=now + 180 * SECOND_MS, category="Savings",
             priority=BillPriority.OPTIONAL, is_recurring=True, recurring_interval="monthly"),
    ]


def _subscriptions(now: int) -> list[Subscription]:
    return [
        Subscription(id="sub-1", name="Netflix", monthly_amount=Decimal("15.98"),
                     category="Entertainment", value=8, usage_score=0.85,
                     renewal_date=now + 120 * SECOND_MS),
        Subscription(
            id="sub-2", name="Spotify Premium", monthly_amount=Decimal("9.90"),
            category="Entertainment", value=7, usage_score=0.2,
            renewal_date=now + 45 * SECOND_MS,
            alternatives=[
                SubscriptionAlternative(id="alt-1", name="Free Tier with Ads",
                                        monthly_amount=Decimal("0"),
                                        features=["Ad-supported", "Shuffle only"],
                                        savings=Decimal("9.90")),
                SubscriptionAlternative(id="alt-2", name="Family Plan Split",
                                        monthly_amount=Decimal("3"),
                                        features=["Full features", "Share with 5"],
                                        savings=Decimal("6.90")),
            ],
        ),
        Subscription(
            id="sub-4", name="The Straits Times Premium", monthly_amount=Decimal("29.90"),
            category="News", value=4, usage_score=0.15,
            renewal_date=now + 75 * SECOND_MS,
            alternatives=[
                SubscriptionAlternative(id="alt-3", name="Free Articles",
                                        monthly_amount=Decimal("0"),
                                        features=["5 articles/month"],
                                        savings=Decimal("29.90")),
            ],
        ),
        Subscription(id="sub-5", name="GrabUnlimited", monthly_amount=Decimal("9.90"),
                     category="Transport", value=8, usage_score=0.7,
                     renewal_date=now + 60 * SECOND_MS),
        Subscription(id="sub-6", name="ActiveSG Gym", monthly_amount=Decimal("2.50"),
                     category="Fitness", value=6, usage_score=0.25,
                     renewal_date=now + 150 * SECOND_MS),
    ]


INVESTMENTS = [
    Investment(id="inv-1", name="STI ETF", type=InvestmentKind.ETF,
               current_price=Decimal("3.20"), previous_price=Decimal("3.60"),
               risk_level=2, expected_return=0.07, volatility=0.05),
    Investment(id="inv-2", name="Singapore Savings Bond", type=InvestmentKind.BOND,
               current_price=Decimal("100"), previous_price=Decimal("100"),
               risk_level=1, expected_return=0.03, volatility=0.01),
    Investment(id="inv-3", name="Tech Growth Stock", type=InvestmentKind.STOCK,
               current_price=Decimal("180"), previous_price=Decimal("140"),
               risk_level=3, expected_return=0.12, volatility=0.25),
    Investment(id="inv-4", name="Meme Coin", type=InvestmentKind.CRYPTO,
               current_price=Decimal("0.04"), previous_price=Decimal("0.02"),
               risk_level=5, expected_return=0.40, volatility=0.90),
]


def sample_scenarios(now: int) -> list[Scenario]:
    """The built-in scenario catalogue, anchored at ``now`` (ms)."""
    return [
        Scenario(
            id="shopping-basics",
            name="Shopping Agent",
            description=(
                "Purchase decisions with spending limits and auto-approval thresholds."
            ),
            type=ScenarioType.SHOPPING,
            difficulty=Difficulty.BEGINNER,
            initial_balance=Decimal("500"),
            initial_config=AgentConfigOverrides(
                spending_limits=SpendingLimits(
                    per_transaction=Decimal("100"), daily=Decimal("300"),
                    auto_approve_threshold=Decimal("25"),
                ),
                risk_settings=RiskSettings(max_risk_level=4, require_approval_above=3),
            ),
            objectives=[
                ScenarioObjective(id="obj-1", description="Approve or reject a purchase request"),
                ScenarioObjective(id="obj-2", description="Complete 3 successful transactions"),
                ScenarioObjective(id="obj-3", description="Block a high-risk transaction",
                                  is_optional=True),
            ],
            merchants=MERCHANTS,
            products=PRODUCTS,
        ),
        Scenario(
            id="subscription-manager",
            name="Subscription Manager",
            description="Recurring payments reviewed against usage and cheaper alternatives.",
            type=ScenarioType.SUBSCRIPTION,
            difficulty=Difficulty.INTERMEDIATE,
            initial_balance=Decimal("200"),
            initial_config=AgentConfigOverrides(
                spending_limits=SpendingLimits(
                    per_transaction=Decimal("50"), daily=Decimal("100"),
                    auto_approve_threshold=Decimal("15"),
                ),
                risk_settings=RiskSettings(max_risk_level=3, require_approval_above=2),
            ),
            objectives=[
                ScenarioObjective(id="obj-1", description="Review all active subscriptions"),
                ScenarioObjective(id="obj-2", description="Accept a cost-saving recommendation"),
            ],
            subscriptions=_subscriptions(now),
        ),
        Scenario(
            id="bill-pay",
            name="Bill Pay Automation",
            description="Bill payment with priority scheduling and balance protection.",
            type=ScenarioType.BILLPAY,
            difficulty=Difficulty.INTERMEDIATE,
            initial_balance=Decimal("600"),
            daily_limit=Decimal("600"),
            initial_config=AgentConfigOverrides(
                spending_limits=SpendingLimits(
                    per_transaction=Decimal("200"), daily=Decimal("600"),
                    auto_approve_threshold=Decimal("50"),
                ),
                risk_settings=RiskSettings(max_risk_level=3, require_approval_above=2),
            ),
            objectives=[
                ScenarioObjective(id="obj-1", description="Auto-pay an essential bill"),
                ScenarioObjective(id="obj-2", description="Defer a non-essential bill"),
            ],
            bills=_bills(now),
        ),
        Scenario(
            id="investment-basics",
            name="Investment Agent",
            description="Risk controls and human oversight for automated trades.",
            type=ScenarioType.INVESTMENT,
            difficulty=Difficulty.ADVANCED,
            initial_balance=Decimal("10000"),
            daily_limit=Decimal("2000"),
            initial_config=AgentConfigOverrides(
                spending_limits=SpendingLimits(
                    per_transaction=Decimal("1000"), daily=Decimal("2000"),
                    auto_approve_threshold=Decimal("100"),
                ),
                risk_settings=RiskSettings(max_risk_level=3, require_approval_above=2),
            ),
            objectives=[
                ScenarioObjective(id="obj-1", description="Approve a low-risk trade"),
                ScenarioObjective(id="obj-2", description="Reject a high-risk trade"),
            ],
            investments=INVESTMENTS,
        ),
    ]


def get_scenario(scenario_id: str, now: int) -> Scenario | None:
    for scenario in sample_scenarios(now):
        if scenario.id == scenario_id:
            return scenario
    return None
