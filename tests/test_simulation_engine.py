"""
Tests for the Simulation Engine.

Validates:
- Event seeding and routing to the decision policies
- Commit / reject / escalate handling of verdicts
- The single-outstanding-approval protocol and its forced pause
- Guardrail vetoes layered over policy verdicts
- Stop / reset with an approval outstanding
- Completion, daily rollover and error reporting

The engine is driven by a fake wall clock and explicit heartbeats, except
for one test that runs the asyncio driver end to end.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from spendguard.config import SpendGuardSettings
from spendguard.domain.schema import (
    ActionKind,
    AgentConfigOverrides,
    AgentStatus,
    AgentType,
    Bill,
    BillPriority,
    EngineState,
    EventSpec,
    EventType,
    Investment,
    InvestmentKind,
    Merchant,
    Product,
    Scenario,
    ScenarioObjective,
    ScenarioType,
    SpendingLimits,
    Subscription,
    SubscriptionAlternative,
    TransactionType,
)
from spendguard.engine.simulation import SimulationEngine

START = 1_000_000
STAGGER = 5000


class FakeClock:
    """Manually advanced wall clock in ms."""

    def __init__(self, start: int = START):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


MERCHANTS = [
    Merchant(id="fairprice", name="FairPrice", category="Groceries"),
    Merchant(id="challenger", name="Challenger", category="Electronics"),
]

MILO = Product(id="prod-1", name="Milo 1.5kg", category="Groceries",
               merchant_id="fairprice", price=Decimal("14.95"), rating=4.8)
HUB = Product(id="prod-5", name="USB-C Hub", category="Electronics",
              merchant_id="challenger", price=Decimal("59.90"), rating=4.3)
LUCKY = Product(id="prod-11", name="Lucky Draw Tickets", category="Gambling",
                merchant_id="sg-lucky-88", price=Decimal("20.00"), rating=2.1)
STRANGER = Product(id="prod-12", name="Kaya Jar", category="Groceries",
                   merchant_id="new-shop", price=Decimal("10.00"), rating=4.0)


def _shopping(*products: Product, **overrides) -> Scenario:
    fields = dict(
        id="shop-test",
        name="Shopping test",
        type=ScenarioType.SHOPPING,
        initial_balance=Decimal("500"),
        initial_config=AgentConfigOverrides(spending_limits=SpendingLimits(
            per_transaction=Decimal("100"), daily=Decimal("300"),
            auto_approve_threshold=Decimal("25"),
        )),
        merchants=MERCHANTS,
        products=list(products),
    )
    fields.update(overrides)
    return Scenario(**fields)


class EngineHarness:
    """Engine wired to a fake clock with recording callbacks."""

    def __init__(self, scenario: Scenario, engine_settings: SpendGuardSettings | None = None):
        self.clock = FakeClock()
        self.requests = []
        self.processed = []
        self.errors = []
        self.completions = 0
        self.engine = SimulationEngine(
            scenario,
            clock=self.clock,
            engine_settings=engine_settings,
            on_event_processed=self.processed.append,
            on_approval_required=self.requests.append,
            on_simulation_complete=self._completed,
            on_error=self.errors.append,
        )

    def _completed(self) -> None:
        self.completions += 1

    def advance(self, ms: int, step: int = 100) -> None:
        for _ in range(ms // step):
            self.clock.advance(step)
            self.engine.time_controller.heartbeat()

    def descriptions(self, kind: ActionKind) -> list[str]:
        return [action.description for action in self.engine.action_log.of_type(kind)]


class TestLifecycle:

    def test_states(self):
        harness = EngineHarness(_shopping(MILO, HUB))
        engine = harness.engine
        assert engine.state == EngineState.UNINITIALIZED
        engine.start()
        assert engine.state == EngineState.RUNNING
        engine.pause()
        assert engine.state == EngineState.PAUSED
        assert engine.resume() is True
        engine.stop()
        assert engine.state == EngineState.STOPPED
        engine.reset()
        assert engine.state == EngineState.UNINITIALIZED

    def test_initialize_requires_scenario(self):
        with pytest.raises(ValueError):
            SimulationEngine(clock=FakeClock()).initialize()

    def test_initialize_seeds_events_and_agents(self):
        harness = EngineHarness(_shopping(MILO, HUB))
        harness.engine.initialize()
        pending = harness.engine.event_queue.get_pending_events()
        assert [e.scheduled_time for e in pending] == [START + STAGGER, START + 2 * STAGGER]
        assert all(e.payload["action"] == "evaluate_product" for e in pending)
        agent = harness.engine.get_agent(AgentType.SHOPPING)
        assert agent.id == "shopping-agent"
        assert agent.spending_limits.auto_approve_threshold == Decimal("25")
        assert harness.engine.get_agent(AgentType.BILLPAY) is None
        assert harness.engine.wallet.balance == Decimal("500")

    def test_stats(self):
        harness = EngineHarness(_shopping(MILO, HUB))
        harness.engine.start()
        stats = harness.engine.get_stats()
        assert stats["state"] == "running"
        assert stats["events"] == {"pending": 2, "processed": 0}
        assert stats["balance"] == Decimal("500")
        assert stats["speed"] == 1

    def test_nothing_dispatched_before_due(self):
        harness = EngineHarness(_shopping(MILO))
        harness.engine.start()
        harness.advance(STAGGER - 100)
        assert harness.processed == []


class TestVerdicts:

    def test_auto_approved_purchase_commits(self):
        harness = EngineHarness(_shopping(MILO))
        harness.engine.start()
        harness.advance(STAGGER)

        assert harness.engine.wallet.balance == Decimal("485.05")
        assert "Completed: Purchased: Milo 1.5kg for $14.95" in harness.descriptions(ActionKind.EXECUTE)
        assert len(harness.processed) == 1
        assert harness.processed[0].processed is True
        tx = harness.engine.wallet.recent_transactions()[0]
        assert tx.merchant_name == "FairPrice"
        assert tx.timestamp == START + STAGGER

    def test_drained_queue_completes_run(self):
        harness = EngineHarness(_shopping(MILO))
        harness.engine.start()
        harness.advance(STAGGER)
        assert harness.engine.state == EngineState.COMPLETED
        assert harness.completions == 1
        assert harness.engine.get_agent_status("shopping-agent") == AgentStatus.COMPLETED

    def test_blocked_category_vetoed(self):
        harness = EngineHarness(_shopping(LUCKY))
        harness.engine.start()
        harness.advance(STAGGER)

        assert harness.engine.wallet.get_transaction_count() == 0
        assert harness.requests == []
        assert (
            "Rejected: Transaction blocked: Category 'Gambling' is restricted."
            in harness.descriptions(ActionKind.COMPLETE)
        )

    def test_new_merchant_escalated(self):
        harness = EngineHarness(_shopping(STRANGER))
        harness.engine.start()
        harness.advance(STAGGER)

        assert len(harness.requests) == 1
        request = harness.requests[0]
        assert "New merchant detected" in request.reasoning
        assert request.decision_tree.find("guardrail_check") is not None

    def test_cooldown_escalates_second_purchase(self):
        cheap = MILO.model_copy(update={"id": "prod-2", "name": "Jasmine Rice 5kg"})
        harness = EngineHarness(_shopping(MILO, cheap))
        harness.engine.start()
        harness.advance(2 * STAGGER)

        assert harness.engine.wallet.get_transaction_count() == 1
        assert len(harness.requests) == 1
        assert harness.requests[0].reasoning.startswith("Cooling period active")


class TestApprovalProtocol:

    def setup_method(self):
        self.harness = EngineHarness(_shopping(HUB, MILO.model_copy(update={"id": "prod-9"})))
        self.engine = self.harness.engine
        self.engine.start()
        self.harness.advance(STAGGER)
        self.request = self.harness.requests[0]

    def test_escalation_pauses_and_reserves(self):
        assert self.engine.state == EngineState.AWAITING_APPROVAL
        assert self.engine.get_current_approval_request() == self.request
        assert self.engine.time_controller.is_paused
        assert self.engine.wallet.available_balance == Decimal("440.10")
        assert self.engine.wallet.balance == Decimal("500")
        assert self.engine.get_agent_status("shopping-agent") == AgentStatus.WAITING_APPROVAL
        assert self.request.description == "Purchase: USB-C Hub"

    def test_resume_refused_while_pending(self):
        assert self.engine.resume() is False
        self.harness.advance(3 * STAGGER)
        assert len(self.harness.processed) == 1

    def test_simultaneous_event_waits_for_resolution(self):
        self.engine.add_event(EventSpec(
            scheduled_time=START + STAGGER, type=EventType.USER_TRIGGER, payload={"label": "ping"},
        ))
        self.harness.advance(3 * STAGGER)
        assert len(self.harness.processed) == 1
        assert len(self.engine.event_queue) == 2

        self.engine.approve_request(self.request.id)
        self.harness.advance(100)
        assert len(self.harness.processed) == 2
        assert self.harness.processed[1].type == EventType.USER_TRIGGER

    def test_stale_id_is_noop(self):
        assert self.engine.approve_request("approval_unknown") is False
        assert self.engine.reject_request("approval_unknown") is False
        assert self.engine.state == EngineState.AWAITING_APPROVAL

    def test_approve_commits_reservation(self):
        assert self.engine.approve_request(self.request.id) is True
        assert self.engine.wallet.balance == Decimal("440.10")
        assert self.engine.wallet.active_reservations() == []
        assert self.engine.state == EngineState.RUNNING
        assert "User approved: Purchase: USB-C Hub" in self.harness.descriptions(ActionKind.EXECUTE)
        assert self.engine.approve_request(self.request.id) is False

    def test_approval_without_reservation_is_not_executed(self):
        reservation = self.engine.wallet.active_reservations()[0]
        self.engine.wallet.release_reservation(reservation.id)

        assert self.engine.approve_request(self.request.id) is True
        assert self.engine.wallet.get_transaction_count() == 0
        assert "User approved: Purchase: USB-C Hub" not in self.harness.descriptions(ActionKind.EXECUTE)
        last = self.engine.action_log.entries()[-1]
        assert last.type == ActionKind.COMPLETE
        assert last.description == "Approved but not committed: Purchase: USB-C Hub"
        assert last.data["committed"] is False
        assert self.engine.state == EngineState.RUNNING

    def test_reject_releases_reservation(self):
        assert self.engine.reject_request(self.request.id) is True
        assert self.engine.wallet.available_balance == Decimal("500")
        assert self.engine.wallet.get_transaction_count() == 0
        assert "User rejected: Purchase: USB-C Hub" in self.harness.descriptions(ActionKind.COMPLETE)

    def test_run_continues_after_resolution(self):
        self.engine.reject_request(self.request.id)
        self.harness.advance(STAGGER)
        assert len(self.harness.processed) == 2

    def test_stop_discards_pending(self):
        self.engine.stop()
        assert self.engine.get_current_approval_request() is None
        assert self.engine.wallet.available_balance == Decimal("500")
        last = self.engine.action_log.entries()[-1]
        assert last.data["resolution"] == "discarded"
        assert self.engine.approve_request(self.request.id) is False


class TestStopWithRejectFlag:

    def test_stop_rejects_pending(self):
        harness = EngineHarness(
            _shopping(HUB), engine_settings=SpendGuardSettings(reject_pending_on_stop=True)
        )
        harness.engine.start()
        harness.advance(STAGGER)
        harness.engine.stop()
        last = harness.engine.action_log.entries()[-1]
        assert last.data["resolution"] == "rejected"
        assert last.description.startswith("Auto-rejected on stop")


class TestOtherAgents:

    def test_essential_bill_paid(self):
        bill = Bill(id="bill-7", name="Town Council", amount=Decimal("40"), due_date=START + 1000,
                    category="Housing", priority=BillPriority.ESSENTIAL)
        scenario = _shopping(bills=[bill], type=ScenarioType.BILLPAY)
        harness = EngineHarness(scenario)
        harness.engine.start()
        harness.advance(1000)

        tx = harness.engine.wallet.recent_transactions()[0]
        assert tx.description == "Paid bill: Town Council"
        assert tx.agent_id == "billpay-agent"

    def test_large_bill_escalated_by_threshold(self):
        bill = Bill(id="bill-2", name="SP Group Utilities", amount=Decimal("150"),
                    due_date=START + 1000, category="Utilities", priority=BillPriority.ESSENTIAL)
        scenario = _shopping(bills=[bill], initial_config=AgentConfigOverrides(
            spending_limits=SpendingLimits(
                per_transaction=Decimal("200"), daily=Decimal("600"),
                auto_approve_threshold=Decimal("50"),
            ),
        ))
        harness = EngineHarness(scenario)
        harness.engine.start()
        harness.advance(1000)

        request = harness.requests[0]
        assert request.description == "Pay Bill: SP Group Utilities"
        assert "exceeds autonomous mandate threshold" in request.reasoning

    def test_subscription_switch_to_free_tier(self):
        spotify = Subscription(
            id="sub-2", name="Spotify Premium", monthly_amount=Decimal("9.90"),
            category="Entertainment", usage_score=0.2, renewal_date=START + 1000,
            alternatives=[SubscriptionAlternative(
                id="alt-1", name="Free Tier with Ads",
                monthly_amount=Decimal("0"), savings=Decimal("9.90"),
            )],
        )
        harness = EngineHarness(_shopping(subscriptions=[spotify]))
        harness.engine.start()
        harness.advance(1000)

        request = harness.requests[0]
        assert request.description == "Switch from Spotify Premium to Free Tier with Ads"
        assert harness.engine.wallet.reserved_amount == Decimal("0")
        assert harness.engine.approve_request(request.id) is True
        assert harness.engine.wallet.get_transaction_count() == 0

    def test_investment_sell_credits_wallet(self):
        growth = Investment(
            id="inv-3", name="Tech Growth Stock", type=InvestmentKind.STOCK,
            current_price=Decimal("180"), previous_price=Decimal("140"),
            risk_level=3, expected_return=0.12, volatility=0.25,
        )
        scenario = _shopping(
            investments=[growth],
            initial_balance=Decimal("10000"),
            initial_config=AgentConfigOverrides(spending_limits=SpendingLimits(
                per_transaction=Decimal("1000"), daily=Decimal("2000"),
                auto_approve_threshold=Decimal("100"),
            )),
        )
        harness = EngineHarness(scenario)
        harness.engine.start()
        harness.advance(STAGGER)

        request = harness.requests[0]
        assert request.description == "SELL Tech Growth Stock"
        harness.engine.approve_request(request.id)
        tx = harness.engine.wallet.recent_transactions()[0]
        assert tx.type == TransactionType.CREDIT
        assert harness.engine.wallet.balance == Decimal("11000")

    def test_disabled_agent_skipped(self):
        harness = EngineHarness(_shopping(MILO))
        harness.engine.initialize()
        agent = harness.engine.get_agent(AgentType.SHOPPING)
        harness.engine.update_agent(agent.model_copy(update={"enabled": False}))
        harness.engine.start()
        harness.advance(STAGGER)
        assert harness.engine.wallet.get_transaction_count() == 0
        assert any("is disabled" in d for d in harness.descriptions(ActionKind.COMPLETE))


class TestEventHandling:

    def test_bad_payload_reported(self):
        harness = EngineHarness(_shopping(MILO))
        harness.engine.start()
        harness.engine.add_event(EventSpec(
            scheduled_time=START + 100, type=EventType.AGENT_ACTION,
            payload={"action": "evaluate_product", "product": {"id": "broken"}},
        ))
        harness.engine.add_event(EventSpec(
            scheduled_time=START + 200, type=EventType.AGENT_ACTION,
            payload={"action": "dance"},
        ))
        harness.advance(200)

        assert len(harness.errors) == 2
        assert len(harness.processed) == 2
        assert harness.engine.state == EngineState.RUNNING

    def test_market_change_without_investment_is_noted(self):
        harness = EngineHarness(_shopping(MILO))
        harness.engine.start()
        harness.engine.add_event(EventSpec(
            scheduled_time=START + 100, type=EventType.MARKET_CHANGE, payload={"index": "STI"},
        ))
        harness.advance(100)
        assert "Analyzing market changes" in harness.descriptions(ActionKind.EVALUATE)

    def test_daily_spend_rolls_over(self):
        harness = EngineHarness(
            _shopping(MILO),
            engine_settings=SpendGuardSettings(simulated_day_ms=1000, product_stagger_ms=500),
        )
        harness.engine.start()
        harness.engine.add_event(EventSpec(scheduled_time=START + 5000, type=EventType.USER_TRIGGER))
        harness.advance(500)
        assert harness.engine.wallet.daily_spent == Decimal("14.95")
        harness.advance(600)
        assert harness.engine.wallet.daily_spent == Decimal("0")
        assert harness.engine.wallet.balance == Decimal("485.05")

    def test_daily_rollover_after_restart(self):
        harness = EngineHarness(
            _shopping(MILO),
            engine_settings=SpendGuardSettings(
                simulated_day_ms=1000, product_stagger_ms=500, complete_when_drained=False,
            ),
        )
        harness.engine.start()
        harness.advance(2500)
        harness.engine.stop()
        harness.engine.start()

        harness.engine.wallet.add_transaction(
            amount=Decimal("5"), type=TransactionType.DEBIT,
            agent_id="shopping-agent", description="Purchased: Kaya Jar",
        )
        assert harness.engine.wallet.daily_spent == Decimal("5")
        harness.advance(1100)
        assert harness.engine.wallet.daily_spent == Decimal("0")


class TestObjectives:

    def test_required_objectives_complete_run(self):
        scenario = _shopping(MILO, objectives=[
            ScenarioObjective(id="obj-1", description="Approve a purchase"),
            ScenarioObjective(id="obj-2", description="Optional", is_optional=True),
        ])
        harness = EngineHarness(scenario, engine_settings=SpendGuardSettings(complete_when_drained=False))
        harness.engine.start()
        harness.advance(100)
        assert harness.engine.state == EngineState.RUNNING

        assert harness.engine.complete_objective("obj-1") is True
        assert harness.engine.complete_objective("obj-9") is False
        assert harness.engine.completion_percentage() == 50
        harness.advance(100)
        assert harness.engine.state == EngineState.COMPLETED

    def test_no_objectives_is_zero_percent(self):
        assert EngineHarness(_shopping(MILO)).engine.completion_percentage() == 0


class TestAsyncDriver:

    def test_runs_to_completion_on_event_loop(self):
        fast = SpendGuardSettings(tick_interval_ms=5, frame_interval_ms=1, product_stagger_ms=20)

        async def run() -> SimulationEngine:
            done = asyncio.Event()
            engine = SimulationEngine(
                _shopping(MILO), engine_settings=fast, on_simulation_complete=done.set
            )
            engine.start()
            await asyncio.wait_for(done.wait(), timeout=5)
            return engine

        engine = asyncio.run(run())
        assert engine.state == EngineState.COMPLETED
        assert engine.wallet.balance == Decimal("485.05")
