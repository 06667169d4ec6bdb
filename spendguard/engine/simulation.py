"""
Simulation Engine — discrete-event driver with a human approval gate.

The engine owns a TimeController and an EventQueue and drives them from
the controller's tick callback:

    Uninitialized -> Stopped -> Running <-> Paused
                                   |
                                   v
                           AwaitingApproval -> Running (after approve/reject)

Per tick it dispatches at most ONE ready event. The event is routed to the
decision policy of the matching agent type; the policy verdict then passes
the guardrail validator, which may veto it (hard block -> reject) or
escalate it (approve -> request approval). The final verdict:

- approve           → commit through the wallet, log ``execute``
- reject            → log ``complete`` with the reason, no ledger effect
- request approval  → reserve the funds, pause the clock, notify the host

While an approval is outstanding the tick handler does nothing and
``resume`` is refused; ``approve_request`` / ``reject_request`` with the
matching id resolve it and restart the clock. Stale ids are no-ops.

Collaborators (queue, clock, wallet, action log, agent roster) are
injected; missing ones are created from settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ValidationError

from spendguard.config import SpendGuardSettings, settings as default_settings
from spendguard.domain.schema import (
    ActionKind,
    AgentConfig,
    AgentContext,
    AgentStatus,
    AgentType,
    ApprovalRequest,
    Bill,
    Decision,
    DecisionAction,
    DecisionNode,
    EngineState,
    EventSpec,
    EventType,
    Investment,
    NodeResult,
    NodeType,
    Product,
    Scenario,
    ScenarioObjective,
    SimulationEvent,
    SpendingLimits,
    Subscription,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
    TradeAction,
)
from spendguard.engine.event_queue import EventQueue
from spendguard.engine.time_controller import TimeController
from spendguard.governance.guardrails import validate_mandate
from spendguard.ledger.actions import ActionLog
from spendguard.ledger.service import InsufficientFundsError, WalletService
from spendguard.policies import registry
from spendguard.policies.base import PolicyPreconditionError, append_child
from spendguard.policies.subscription import CANCEL, SWITCH

logger = logging.getLogger(__name__)

ENGINE_AGENT_ID = "engine"
RECENT_HISTORY = 50

DEFAULT_LIMITS = SpendingLimits(
    per_transaction=Decimal("100"),
    daily=Decimal("300"),
    auto_approve_threshold=Decimal("25"),
)


class UnroutableEventError(Exception):
    """Raised internally for an event the engine cannot route; reported via on_error."""
    pass


@dataclass
class PendingApproval:
    """The single outstanding approval and what committing it would do."""

    request: ApprovalRequest
    agent_id: str
    draft: TransactionDraft | None
    reservation_id: str | None = None
    bill_id: str | None = None


class SimulationEngine:
    """Advances simulated time and routes due events through the policies."""

    def __init__(
        self,
        scenario: Scenario | None = None,
        wallet: WalletService | None = None,
        agents: Iterable[AgentConfig] | None = None,
        event_queue: EventQueue | None = None,
        time_controller: TimeController | None = None,
        action_log: ActionLog | None = None,
        policy_options: dict[AgentType, BaseModel] | None = None,
        engine_settings: SpendGuardSettings | None = None,
        clock: Callable[[], int] | None = None,
        on_event_processed: Callable[[SimulationEvent], None] | None = None,
        on_approval_required: Callable[[ApprovalRequest], None] | None = None,
        on_simulation_complete: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.settings = engine_settings or default_settings
        self.scenario = scenario

        if time_controller is None:
            time_controller = TimeController(
                speed=self.settings.default_speed,
                tick_interval_ms=self.settings.tick_interval_ms,
                frame_interval_ms=self.settings.frame_interval_ms,
                clock=clock,
            )
        time_controller.on_tick = self._handle_tick
        self.time_controller = time_controller
        self._clock = clock or time_controller.clock

        self.event_queue = event_queue or EventQueue()
        self.wallet = wallet or WalletService(self.settings.database_url, clock=self._clock)
        self.action_log = action_log or ActionLog()
        self.policy_options = dict(policy_options or {})

        self._agents: dict[AgentType, AgentConfig] = {}
        for agent in agents or ():
            self._agents.setdefault(agent.type, agent)
        self._agent_status: dict[str, AgentStatus] = {}

        self.on_event_processed = on_event_processed
        self.on_approval_required = on_approval_required
        self.on_simulation_complete = on_simulation_complete
        self.on_error = on_error

        self._initialized = False
        self._completed = False
        self._pending: PendingApproval | None = None
        self._objectives: list[ScenarioObjective] = []
        self._paid_bills: set[str] = set()
        self._day_index = 0

    # ════════════════════════════════════════════════════════════
    # Lifecycle
    # ════════════════════════════════════════════════════════════

    def initialize(self, scenario: Scenario | None = None) -> None:
        """
        Prepare a run: reset the wallet, clear the action log, load the
        objectives and schedule the scenario's content as events.

        Idempotent for the same scenario.

        Raises:
            ValueError: If no scenario was given here or at construction.
        """
        if scenario is not None and scenario is not self.scenario:
            self.scenario = scenario
            self._initialized = False
        if self._initialized:
            return
        if self.scenario is None:
            raise ValueError("Cannot initialize a simulation without a scenario")

        scenario = self.scenario
        self.wallet.reset(scenario.initial_balance, scenario.daily_limit)
        self.action_log.clear()
        self.event_queue.reset()
        self._objectives = [objective.model_copy() for objective in scenario.objectives]
        self._paid_bills.clear()
        self._pending = None
        self._completed = False
        self._day_index = 0

        for agent_type in _content_agent_types(scenario):
            self._agent_for(agent_type)
        self._agent_status = {agent.id: AgentStatus.IDLE for agent in self._agents.values()}

        scheduled = self._schedule_initial_events(self._clock())
        self._initialized = True
        logger.info(
            "Simulation initialized: scenario=%s events=%d agents=%s",
            scenario.id, scheduled, ",".join(a.id for a in self._agents.values()),
        )

    def start(self) -> None:
        if not self._initialized:
            self.initialize()
        if not self.time_controller.is_running:
            # A fresh start re-anchors elapsed time at zero.
            self._day_index = 0
        self.time_controller.start()
        logger.info("Simulation started: scenario=%s", self.scenario.id)

    def pause(self) -> None:
        self.time_controller.pause()

    def resume(self) -> bool:
        """Resume the clock. Refused (False) while an approval is outstanding."""
        if self._pending is not None:
            logger.info("Resume refused: approval %s outstanding", self._pending.request.id)
            return False
        self.time_controller.resume()
        return True

    def stop(self) -> None:
        """Halt the run. An outstanding approval is dropped and its funds released."""
        self._discard_pending("stop")
        self.time_controller.stop()
        logger.info("Simulation stopped")

    def set_speed(self, speed: int) -> None:
        self.time_controller.set_speed(speed)

    def get_speed(self) -> int:
        return self.time_controller.get_speed()

    def reset(self) -> None:
        """Back to Uninitialized; the next start re-seeds the scenario."""
        self.stop()
        self.event_queue.reset()
        self.time_controller.reset()
        self._initialized = False
        self._completed = False
        self._paid_bills.clear()
        self._day_index = 0

    @property
    def state(self) -> EngineState:
        if not self._initialized:
            return EngineState.UNINITIALIZED
        if self._completed:
            return EngineState.COMPLETED
        if self._pending is not None:
            return EngineState.AWAITING_APPROVAL
        if self.time_controller.is_active():
            return EngineState.RUNNING
        if self.time_controller.is_running:
            return EngineState.PAUSED
        return EngineState.STOPPED

    # ════════════════════════════════════════════════════════════
    # Approval protocol
    # ════════════════════════════════════════════════════════════

    def get_current_approval_request(self) -> ApprovalRequest | None:
        return self._pending.request if self._pending is not None else None

    def approve_request(self, request_id: str) -> bool:
        """
        Approve the outstanding request and commit its transaction.

        Returns:
            False (and does nothing) unless ``request_id`` matches the
            outstanding request.
        """
        pending = self._take_pending(request_id)
        if pending is None:
            return False

        now = self.time_controller.get_current_time()
        request = pending.request
        self._set_status(pending.agent_id, AgentStatus.EXECUTING)
        reasoning = f"Approved by user: {request.reasoning}"

        tx = None
        if pending.draft is not None:
            if pending.reservation_id is not None:
                tx = self.wallet.complete_reservation(
                    pending.reservation_id,
                    description=pending.draft.description,
                    merchant_name=pending.draft.merchant_name,
                    category=pending.draft.category,
                    reasoning=reasoning,
                    payment_method=pending.draft.payment_method,
                    timestamp=now,
                )
            else:
                tx = self._commit(
                    pending.agent_id,
                    pending.draft.model_copy(update={"reasoning": reasoning}),
                    now,
                )
        committed = pending.draft is None or tx is not None
        if committed and pending.bill_id is not None:
            self._paid_bills.add(pending.bill_id)

        if committed:
            self.action_log.append(
                agent_id=pending.agent_id,
                type=ActionKind.EXECUTE,
                description=f"User approved: {request.description}",
                data={"request_id": request.id},
                timestamp=now,
            )
            logger.info("Approval granted: request=%s", request.id)
        else:
            self.action_log.append(
                agent_id=pending.agent_id,
                type=ActionKind.COMPLETE,
                description=f"Approved but not committed: {request.description}",
                data={"request_id": request.id, "committed": False},
                timestamp=now,
            )
            logger.warning("Approval granted but nothing committed: request=%s", request.id)
        self._set_status(pending.agent_id, AgentStatus.IDLE)
        self.resume()
        return True

    def reject_request(self, request_id: str) -> bool:
        """Reject the outstanding request; its reservation is released."""
        pending = self._take_pending(request_id)
        if pending is None:
            return False

        if pending.reservation_id is not None:
            self.wallet.release_reservation(pending.reservation_id)
        self.action_log.append(
            agent_id=pending.agent_id,
            type=ActionKind.COMPLETE,
            description=f"User rejected: {pending.request.description}",
            data={"request_id": pending.request.id},
            timestamp=self.time_controller.get_current_time(),
        )
        self._set_status(pending.agent_id, AgentStatus.IDLE)
        logger.info("Approval rejected: request=%s", pending.request.id)
        self.resume()
        return True

    # ════════════════════════════════════════════════════════════
    # Events, agents and objectives
    # ════════════════════════════════════════════════════════════

    def add_event(self, spec: EventSpec) -> str:
        """Inject an ad hoc event into the queue."""
        return self.event_queue.add_event(spec)

    def get_agent(self, agent_type: AgentType) -> AgentConfig | None:
        return self._agents.get(agent_type)

    def update_agent(self, config: AgentConfig) -> None:
        """Replace the roster entry for ``config.type``."""
        self._agents[config.type] = config
        self._agent_status.setdefault(config.id, AgentStatus.IDLE)

    def get_agent_status(self, agent_id: str) -> AgentStatus | None:
        return self._agent_status.get(agent_id)

    @property
    def objectives(self) -> list[ScenarioObjective]:
        return [objective.model_copy() for objective in self._objectives]

    def complete_objective(self, objective_id: str) -> bool:
        for index, objective in enumerate(self._objectives):
            if objective.id == objective_id:
                self._objectives[index] = objective.model_copy(update={"is_completed": True})
                return True
        return False

    def completion_percentage(self) -> int:
        if not self._objectives:
            return 0
        done = sum(1 for objective in self._objectives if objective.is_completed)
        return round(done * 100 / len(self._objectives))

    def get_stats(self) -> dict[str, Any]:
        return {
            "current_time": self.time_controller.get_current_time(),
            "elapsed_time": self.time_controller.get_elapsed_time(),
            "speed": self.time_controller.get_speed(),
            "is_active": self.time_controller.is_active(),
            "state": self.state.value,
            "awaiting_approval": self._pending is not None,
            "events": self.event_queue.get_stats(),
            "balance": self.wallet.balance,
        }

    # ════════════════════════════════════════════════════════════
    # Tick handling and dispatch
    # ════════════════════════════════════════════════════════════

    def _handle_tick(self, delta: int, current_time: int) -> None:
        if self._pending is not None:
            return

        self._roll_daily_spend()

        event = self.event_queue.get_next_event(current_time)
        if event is not None:
            self._dispatch(event, current_time)

        self._check_objectives()

    def _dispatch(self, event: SimulationEvent, now: int) -> None:
        processed = self.event_queue.process_event(event.id)
        if processed is None:
            return
        logger.debug("Dispatching event: id=%s type=%s", event.id, event.type.value)

        try:
            if event.type == EventType.AGENT_ACTION:
                self._handle_agent_action(event, now)
            elif event.type == EventType.BILL_DUE:
                bill = Bill.model_validate(event.payload.get("bill"))
                if bill.id in self._paid_bills:
                    bill = bill.model_copy(update={"is_paid": True})
                self._run_policy(AgentType.BILLPAY, bill, now)
            elif event.type == EventType.MARKET_CHANGE:
                if "investment" in event.payload:
                    investment = Investment.model_validate(event.payload["investment"])
                    self._run_policy(AgentType.INVESTMENT, investment, now)
                else:
                    self._note(now, "Analyzing market changes", event.payload)
            elif event.type == EventType.MERCHANT_OFFER:
                if "product" in event.payload:
                    product = Product.model_validate(event.payload["product"])
                    self._run_policy(AgentType.SHOPPING, product, now)
                else:
                    self._note(now, "Evaluating merchant offer", event.payload)
            else:
                self._note(now, f"User trigger: {event.payload.get('label', event.id)}", event.payload)
        except (ValidationError, PolicyPreconditionError, UnroutableEventError) as exc:
            logger.error("Event %s (%s) could not be handled: %s", event.id, event.type.value, exc)
            if self.on_error is not None:
                self.on_error(exc)

        if self.on_event_processed is not None:
            self.on_event_processed(processed)

    def _handle_agent_action(self, event: SimulationEvent, now: int) -> None:
        action = event.payload.get("action")
        self._note(now, f"Evaluating action: {action}", {"event_id": event.id})

        if action == "evaluate_product":
            self._run_policy(AgentType.SHOPPING, Product.model_validate(event.payload.get("product")), now)
        elif action == "review_subscription":
            subscription = Subscription.model_validate(event.payload.get("subscription"))
            self._run_policy(AgentType.SUBSCRIPTION, subscription, now)
        else:
            raise UnroutableEventError(f"Unknown agent action {action!r} in event {event.id}")

    def _run_policy(self, agent_type: AgentType, item: Any, now: int) -> None:
        agent = self._agent_for(agent_type)
        if not agent.enabled:
            self.action_log.append(
                agent_id=agent.id,
                type=ActionKind.COMPLETE,
                description=f"Skipped: agent {agent.name} is disabled",
                timestamp=now,
            )
            return

        self._set_status(agent.id, AgentStatus.THINKING)
        context = self._context(now)
        decision = registry.evaluate_for(
            agent_type, item, context, agent, self.policy_options.get(agent_type), self.action_log
        )
        draft = self._draft_for(agent_type, item, decision, agent)
        decision = self._apply_guardrails(agent, decision, draft, context, now)

        self.action_log.append(
            agent_id=agent.id,
            type=ActionKind.DECIDE,
            description=f"{decision.action.value}: {decision.reason}",
            data={"risk_level": decision.risk_level, "item_id": getattr(item, "id", None)},
            timestamp=now,
        )

        bill_id = item.id if isinstance(item, Bill) else None

        if decision.action == DecisionAction.APPROVE:
            self._set_status(agent.id, AgentStatus.EXECUTING)
            if draft is not None:
                tx = self._commit(agent.id, draft, now)
                if tx is not None and bill_id is not None:
                    self._paid_bills.add(bill_id)
            self._set_status(agent.id, AgentStatus.IDLE)
        elif decision.action == DecisionAction.REJECT:
            self.action_log.append(
                agent_id=agent.id,
                type=ActionKind.COMPLETE,
                description=f"Rejected: {decision.reason}",
                timestamp=now,
            )
            self._set_status(agent.id, AgentStatus.IDLE)
        else:
            request = registry.approval_request_for(agent_type, item, decision, agent, created_at=now)
            self._request_approval(agent, request, draft, bill_id, now)

    # ════════════════════════════════════════════════════════════
    # Guardrails, commits and approvals
    # ════════════════════════════════════════════════════════════

    def _apply_guardrails(
        self,
        agent: AgentConfig,
        decision: Decision,
        draft: TransactionDraft | None,
        context: AgentContext,
        now: int,
    ) -> Decision:
        """
        Veto layer over verdicts that would move money out of the wallet.

        A hard block turns the verdict into a reject; a mandate requiring
        approval turns an approve into a request for approval. Policy
        rejections are final and skip this step.
        """
        if decision.action == DecisionAction.REJECT:
            return decision
        if draft is None or draft.type != TransactionType.DEBIT:
            return decision

        is_new_merchant = draft.merchant_id is not None and not self._is_known_merchant(draft.merchant_id)
        result = validate_mandate(agent, draft, context.recent_transactions, is_new_merchant, now=now)

        if result.allowed:
            node_result = NodeResult.PASS
        elif result.requires_approval:
            node_result = NodeResult.PENDING
        else:
            node_result = NodeResult.FAIL
        node = DecisionNode(
            id="guardrail_check",
            type=NodeType.CONDITION,
            label="Guardrail mandates satisfied?",
            description=result.reason or "All mandates satisfied",
            result=node_result,
        )
        tree = append_child(decision.decision_tree, node)
        details = dict(decision.details)
        if result.mandate is not None:
            details["guardrail"] = result.mandate

        if result.allowed:
            return decision.model_copy(update={"decision_tree": tree})
        if result.is_blocked:
            logger.warning("Guardrail veto: agent=%s reason=%s", agent.id, result.reason)
            return Decision(
                action=DecisionAction.REJECT,
                reason=result.reason,
                risk_level=5,
                decision_tree=tree,
                amount=decision.amount,
                details=details,
            )
        if decision.action == DecisionAction.APPROVE:
            return Decision(
                action=DecisionAction.REQUEST_APPROVAL,
                reason=result.reason,
                risk_level=decision.risk_level,
                decision_tree=tree,
                amount=decision.amount,
                details=details,
            )
        return decision.model_copy(update={"decision_tree": tree, "details": details})

    def _commit(self, agent_id: str, draft: TransactionDraft, now: int) -> Transaction | None:
        try:
            tx = self.wallet.record(draft.model_copy(update={"agent_id": agent_id}), timestamp=now)
        except InsufficientFundsError as exc:
            logger.warning("Commit refused for agent=%s: %s", agent_id, exc)
            self.action_log.append(
                agent_id=agent_id,
                type=ActionKind.COMPLETE,
                description=f"Failed: {exc}",
                timestamp=now,
            )
            return None
        self.action_log.append(
            agent_id=agent_id,
            type=ActionKind.EXECUTE,
            description=f"Completed: {draft.description} for ${draft.amount}",
            data={"transaction_id": tx.id},
            timestamp=now,
        )
        return tx

    def _request_approval(
        self,
        agent: AgentConfig,
        request: ApprovalRequest,
        draft: TransactionDraft | None,
        bill_id: str | None,
        now: int,
    ) -> None:
        reservation_id = None
        if draft is not None and draft.type == TransactionType.DEBIT:
            reservation = self.wallet.create_reservation(
                draft.amount, agent.id, request.description,
                merchant_id=draft.merchant_id, timestamp=now,
            )
            if reservation is None:
                self.action_log.append(
                    agent_id=agent.id,
                    type=ActionKind.COMPLETE,
                    description=f"Rejected: cannot hold ${draft.amount} for {request.description}",
                    timestamp=now,
                )
                self._set_status(agent.id, AgentStatus.IDLE)
                return
            reservation_id = reservation.id

        self._pending = PendingApproval(
            request=request,
            agent_id=agent.id,
            draft=draft,
            reservation_id=reservation_id,
            bill_id=bill_id,
        )
        self.time_controller.pause()
        self._set_status(agent.id, AgentStatus.WAITING_APPROVAL)
        self.action_log.append(
            agent_id=agent.id,
            type=ActionKind.WAIT,
            description=f"Awaiting approval: {request.description}",
            data={"request_id": request.id, "risk_level": request.risk_level},
            timestamp=now,
        )
        logger.info(
            "Approval required: request=%s agent=%s amount=%s",
            request.id, agent.id, request.amount,
        )
        if self.on_approval_required is not None:
            self.on_approval_required(request)

    def _take_pending(self, request_id: str) -> PendingApproval | None:
        pending = self._pending
        if pending is None or pending.request.id != request_id:
            return None
        self._pending = None
        return pending

    def _discard_pending(self, cause: str) -> None:
        pending = self._pending
        if pending is None:
            return
        self._pending = None
        if pending.reservation_id is not None:
            self.wallet.release_reservation(pending.reservation_id)

        resolution = "rejected" if self.settings.reject_pending_on_stop else "discarded"
        if resolution == "rejected":
            description = f"Auto-rejected on {cause}: {pending.request.description}"
        else:
            description = f"Discarded on {cause}: {pending.request.description}"
        self.action_log.append(
            agent_id=pending.agent_id,
            type=ActionKind.COMPLETE,
            description=description,
            data={"request_id": pending.request.id, "resolution": resolution},
            timestamp=self.time_controller.get_current_time(),
        )
        self._set_status(pending.agent_id, AgentStatus.IDLE)
        logger.warning("Outstanding approval %s %s on %s", pending.request.id, resolution, cause)

    # ════════════════════════════════════════════════════════════
    # Internal helpers
    # ════════════════════════════════════════════════════════════

    def _draft_for(
        self,
        agent_type: AgentType,
        item: Any,
        decision: Decision,
        agent: AgentConfig,
    ) -> TransactionDraft | None:
        """What committing ``decision`` would write to the wallet (None: nothing)."""
        if agent_type == AgentType.SHOPPING:
            return TransactionDraft(
                amount=item.price,
                agent_id=agent.id,
                description=f"Purchased: {item.name}",
                merchant_id=item.merchant_id,
                merchant_name=self._merchant_name(item.merchant_id),
                category=item.category,
                payment_method=item.payment_method,
            )
        if agent_type == AgentType.BILLPAY:
            return TransactionDraft(
                amount=item.amount,
                agent_id=agent.id,
                description=f"Paid bill: {item.name}",
                category=item.category,
            )
        if agent_type == AgentType.SUBSCRIPTION:
            change = decision.details.get("change")
            if change == CANCEL:
                return None
            if change == SWITCH:
                alternative = next(
                    (alt for alt in item.alternatives if alt.id == decision.details.get("alternative_id")),
                    None,
                )
                if alternative is None or alternative.monthly_amount <= 0:
                    return None
                return TransactionDraft(
                    amount=alternative.monthly_amount,
                    agent_id=agent.id,
                    description=f"Switched {item.name} to {alternative.name}",
                    category=item.category,
                )
            if item.monthly_amount <= 0:
                return None
            return TransactionDraft(
                amount=item.monthly_amount,
                agent_id=agent.id,
                description=f"Renewed subscription: {item.name}",
                category=item.category,
            )
        if agent_type == AgentType.INVESTMENT:
            recommendation = decision.details.get("recommendation")
            amount = decision.amount or Decimal("0")
            if recommendation == TradeAction.HOLD.value or amount <= 0:
                return None
            selling = recommendation == TradeAction.SELL.value
            return TransactionDraft(
                amount=amount,
                type=TransactionType.CREDIT if selling else TransactionType.DEBIT,
                agent_id=agent.id,
                description=f"{'Sold' if selling else 'Bought'} {item.name}",
                category="Investment",
            )
        return None

    def _agent_for(self, agent_type: AgentType) -> AgentConfig:
        agent = self._agents.get(agent_type)
        if agent is not None:
            return agent
        if self.scenario is None:
            raise UnroutableEventError(f"No {agent_type.value} agent in the roster")
        agent = AgentConfig(
            id=f"{agent_type.value}-agent",
            name=f"{agent_type.value.title()} Agent",
            type=agent_type,
            spending_limits=DEFAULT_LIMITS,
        ).with_overrides(self.scenario.initial_config)
        self._agents[agent_type] = agent
        self._agent_status.setdefault(agent.id, AgentStatus.IDLE)
        return agent

    def _context(self, now: int) -> AgentContext:
        recent = [
            tx for tx in self.wallet.recent_transactions(RECENT_HISTORY)
            if tx.status == TransactionStatus.COMPLETED
        ]
        return AgentContext(
            balance=self.wallet.available_balance,
            daily_spent=self.wallet.daily_spent,
            daily_limit=self.wallet.daily_limit,
            recent_transactions=recent,
            current_time=now,
        )

    def _is_known_merchant(self, merchant_id: str) -> bool:
        if self.scenario is not None and any(m.id == merchant_id for m in self.scenario.merchants):
            return True
        return self.wallet.has_transacted_with(merchant_id)

    def _merchant_name(self, merchant_id: str) -> str:
        if self.scenario is not None:
            for merchant in self.scenario.merchants:
                if merchant.id == merchant_id:
                    return merchant.name
        return merchant_id

    def _note(self, now: int, description: str, data: dict[str, Any] | None = None) -> None:
        self.action_log.append(
            agent_id=ENGINE_AGENT_ID,
            type=ActionKind.EVALUATE,
            description=description,
            data=data,
            timestamp=now,
        )

    def _set_status(self, agent_id: str, status: AgentStatus) -> None:
        self._agent_status[agent_id] = status

    def _roll_daily_spend(self) -> None:
        day = self.time_controller.get_elapsed_time() // self.settings.simulated_day_ms
        if day > self._day_index:
            self._day_index = day
            self.wallet.reset_daily_spent()
            logger.info("Simulated day %d: daily spend reset", day)

    def _check_objectives(self) -> None:
        if self._completed or self._pending is not None:
            return
        required = [objective for objective in self._objectives if not objective.is_optional]
        objectives_met = bool(required) and all(objective.is_completed for objective in required)
        drained = self.settings.complete_when_drained and len(self.event_queue) == 0
        if objectives_met or drained:
            self._complete("objectives met" if objectives_met else "all events processed")

    def _complete(self, cause: str) -> None:
        self._completed = True
        self.time_controller.stop()
        for agent_id in self._agent_status:
            self._agent_status[agent_id] = AgentStatus.COMPLETED
        logger.info("Simulation complete: %s", cause)
        if self.on_simulation_complete is not None:
            self.on_simulation_complete()

    def _schedule_initial_events(self, base_time: int) -> int:
        scenario = self.scenario
        stagger = self.settings.product_stagger_ms
        specs: list[EventSpec] = []
        for index, product in enumerate(scenario.products):
            specs.append(EventSpec(
                scheduled_time=base_time + (index + 1) * stagger,
                type=EventType.AGENT_ACTION,
                priority=self.settings.product_priority,
                payload={
                    "action": "evaluate_product",
                    "product_id": product.id,
                    "product": product.model_dump(mode="json"),
                },
            ))
        for bill in scenario.bills:
            specs.append(EventSpec(
                scheduled_time=bill.due_date,
                type=EventType.BILL_DUE,
                priority=self.settings.bill_priority,
                payload={"bill_id": bill.id, "bill": bill.model_dump(mode="json")},
            ))
        for subscription in scenario.subscriptions:
            specs.append(EventSpec(
                scheduled_time=subscription.renewal_date,
                type=EventType.AGENT_ACTION,
                priority=self.settings.subscription_priority,
                payload={
                    "action": "review_subscription",
                    "subscription_id": subscription.id,
                    "subscription": subscription.model_dump(mode="json"),
                },
            ))
        for index, investment in enumerate(scenario.investments):
            specs.append(EventSpec(
                scheduled_time=base_time + (index + 1) * stagger,
                type=EventType.MARKET_CHANGE,
                priority=self.settings.market_priority,
                payload={
                    "investment_id": investment.id,
                    "investment": investment.model_dump(mode="json"),
                },
            ))
        self.event_queue.add_events(specs)
        return len(specs)


def _content_agent_types(scenario: Scenario) -> list[AgentType]:
    types = []
    if scenario.products:
        types.append(AgentType.SHOPPING)
    if scenario.bills:
        types.append(AgentType.BILLPAY)
    if scenario.subscriptions:
        types.append(AgentType.SUBSCRIPTION)
    if scenario.investments:
        types.append(AgentType.INVESTMENT)
    return types
