"""
SpendGuard — headless scenario runner.

Central entrypoint that:
1. Configures structured logging
2. Loads a sample scenario and builds the simulation engine around it
3. Drives the engine's clock on the asyncio event loop
4. Stands in for the human reviewer, resolving each approval request by a
   fixed rule (approve all, reject all, or approve low-risk only)
5. Prints the action log, the wallet ledger and its integrity check

Usage:
    python -m spendguard.orchestrator --scenario shopping-basics --speed 10
    spendguard-run --scenario bill-pay --approve none
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import logging
import sys

import structlog
from rich.console import Console
from rich.table import Table

from spendguard.config import settings
from spendguard.domain.schema import ApprovalRequest, now_ms
from spendguard.domain.scenarios import get_scenario, sample_scenarios
from spendguard.engine.simulation import SimulationEngine
from spendguard.engine.time_controller import VALID_SPEEDS
from spendguard.ledger.audit import transactions_table

logger = logging.getLogger(__name__)

console = Console()

LOW_RISK_MAX = 2


class ApprovalRule(str, enum.Enum):
    """How the headless reviewer answers approval requests."""

    ALL = "all"
    NONE = "none"
    LOW_RISK = "low-risk"

    def grants(self, request: ApprovalRequest) -> bool:
        if self == ApprovalRule.ALL:
            return True
        if self == ApprovalRule.NONE:
            return False
        return request.risk_level <= LOW_RISK_MAX


def configure_logging() -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=logging.getLevelName(settings.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def run_scenario(
    scenario_id: str,
    speed: int = 1,
    rule: ApprovalRule = ApprovalRule.LOW_RISK,
    poll_interval_s: float = 0.05,
) -> SimulationEngine:
    """
    Run a sample scenario to completion.

    Approval requests raised by the engine are queued and answered here,
    outside the tick that raised them.

    Raises:
        ValueError: If ``scenario_id`` names no sample scenario.
    """
    log = structlog.get_logger()
    scenario = get_scenario(scenario_id, now_ms())
    if scenario is None:
        raise ValueError(f"Unknown scenario {scenario_id!r}")

    approvals: asyncio.Queue[ApprovalRequest] = asyncio.Queue()
    done = asyncio.Event()

    def on_error(exc: Exception) -> None:
        log.warning("spendguard.run.event_error", error=str(exc))

    engine = SimulationEngine(
        scenario,
        on_approval_required=approvals.put_nowait,
        on_simulation_complete=done.set,
        on_error=on_error,
    )
    engine.set_speed(speed)
    structlog.contextvars.bind_contextvars(scenario=scenario.id)

    log.info(
        "spendguard.run.started",
        balance=str(scenario.initial_balance),
        speed=speed,
        approve=rule.value,
    )
    engine.start()

    try:
        while not done.is_set():
            try:
                request = await asyncio.wait_for(approvals.get(), timeout=poll_interval_s)
            except asyncio.TimeoutError:
                continue

            granted = rule.grants(request)
            log.info(
                "spendguard.run.approval",
                request_id=request.id,
                description=request.description,
                amount=str(request.amount),
                risk_level=request.risk_level,
                granted=granted,
            )
            if granted:
                engine.approve_request(request.id)
            else:
                engine.reject_request(request.id)
    finally:
        if not done.is_set():
            engine.stop()
        structlog.contextvars.unbind_contextvars("scenario")

    stats = engine.get_stats()
    log.info(
        "spendguard.run.completed",
        balance=str(stats["balance"]),
        events_processed=stats["events"]["processed"],
        simulated_ms=stats["elapsed_time"],
    )
    return engine


def print_summary(engine: SimulationEngine) -> bool:
    """Render the action log and ledger; returns the chain verification result."""
    actions = Table(title="Agent Actions", show_lines=False)
    actions.add_column("Time (ms)", style="dim", width=15)
    actions.add_column("Agent", style="yellow", width=20)
    actions.add_column("Kind", style="cyan", width=9)
    actions.add_column("Description")
    for action in engine.action_log:
        actions.add_row(str(action.timestamp), action.agent_id, action.type.value, action.description)

    console.print(actions)
    console.print(transactions_table(engine.wallet))

    is_valid, verified, message = engine.wallet.verify_chain()
    style = "green" if is_valid else "red"
    console.print(f"[bold {style}]{message}[/bold {style}]")
    console.print(
        f"Final balance: [bold]${engine.wallet.balance}[/bold]  "
        f"(daily spent ${engine.wallet.daily_spent})"
    )
    return is_valid


def main() -> None:
    scenario_ids = [scenario.id for scenario in sample_scenarios(0)]
    parser = argparse.ArgumentParser(description="Run a SpendGuard sample scenario headlessly")
    parser.add_argument("--scenario", choices=scenario_ids, default=scenario_ids[0])
    parser.add_argument(
        "--speed", type=int, choices=VALID_SPEEDS, default=settings.default_speed,
        help="Simulated-time multiplier",
    )
    parser.add_argument(
        "--approve",
        choices=[rule.value for rule in ApprovalRule],
        default=ApprovalRule.LOW_RISK.value,
        help="How approval requests are answered",
    )
    args = parser.parse_args()

    configure_logging()
    try:
        engine = asyncio.run(run_scenario(args.scenario, args.speed, ApprovalRule(args.approve)))
    except KeyboardInterrupt:
        structlog.get_logger().info("spendguard.run.interrupted")
        sys.exit(130)

    is_valid = print_summary(engine)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
