"""
Wallet Ledger Audit — chain integrity check and transaction listing.

Recomputes every transaction hash in the wallet ledger and verifies the
linkage, so a run's money movements can be checked after the fact.

Usage:
    python -m spendguard.ledger.audit --database-url sqlite:///spendguard.db
    python -m spendguard.ledger.audit --verbose
"""

from __future__ import annotations

import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from spendguard.config import settings
from spendguard.ledger.service import WalletService

console = Console()


def run_audit(wallet: WalletService, verbose: bool = False) -> bool:
    """
    Run a full hash chain integrity audit.

    Args:
        wallet: The wallet whose ledger is audited.
        verbose: Print every transaction if True.

    Returns:
        True if the chain is valid, False otherwise.
    """
    console.print("\n[bold blue]═══ Wallet Ledger Integrity Audit ═══[/bold blue]\n")

    count = wallet.get_transaction_count()
    console.print(f"  Transactions in ledger: [bold]{count}[/bold]")
    console.print(f"  Balance: [bold]${wallet.balance}[/bold]  (reserved ${wallet.reserved_amount})")

    if count == 0:
        console.print("[yellow]⚠ Ledger is empty, nothing to verify[/yellow]")
        return True

    console.print("  Verifying hash chain...", end=" ")
    started = time.time()
    is_valid, verified, message = wallet.verify_chain()
    elapsed = time.time() - started

    if is_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Transactions verified: [bold]{verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at transaction: {verified}")
        console.print(f"  Reason: {message}")

    if verbose:
        console.print(transactions_table(wallet, limit=count))

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid


def transactions_table(wallet: WalletService, limit: int = 50) -> Table:
    """Oldest-first table of the latest ``limit`` transactions."""
    table = Table(title="Transactions", show_lines=True)
    table.add_column("Time (ms)", style="dim", width=15)
    table.add_column("Type", style="green", width=7)
    table.add_column("Amount", justify="right", width=10)
    table.add_column("Agent", style="yellow", width=20)
    table.add_column("Description")
    table.add_column("Status", width=10)

    for tx in reversed(wallet.recent_transactions(limit)):
        table.add_row(
            str(tx.timestamp),
            tx.type.value,
            f"${tx.amount}",
            tx.agent_id,
            tx.description,
            tx.status.value,
        )
    return table


def main() -> None:
    parser = argparse.ArgumentParser(description="SpendGuard wallet ledger integrity auditor")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL of a persisted wallet (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="List every transaction",
    )
    args = parser.parse_args()

    wallet = WalletService.open(args.database_url or settings.database_url)
    is_valid = run_audit(wallet, verbose=args.verbose)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
