"""
Wallet Ledger — SQLAlchemy models for the simulated wallet.

Three tables back the wallet collaborator:

1. ``wallet`` — a single row holding the opening balance, the daily limit
   and the running daily spend
2. ``wallet_transactions`` — append-only, SHA-256 hash-chained record of
   every committed transaction; the balance is derived from it
3. ``wallet_reservations`` — funds earmarked for a pending approval

Amounts are stored as decimal strings so SQLite keeps them exact.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all wallet models."""
    pass


class WalletDB(Base):
    """The wallet's mutable counters. Exactly one row (id=1)."""

    __tablename__ = "wallet"

    id = Column(Integer, primary_key=True)
    initial_balance = Column(String(32), nullable=False, comment="Opening balance")
    daily_limit = Column(String(32), nullable=False)
    daily_spent = Column(String(32), nullable=False, default="0")


class TransactionDB(Base):
    """
    A committed wallet transaction.

    This table is APPEND-ONLY. Each row stores the SHA-256 hash of
    (previous_hash || canonical_json(row fields)), so any retroactive edit
    is detectable by :meth:`WalletService.verify_chain`.
    """

    __tablename__ = "wallet_transactions"

    id = Column(String(40), primary_key=True)
    sequence_number = Column(Integer, nullable=False, unique=True, index=True)

    previous_hash = Column(String(64), nullable=False)
    entry_hash = Column(String(64), nullable=False, unique=True)

    timestamp = Column(BigInteger, nullable=False, comment="Virtual time (ms)")
    amount = Column(String(32), nullable=False)
    type = Column(String(10), nullable=False, comment="debit or credit")
    status = Column(String(20), nullable=False)
    agent_id = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False)
    merchant_id = Column(String(100), nullable=True, index=True)
    merchant_name = Column(String(200), nullable=True)
    category = Column(String(100), nullable=True)
    reasoning = Column(Text, nullable=True)
    reservation_id = Column(String(40), nullable=True)
    payment_method = Column(String(20), nullable=True)

    __table_args__ = (
        Index("ix_wallet_tx_type_timestamp", "type", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction seq={self.sequence_number} {self.type} "
            f"{self.amount} hash={self.entry_hash[:12]}...>"
        )


class ReservationDB(Base):
    """Funds held against the balance until completed or released."""

    __tablename__ = "wallet_reservations"

    id = Column(String(40), primary_key=True)
    amount = Column(String(32), nullable=False)
    agent_id = Column(String(100), nullable=False)
    reason = Column(Text, nullable=False)
    merchant_id = Column(String(100), nullable=True)
    created_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=True)
    status = Column(
        String(20), nullable=False, default="active",
        comment="active, released or completed",
    )
