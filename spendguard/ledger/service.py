"""
Wallet Service — balance, limits, reservations and the transaction ledger.

This is the collaborator the simulation engine commits money through. The
engine never computes balances itself; it calls:

- ``add_transaction`` to append a committed debit or credit
- ``create_reservation`` / ``release_reservation`` / ``complete_reservation``
  to hold funds while a human decides
- ``balance`` / ``daily_spent`` / ``daily_limit`` to build policy context

Transactions are append-only and hash-chained; the balance is the opening
balance plus completed credits minus completed debits. Overdrafts are
refused here, which makes this the single place double-spend prevention
lives.

Usage:
    wallet = WalletService()            # in-memory SQLite
    wallet.reset(Decimal("500"))
    wallet.add_transaction(
        amount=Decimal("14.95"),
        type=TransactionType.DEBIT,
        agent_id="shopper",
        description="Purchased: Milo 1.5kg",
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spendguard.config import settings
from spendguard.domain.schema import (
    PaymentMethod,
    Reservation,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
    new_id,
    now_ms,
)
from spendguard.ledger.models import Base, ReservationDB, TransactionDB, WalletDB

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64  # The "previous hash" of the first transaction

ACTIVE = "active"
RELEASED = "released"
COMPLETED = "completed"


class LedgerIntegrityError(Exception):
    """Raised when the transaction hash chain is found to be broken."""
    pass


class InsufficientFundsError(Exception):
    """Raised when a debit exceeds the available (unreserved) balance."""
    pass


class WalletService:
    """Simulated wallet backed by an append-only SQL ledger."""

    def __init__(
        self,
        database_url: str | None = None,
        initial_balance: Decimal = Decimal("0"),
        daily_limit: Decimal = Decimal("500"),
        clock: Callable[[], int] | None = None,
        fresh: bool = True,
    ) -> None:
        """
        Args:
            database_url: SQLAlchemy URL. Defaults to settings (in-memory SQLite).
            initial_balance: Opening balance.
            daily_limit: Wallet-level daily spending limit.
            clock: Default timestamp source (ms) when callers pass none.
            fresh: Discard any existing ledger at ``database_url``. When False
                the stored wallet is kept and only missing tables are created.
        """
        url = database_url or settings.database_url
        engine_kwargs: dict[str, Any] = {"echo": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs.update(
                connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._clock = clock or now_ms
        if fresh:
            self.reset(initial_balance, daily_limit)
        else:
            self._ensure_wallet(initial_balance, daily_limit)

    @classmethod
    def open(cls, database_url: str) -> WalletService:
        """Attach to a persisted wallet without resetting it."""
        return cls(database_url, fresh=False)

    # ── Lifecycle ───────────────────────────────────────────────

    def reset(self, initial_balance: Decimal, daily_limit: Decimal | None = None) -> None:
        """Discard the ledger and reservations and open a fresh wallet."""
        limit = daily_limit if daily_limit is not None else Decimal("500")
        Base.metadata.drop_all(self.engine)
        Base.metadata.create_all(self.engine)
        with self.SessionLocal() as session:
            session.add(WalletDB(
                id=1,
                initial_balance=str(initial_balance),
                daily_limit=str(limit),
                daily_spent="0",
            ))
            session.commit()
        logger.info("Wallet reset: balance=%s daily_limit=%s", initial_balance, limit)

    def reset_daily_spent(self) -> None:
        with self.SessionLocal() as session:
            wallet = self._wallet(session)
            wallet.daily_spent = "0"
            session.commit()

    def set_daily_limit(self, daily_limit: Decimal) -> None:
        with self.SessionLocal() as session:
            self._wallet(session).daily_limit = str(daily_limit)
            session.commit()

    # ── Readings ────────────────────────────────────────────────

    @property
    def balance(self) -> Decimal:
        with self.SessionLocal() as session:
            return self._balance(session)

    @property
    def daily_spent(self) -> Decimal:
        with self.SessionLocal() as session:
            return Decimal(self._wallet(session).daily_spent)

    @property
    def daily_limit(self) -> Decimal:
        with self.SessionLocal() as session:
            return Decimal(self._wallet(session).daily_limit)

    @property
    def reserved_amount(self) -> Decimal:
        with self.SessionLocal() as session:
            return self._reserved(session)

    @property
    def available_balance(self) -> Decimal:
        """Balance minus every active reservation."""
        with self.SessionLocal() as session:
            return self._balance(session) - self._reserved(session)

    # ── Transactions ────────────────────────────────────────────

    def add_transaction(
        self,
        amount: Decimal,
        type: TransactionType,
        agent_id: str,
        description: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        merchant_id: str | None = None,
        merchant_name: str | None = None,
        category: str | None = None,
        reasoning: str | None = None,
        payment_method: PaymentMethod | None = None,
        timestamp: int | None = None,
    ) -> Transaction:
        """
        Append a transaction to the ledger.

        Completed debits reduce the balance and count towards the daily
        spend; completed credits raise the balance.

        Raises:
            InsufficientFundsError: If a completed debit exceeds the
                available balance.
            LedgerIntegrityError: If the chain tip has been tampered with.
        """
        with self.SessionLocal() as session:
            if type == TransactionType.DEBIT and status == TransactionStatus.COMPLETED:
                available = self._balance(session) - self._reserved(session)
                if amount > available:
                    raise InsufficientFundsError(
                        f"Debit of ${amount} exceeds available balance of ${available}"
                    )
            row = self._append(
                session,
                amount=amount,
                type=type,
                status=status,
                agent_id=agent_id,
                description=description,
                merchant_id=merchant_id,
                merchant_name=merchant_name,
                category=category,
                reasoning=reasoning,
                reservation_id=None,
                payment_method=payment_method,
                timestamp=timestamp,
            )
            session.commit()
            return _to_transaction(row)

    def record(
        self,
        draft: TransactionDraft,
        timestamp: int | None = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
    ) -> Transaction:
        """Commit a TransactionDraft as-is."""
        return self.add_transaction(
            amount=draft.amount,
            type=draft.type,
            agent_id=draft.agent_id,
            description=draft.description,
            status=status,
            merchant_id=draft.merchant_id,
            merchant_name=draft.merchant_name,
            category=draft.category,
            reasoning=draft.reasoning,
            payment_method=draft.payment_method,
            timestamp=timestamp,
        )

    def recent_transactions(self, limit: int = 50) -> list[Transaction]:
        """Most recent transactions, newest first."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(TransactionDB)
                .order_by(TransactionDB.sequence_number.desc())
                .limit(limit)
            ).scalars().all()
            return [_to_transaction(row) for row in rows]

    def has_transacted_with(self, merchant_id: str) -> bool:
        """Whether any completed transaction names ``merchant_id``."""
        with self.SessionLocal() as session:
            count = session.execute(
                select(func.count())
                .select_from(TransactionDB)
                .where(
                    TransactionDB.merchant_id == merchant_id,
                    TransactionDB.status == TransactionStatus.COMPLETED.value,
                )
            ).scalar()
            return bool(count)

    def get_transaction_count(self) -> int:
        with self.SessionLocal() as session:
            return session.execute(
                select(func.count()).select_from(TransactionDB)
            ).scalar() or 0

    # ── Reservations ────────────────────────────────────────────

    def create_reservation(
        self,
        amount: Decimal,
        agent_id: str,
        reason: str,
        merchant_id: str | None = None,
        expires_at: int | None = None,
        timestamp: int | None = None,
    ) -> Reservation | None:
        """
        Hold ``amount`` against the balance.

        Returns:
            The reservation, or None when the available balance is too low.
        """
        with self.SessionLocal() as session:
            available = self._balance(session) - self._reserved(session)
            if amount > available:
                logger.info(
                    "Reservation refused: amount=%s available=%s", amount, available
                )
                return None
            row = ReservationDB(
                id=new_id("res"),
                amount=str(amount),
                agent_id=agent_id,
                reason=reason,
                merchant_id=merchant_id,
                created_at=self._clock() if timestamp is None else timestamp,
                expires_at=expires_at,
                status=ACTIVE,
            )
            session.add(row)
            session.commit()
            return _to_reservation(row)

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        with self.SessionLocal() as session:
            row = self._active_reservation(session, reservation_id)
            return _to_reservation(row) if row is not None else None

    def active_reservations(self) -> list[Reservation]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(ReservationDB).where(ReservationDB.status == ACTIVE)
            ).scalars().all()
            return [_to_reservation(row) for row in rows]

    def release_reservation(self, reservation_id: str) -> bool:
        """Free the held funds. False if the id is not an active reservation."""
        with self.SessionLocal() as session:
            row = self._active_reservation(session, reservation_id)
            if row is None:
                return False
            row.status = RELEASED
            session.commit()
            return True

    def complete_reservation(
        self,
        reservation_id: str,
        description: str | None = None,
        merchant_name: str | None = None,
        category: str | None = None,
        reasoning: str | None = None,
        payment_method: PaymentMethod | None = None,
        timestamp: int | None = None,
    ) -> Transaction | None:
        """
        Turn a reservation into a completed debit.

        Returns:
            The debit transaction, or None if the id is not an active
            reservation.
        """
        with self.SessionLocal() as session:
            row = self._active_reservation(session, reservation_id)
            if row is None:
                return None
            row.status = COMPLETED
            tx = self._append(
                session,
                amount=Decimal(row.amount),
                type=TransactionType.DEBIT,
                status=TransactionStatus.COMPLETED,
                agent_id=row.agent_id,
                description=description or row.reason,
                merchant_id=row.merchant_id,
                merchant_name=merchant_name,
                category=category,
                reasoning=reasoning,
                reservation_id=row.id,
                payment_method=payment_method,
                timestamp=timestamp,
            )
            session.commit()
            return _to_transaction(tx)

    # ── Integrity ───────────────────────────────────────────────

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Recompute every transaction hash and check the chain linkage.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self.SessionLocal() as session:
            rows = session.execute(
                select(TransactionDB).order_by(TransactionDB.sequence_number.asc())
            ).scalars().all()

            previous = GENESIS_HASH
            for i, row in enumerate(rows):
                if row.previous_hash != previous:
                    return (
                        False, i,
                        f"Chain break at sequence {row.sequence_number}: "
                        f"previous_hash does not match prior entry's hash",
                    )
                expected = _compute_hash(row)
                if row.entry_hash != expected:
                    return (
                        False, i,
                        f"Hash mismatch at sequence {row.sequence_number}: "
                        f"stored={row.entry_hash[:16]}... computed={expected[:16]}...",
                    )
                previous = row.entry_hash

            return True, len(rows), f"Chain verified: {len(rows)} entries, integrity intact"

    # ── Internal ────────────────────────────────────────────────

    def _ensure_wallet(self, initial_balance: Decimal, daily_limit: Decimal) -> None:
        Base.metadata.create_all(self.engine)
        with self.SessionLocal() as session:
            if self._wallet(session) is None:
                session.add(WalletDB(
                    id=1,
                    initial_balance=str(initial_balance),
                    daily_limit=str(daily_limit),
                    daily_spent="0",
                ))
                session.commit()

    def _wallet(self, session: Session) -> WalletDB:
        return session.get(WalletDB, 1)

    def _balance(self, session: Session) -> Decimal:
        balance = Decimal(self._wallet(session).initial_balance)
        rows = session.execute(
            select(TransactionDB.type, TransactionDB.amount).where(
                TransactionDB.status == TransactionStatus.COMPLETED.value
            )
        ).all()
        for tx_type, amount in rows:
            if tx_type == TransactionType.CREDIT.value:
                balance += Decimal(amount)
            else:
                balance -= Decimal(amount)
        return balance

    def _reserved(self, session: Session) -> Decimal:
        amounts = session.execute(
            select(ReservationDB.amount).where(ReservationDB.status == ACTIVE)
        ).scalars().all()
        return sum((Decimal(amount) for amount in amounts), Decimal("0"))

    def _active_reservation(self, session: Session, reservation_id: str) -> ReservationDB | None:
        row = session.get(ReservationDB, reservation_id)
        if row is None or row.status != ACTIVE:
            return None
        return row

    def _append(self, session: Session, **fields: Any) -> TransactionDB:
        last = session.execute(
            select(TransactionDB).order_by(TransactionDB.sequence_number.desc()).limit(1)
        ).scalar_one_or_none()

        if last is None:
            sequence, previous_hash = 0, GENESIS_HASH
        else:
            if last.entry_hash != _compute_hash(last):
                raise LedgerIntegrityError(
                    f"Cannot append: entry {last.sequence_number} fails hash verification"
                )
            sequence, previous_hash = last.sequence_number + 1, last.entry_hash

        tx_type: TransactionType = fields["type"]
        status: TransactionStatus = fields["status"]
        method: PaymentMethod | None = fields["payment_method"]
        timestamp = fields["timestamp"]
        row = TransactionDB(
            id=new_id("tx"),
            sequence_number=sequence,
            previous_hash=previous_hash,
            timestamp=self._clock() if timestamp is None else timestamp,
            amount=str(fields["amount"]),
            type=tx_type.value,
            status=status.value,
            agent_id=fields["agent_id"],
            description=fields["description"],
            merchant_id=fields["merchant_id"],
            merchant_name=fields["merchant_name"],
            category=fields["category"],
            reasoning=fields["reasoning"],
            reservation_id=fields["reservation_id"],
            payment_method=method.value if method is not None else None,
        )
        row.entry_hash = _compute_hash(row)
        session.add(row)

        if tx_type == TransactionType.DEBIT and status == TransactionStatus.COMPLETED:
            wallet = self._wallet(session)
            wallet.daily_spent = str(Decimal(wallet.daily_spent) + Decimal(row.amount))

        logger.info(
            "Transaction appended: seq=%d %s %s agent=%s hash=%s",
            sequence, row.type, row.amount, row.agent_id, row.entry_hash[:16],
        )
        return row


def _compute_hash(row: TransactionDB) -> str:
    """
    SHA-256(previous_hash || canonical_json(row fields)).

    Any retroactive change to a stored field changes the recomputed hash.
    """
    hashable = {
        "id": row.id,
        "sequence_number": row.sequence_number,
        "previous_hash": row.previous_hash,
        "timestamp": row.timestamp,
        "amount": row.amount,
        "type": row.type,
        "status": row.status,
        "agent_id": row.agent_id,
        "description": row.description,
        "merchant_id": row.merchant_id,
        "merchant_name": row.merchant_name,
        "category": row.category,
        "reasoning": row.reasoning,
        "reservation_id": row.reservation_id,
        "payment_method": row.payment_method,
    }
    canonical = json.dumps(hashable, sort_keys=True, default=str)
    return hashlib.sha256((row.previous_hash + canonical).encode("utf-8")).hexdigest()


def _to_transaction(row: TransactionDB) -> Transaction:
    return Transaction(
        id=row.id,
        timestamp=row.timestamp,
        amount=Decimal(row.amount),
        type=TransactionType(row.type),
        status=TransactionStatus(row.status),
        agent_id=row.agent_id,
        description=row.description,
        merchant_id=row.merchant_id,
        merchant_name=row.merchant_name,
        category=row.category,
        reasoning=row.reasoning,
        reservation_id=row.reservation_id,
        payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
    )


def _to_reservation(row: ReservationDB) -> Reservation:
    return Reservation(
        id=row.id,
        amount=Decimal(row.amount),
        agent_id=row.agent_id,
        reason=row.reason,
        merchant_id=row.merchant_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
