"""Signed credit ledger: the balance is the sum of a user's entries."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from sqlalchemy import func
from sqlmodel import Session, col, select

from ai_task_platform.errors import InsufficientCreditsError
from ai_task_platform.storage.alembic_runner import upgrade_head
from ai_task_platform.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from ai_task_platform.storage.sqlmodel_models import CreditTransaction

logger = logging.getLogger(__name__)

_LOCKS_GUARD = threading.Lock()
_USER_LOCKS: dict[tuple[str, int], threading.RLock] = {}


class CreditsType(str, Enum):
    REGULAR = "regular"
    BONUS = "bonus"


class TransactionType(str, Enum):
    TASK_COST = "task_cost"
    API_USAGE = "api_usage"
    GRANT = "grant"


@dataclass(slots=True)
class LedgerEntryView:
    """One signed ledger row."""

    entry_id: int
    user_id: int
    credits_amount: int
    credits_type: CreditsType
    transaction_type: TransactionType
    reference_id: int | None
    notes: str | None
    created_at: datetime


class CreditLedger:
    """Append-only credit ledger backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    @contextmanager
    def user_lock(self, user_id: int) -> Iterator[None]:
        """Serialize balance check and debit for one user within this process.

        Locks are shared by every ledger instance pointing at the same database
        file and are reentrant, so a caller may hold the lock around
        `debit_if_sufficient`.
        """

        key = (str(Path(self.db_path).resolve()), user_id)
        with _LOCKS_GUARD:
            lock = _USER_LOCKS.setdefault(key, threading.RLock())
        with lock:
            yield

    def get_balance(self, user_id: int) -> int:
        with Session(self.engine) as session:
            return _balance(session, user_id)

    def grant(
        self,
        user_id: int,
        amount: int,
        credits_type: CreditsType = CreditsType.REGULAR,
        *,
        notes: str | None = None,
    ) -> int:
        """Add credits to a user's balance and return the new entry id."""

        if amount <= 0:
            raise ValueError("Grant amount must be > 0")
        return self._append(
            user_id=user_id,
            amount=amount,
            credits_type=credits_type,
            transaction_type=TransactionType.GRANT,
            reference_id=None,
            notes=notes,
        )

    def debit(
        self,
        user_id: int,
        amount: int,
        transaction_type: TransactionType,
        reference_id: int | None = None,
        *,
        notes: str | None = None,
    ) -> int:
        """Append a negative entry without checking the balance."""

        if amount <= 0:
            raise ValueError("Debit amount must be > 0")
        entry_id = self._append(
            user_id=user_id,
            amount=-amount,
            credits_type=CreditsType.REGULAR,
            transaction_type=transaction_type,
            reference_id=reference_id,
            notes=notes,
        )
        logger.debug(
            "Debited %s credits from user %s (%s, reference=%s)",
            amount,
            user_id,
            transaction_type.value,
            reference_id,
        )
        return entry_id

    def debit_if_sufficient(  # noqa: PLR0913
        self,
        user_id: int,
        amount: int,
        transaction_type: TransactionType,
        reference_id: int | None = None,
        *,
        notes: str | None = None,
        session: Session | None = None,
    ) -> int | None:
        """Check and debit under the per-user lock.

        With `session` the entry joins the caller's transaction and is only
        written when the caller commits; the id is then not yet known and
        `None` is returned.
        """

        if amount <= 0:
            raise ValueError("Debit amount must be > 0")
        with self.user_lock(user_id):
            if session is None:
                self.ensure_balance(user_id, amount)
                return self.debit(
                    user_id,
                    amount,
                    transaction_type,
                    reference_id,
                    notes=notes,
                )
            available = _balance(session, user_id)
            if available < amount:
                raise InsufficientCreditsError(required=amount, available=available)
            session.add(
                _new_entry(
                    user_id=user_id,
                    amount=-amount,
                    credits_type=CreditsType.REGULAR,
                    transaction_type=transaction_type,
                    reference_id=reference_id,
                    notes=notes,
                ),
            )
            return None

    def ensure_balance(self, user_id: int, required: int) -> None:
        available = self.get_balance(user_id)
        if available < required:
            raise InsufficientCreditsError(required=required, available=available)

    def list_entries(self, user_id: int, *, limit: int = 50) -> list[LedgerEntryView]:
        """Most recent entries first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(col(CreditTransaction.id).desc())
                .limit(limit),
            ).all()
        return [_to_entry_view(row) for row in rows]

    def _append(  # noqa: PLR0913
        self,
        *,
        user_id: int,
        amount: int,
        credits_type: CreditsType,
        transaction_type: TransactionType,
        reference_id: int | None,
        notes: str | None,
    ) -> int:
        with Session(self.engine) as session:
            row = _new_entry(
                user_id=user_id,
                amount=amount,
                credits_type=credits_type,
                transaction_type=transaction_type,
                reference_id=reference_id,
                notes=notes,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id or 0


def _to_entry_view(row: CreditTransaction) -> LedgerEntryView:
    return LedgerEntryView(
        entry_id=row.id or 0,
        user_id=row.user_id,
        credits_amount=row.credits_amount,
        credits_type=CreditsType(row.credits_type),
        transaction_type=TransactionType(row.transaction_type),
        reference_id=row.reference_id,
        notes=row.notes,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _balance(session: Session, user_id: int) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(CreditTransaction.credits_amount), 0)).where(
            CreditTransaction.user_id == user_id,
        ),
    ).one()
    return int(total)


def _new_entry(  # noqa: PLR0913
    *,
    user_id: int,
    amount: int,
    credits_type: CreditsType,
    transaction_type: TransactionType,
    reference_id: int | None,
    notes: str | None,
) -> CreditTransaction:
    return CreditTransaction(
        user_id=user_id,
        credits_amount=amount,
        credits_type=credits_type.value,
        transaction_type=transaction_type.value,
        reference_id=reference_id,
        notes=notes,
        created_at=to_db_datetime(utc_now()),
    )
