from __future__ import annotations

import threading
from pathlib import Path

import allure
import pytest
from sqlmodel import Session

from ai_task_platform.credits.ledger import CreditLedger, CreditsType, TransactionType
from ai_task_platform.errors import InsufficientCreditsError

pytestmark = [
    allure.epic("Credits"),
    allure.feature("Ledger"),
]


def test_balance_is_sum_of_signed_entries(ledger: CreditLedger) -> None:
    assert ledger.get_balance(1) == 0

    ledger.grant(1, 100)
    ledger.grant(1, 20, CreditsType.BONUS, notes="welcome")
    ledger.debit(1, 15, TransactionType.TASK_COST, reference_id=3)

    assert ledger.get_balance(1) == 105
    assert ledger.get_balance(2) == 0

    entries = ledger.list_entries(1)
    assert [entry.credits_amount for entry in entries] == [-15, 20, 100]
    assert entries[0].transaction_type is TransactionType.TASK_COST
    assert entries[0].reference_id == 3
    assert entries[1].credits_type is CreditsType.BONUS
    assert entries[1].notes == "welcome"
    assert entries[2].transaction_type is TransactionType.GRANT


def test_grant_and_debit_reject_non_positive_amounts(ledger: CreditLedger) -> None:
    with pytest.raises(ValueError, match="Grant amount"):
        ledger.grant(1, 0)
    with pytest.raises(ValueError, match="Debit amount"):
        ledger.debit(1, -5, TransactionType.API_USAGE)


def test_debit_if_sufficient_refuses_without_writing(ledger: CreditLedger) -> None:
    ledger.grant(1, 4)

    with pytest.raises(InsufficientCreditsError) as error:
        ledger.debit_if_sufficient(1, 5, TransactionType.TASK_COST)

    assert error.value.required == 5
    assert error.value.available == 4
    assert error.value.code == "insufficient_credits"
    assert len(ledger.list_entries(1)) == 1


def test_debit_inside_session_commits_with_the_caller(ledger: CreditLedger) -> None:
    ledger.grant(1, 10)

    with Session(ledger.engine) as session:
        staged = ledger.debit_if_sufficient(
            1,
            4,
            TransactionType.TASK_COST,
            reference_id=7,
            session=session,
        )
        assert staged is None
        assert ledger.get_balance(1) == 10

    assert ledger.get_balance(1) == 10

    with Session(ledger.engine) as session:
        ledger.debit_if_sufficient(1, 4, TransactionType.TASK_COST, 7, session=session)
        with pytest.raises(InsufficientCreditsError):
            ledger.debit_if_sufficient(1, 7, TransactionType.TASK_COST, 8, session=session)
        session.commit()

    assert ledger.get_balance(1) == 6
    assert ledger.list_entries(1)[0].reference_id == 7


def test_concurrent_debits_never_overdraw(db_path: Path) -> None:
    setup = CreditLedger(db_path)
    setup.grant(9, 50)
    setup.close()

    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def _worker() -> None:
        ledger = CreditLedger(db_path)
        try:
            ledger.debit_if_sufficient(9, 10, TransactionType.TASK_COST)
            result = "ok"
        except InsufficientCreditsError:
            result = "refused"
        finally:
            ledger.close()
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    check = CreditLedger(db_path)
    assert outcomes.count("ok") == 5
    assert outcomes.count("refused") == 3
    assert check.get_balance(9) == 0
    check.close()
