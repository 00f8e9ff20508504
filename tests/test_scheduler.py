from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import scheduler
from database import Base
from models import TransactionType, User
from schemas import BudgetIn, PushKeys, PushSubscriptionIn, TransactionIn
from services import BudgetService, NotificationService, TransactionService


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[str] = []

    def send(self, target, payload: str) -> None:
        self.sent.append(payload)


def _scope_for(session: Session):
    @contextmanager
    def scope():
        yield session
        session.commit()

    return scope


def test_background_check_notifies_when_over_budget(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    sender = RecordingSender()

    with Session(engine) as session:
        user = User(email="ravi@example.com", password_hash="x", name="Ravi")
        session.add(user)
        session.commit()
        BudgetService(session, user.id).create(
            BudgetIn(category="Food", limit_amount=Decimal("100"), month=10, year=2024)
        )
        NotificationService(session, sender=sender).save_subscription(
            user.id,
            PushSubscriptionIn(
                endpoint="https://push.example/ok", keys=PushKeys(p256dh="k", auth="a")
            ),
        )
        txn = TransactionService(session, user.id).create(
            TransactionIn(
                type=TransactionType.expense,
                category="Food",
                amount=Decimal("150"),
                date=datetime(2024, 11, 2),
            )
        )
        monkeypatch.setattr(scheduler, "session_scope", _scope_for(session))

        scheduler.run_budget_check(txn.id, user.id, sender=sender)

        assert len(sender.sent) == 1
        assert "Food" in sender.sent[0]


def test_background_check_ignores_transactions_of_other_users(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    sender = RecordingSender()

    with Session(engine) as session:
        user = User(email="ravi@example.com", password_hash="x", name="Ravi")
        session.add(user)
        session.commit()
        txn = TransactionService(session, user.id).create(
            TransactionIn(
                type=TransactionType.expense,
                category="Food",
                amount=Decimal("150"),
                date=datetime(2024, 11, 2),
            )
        )
        monkeypatch.setattr(scheduler, "session_scope", _scope_for(session))

        scheduler.run_budget_check(txn.id, user.id + 1, sender=sender)

        assert sender.sent == []


def test_background_check_swallows_errors(monkeypatch) -> None:
    @contextmanager
    def broken_scope():
        raise RuntimeError("database is down")
        yield

    monkeypatch.setattr(scheduler, "session_scope", broken_scope)

    scheduler.run_budget_check(1, 1)


def test_enqueue_registers_a_one_off_job() -> None:
    manager = scheduler.SchedulerManager(sender=RecordingSender())
    txn = SimpleTxn(id=42, user_id=7)

    manager.enqueue_budget_check(txn)

    jobs = manager.scheduler.get_jobs()
    assert len(jobs) == 1
    assert jobs[0].args == (42, 7)
    assert jobs[0].name == "budget_check:42"


class SimpleTxn:
    def __init__(self, id: int, user_id: int) -> None:
        self.id = id
        self.user_id = user_id
