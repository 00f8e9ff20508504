from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Transaction, TransactionType, User
from schemas import TransactionIn, TransactionUpdate
from services import NotFoundError, TransactionService


def _user(session: Session, email: str) -> User:
    user = User(email=email, password_hash="x", name=email.split("@")[0])
    session.add(user)
    session.commit()
    return user


def _expense(amount: str, when: datetime, category: str = "Food") -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        category=category,
        amount=Decimal(amount),
        notes="test",
        date=when,
    )


def test_create_normalizes_aware_dates_to_utc() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        ist = timezone(timedelta(hours=5, minutes=30))
        txn = TransactionService(session, user.id).create(
            _expense("120.50", datetime(2024, 11, 1, 2, 0, tzinfo=ist))
        )

        assert txn.date == datetime(2024, 10, 31, 20, 30)
        assert txn.amount == Decimal("120.50")


def test_create_without_date_uses_current_time() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        txn = TransactionService(session, user.id).create(
            TransactionIn(
                type=TransactionType.income,
                category="Salary",
                amount=Decimal("50000"),
            )
        )

        assert txn.date >= before - timedelta(seconds=1)
        assert txn.notes is None


def test_create_hands_the_new_row_to_the_hook_and_survives_its_failure() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    seen: list[int] = []

    def record(txn: Transaction) -> None:
        seen.append(txn.id)

    def explode(txn: Transaction) -> None:
        raise RuntimeError("worker unavailable")

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        first = TransactionService(session, user.id, on_created=record).create(
            _expense("10", datetime(2024, 11, 2))
        )
        second = TransactionService(session, user.id, on_created=explode).create(
            _expense("20", datetime(2024, 11, 3))
        )

        assert seen == [first.id]
        assert TransactionService(session, user.id).get(second.id).amount == Decimal(
            "20.00"
        )


def test_update_applies_only_provided_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        service = TransactionService(session, user.id)
        txn = service.create(_expense("99", datetime(2024, 11, 2)))

        updated = service.update(
            txn.id, TransactionUpdate(category="Dining", notes="Birthday dinner")
        )

        assert updated.category == "Dining"
        assert updated.notes == "Birthday dinner"
        assert updated.amount == Decimal("99.00")
        assert updated.type == TransactionType.expense

        with pytest.raises(ValueError):
            service.update(txn.id, TransactionUpdate(category=None))


def test_delete_missing_and_foreign_ids_fail_identically() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _user(session, "ravi@example.com")
        other = _user(session, "meera@example.com")
        txn = TransactionService(session, owner.id).create(
            _expense("15", datetime(2024, 11, 4))
        )
        intruder = TransactionService(session, other.id)

        with pytest.raises(NotFoundError) as foreign:
            intruder.delete(txn.id)
        with pytest.raises(NotFoundError) as missing:
            intruder.delete(txn.id + 1000)

        assert type(foreign.value) is type(missing.value)
        assert str(foreign.value) == str(missing.value)
        assert TransactionService(session, owner.id).get(txn.id).id == txn.id


def test_delete_all_only_touches_callers_rows() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ravi = _user(session, "ravi@example.com")
        meera = _user(session, "meera@example.com")
        for day in (1, 2, 3):
            TransactionService(session, ravi.id).create(
                _expense("5", datetime(2024, 11, day))
            )
        TransactionService(session, meera.id).create(
            _expense("7", datetime(2024, 11, 1))
        )

        assert TransactionService(session, ravi.id).delete_all() == 3
        assert TransactionService(session, ravi.id).list_all() == []
        assert len(TransactionService(session, meera.id).list_all()) == 1


def test_list_is_newest_first() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        service = TransactionService(session, user.id)
        service.create(_expense("1", datetime(2024, 11, 1)))
        service.create(_expense("2", datetime(2024, 11, 9)))
        service.create(_expense("3", datetime(2024, 11, 5)))

        assert [t.amount for t in service.list_all()] == [
            Decimal("2.00"),
            Decimal("3.00"),
            Decimal("1.00"),
        ]
