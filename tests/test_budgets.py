from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import User
from schemas import BudgetIn, BudgetUpdate
from services import BudgetService, ConflictError, NotFoundError


def _user(session: Session, email: str) -> User:
    user = User(email=email, password_hash="x", name=email.split("@")[0])
    session.add(user)
    session.commit()
    return user


def test_duplicate_budget_period_conflicts_and_keeps_original() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        budgets = BudgetService(session, user.id)
        original = budgets.create(
            BudgetIn(category="Food", limit_amount=Decimal("5000"), month=10, year=2024)
        )

        with pytest.raises(ConflictError):
            budgets.create(
                BudgetIn(
                    category="Food", limit_amount=Decimal("9000"), month=10, year=2024
                )
            )

        stored = budgets.list_all()
        assert [b.id for b in stored] == [original.id]
        assert stored[0].limit_amount == Decimal("5000.00")


def test_same_category_in_other_month_or_for_other_user_is_allowed() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ravi = _user(session, "ravi@example.com")
        meera = _user(session, "meera@example.com")
        BudgetService(session, ravi.id).create(
            BudgetIn(category="Food", limit_amount=Decimal("5000"), month=10, year=2024)
        )
        BudgetService(session, ravi.id).create(
            BudgetIn(category="Food", limit_amount=Decimal("5000"), month=11, year=2024)
        )
        BudgetService(session, meera.id).create(
            BudgetIn(category="Food", limit_amount=Decimal("3000"), month=10, year=2024)
        )

        listed = BudgetService(session, ravi.id).list_all()
        assert [b.month for b in listed] == [11, 10]
        assert len(BudgetService(session, meera.id).list_all()) == 1


def test_update_changes_only_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session, "ravi@example.com")
        budgets = BudgetService(session, user.id)
        budget = budgets.create(
            BudgetIn(category="Rent", limit_amount=Decimal("15000"), month=0, year=2025)
        )

        updated = budgets.update(budget.id, BudgetUpdate(limit_amount=Decimal("16500")))

        assert updated.limit_amount == Decimal("16500.00")
        assert (updated.category, updated.month, updated.year) == ("Rent", 0, 2025)


def test_foreign_budget_is_indistinguishable_from_missing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _user(session, "ravi@example.com")
        other = _user(session, "meera@example.com")
        budget = BudgetService(session, owner.id).create(
            BudgetIn(category="Food", limit_amount=Decimal("5000"), month=10, year=2024)
        )
        intruder = BudgetService(session, other.id)

        with pytest.raises(NotFoundError) as foreign:
            intruder.delete(budget.id)
        with pytest.raises(NotFoundError) as missing:
            intruder.delete(budget.id + 100)
        assert str(foreign.value) == str(missing.value)

        with pytest.raises(NotFoundError):
            intruder.update(budget.id, BudgetUpdate(limit_amount=Decimal("1")))
        assert BudgetService(session, owner.id).get(budget.id).limit_amount == Decimal(
            "5000.00"
        )
