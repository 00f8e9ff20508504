from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_transactions, parse_import_csv
from models import Budget, PushSubscription, Role, Transaction, TransactionType, User
from periods import BudgetPeriod, period_for, resolve_moment, to_utc_naive
from push import EndpointGone, PushDeliveryError, PushSender, PushTarget, WebPushSender
from schemas import (
    BudgetIn,
    BudgetUpdate,
    ImportResultOut,
    PushSubscriptionIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
)
from security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class AuthenticationError(ValueError):
    pass


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: RegisterIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise ConflictError("Email already registered")

        role = Role.admin if email in get_settings().admin_emails else Role.user
        user = User(
            email=email,
            password_hash=hash_password(data.password),
            name=data.name.strip(),
            role=role,
            profession=data.profession,
            monthly_income=data.monthly_income,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Email already registered") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id} role={user.role.value}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )
        if not user or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    @staticmethod
    def issue_token(user: User) -> str:
        return create_access_token(user.id, user.email, user.role)


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        on_created: Optional[Callable[[Transaction], None]] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.on_created = on_created

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.id == transaction_id, Transaction.user_id == self.user_id
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            category=data.category.strip(),
            amount=data.amount,
            notes=data.notes,
            date=resolve_moment(data.date),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)

        if self.on_created is not None:
            try:
                self.on_created(txn)
            except Exception:
                logger.exception(
                    f"transaction_created_hook_failed: transaction_id={txn.id}"
                )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("type", "category", "amount", "date"):
            if field in changes and changes[field] is None:
                raise ValueError(f"{field} cannot be null")

        if "type" in changes:
            txn.type = changes["type"]
        if "category" in changes:
            txn.category = changes["category"].strip()
        if "amount" in changes:
            txn.amount = changes["amount"]
        if "notes" in changes:
            txn.notes = changes["notes"]
        if "date" in changes:
            txn.date = to_utc_naive(changes["date"])
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        return txn

    def delete_all(self) -> int:
        result = self.session.execute(
            delete(Transaction).where(Transaction.user_id == self.user_id)
        )
        self.session.commit()
        logger.info(
            f"transactions_purged: user_id={self.user_id} count={result.rowcount}"
        )
        return result.rowcount

    def export_csv(self) -> str:
        return export_transactions(self.list_all())


class CSVImportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def import_csv(self, content: bytes) -> ImportResultOut:
        rows, skipped = parse_import_csv(content)
        if rows:
            self.session.execute(
                insert(Transaction),
                [
                    {
                        "user_id": self.user_id,
                        "type": row.type,
                        "category": row.category,
                        "amount": row.amount,
                        "notes": row.notes,
                        "date": row.date,
                    }
                    for row in rows
                ],
            )
            self.session.commit()
        logger.info(
            f"csv_import: user_id={self.user_id} inserted={len(rows)} "
            f"skipped={len(skipped)}"
        )
        return ImportResultOut(count=len(rows), skipped=skipped)


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.year.desc(), Budget.month.desc(), Budget.category)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        stmt = select(Budget).where(
            Budget.id == budget_id, Budget.user_id == self.user_id
        )
        budget = self.session.scalar(stmt)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def find_for_period(self, category: str, period: BudgetPeriod) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category == category,
            Budget.month == period.month,
            Budget.year == period.year,
        )
        return self.session.scalar(stmt)

    def create(self, data: BudgetIn) -> Budget:
        category = data.category.strip()
        period = BudgetPeriod(month=data.month, year=data.year)
        if self.find_for_period(category, period):
            raise ConflictError(
                "A budget already exists for this specific category and month"
            )

        budget = Budget(
            user_id=self.user_id,
            category=category,
            limit_amount=data.limit_amount,
            month=data.month,
            year=data.year,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                "A budget already exists for this specific category and month"
            ) from exc
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        budget.limit_amount = data.limit_amount
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        return budget


@dataclass
class DispatchResult:
    delivered: int = 0
    pruned: int = 0
    failed: int = 0


class Notifier(Protocol):
    def send_to_user(self, user_id: int, payload: dict) -> DispatchResult: ...


class NotificationService:
    _DELIVERED = "delivered"
    _GONE = "gone"
    _FAILED = "failed"

    def __init__(
        self,
        session: Session,
        sender: Optional[PushSender] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.session = session
        self.sender = sender or WebPushSender()
        self.max_workers = max_workers or get_settings().push_max_workers

    def save_subscription(
        self, user_id: int, data: PushSubscriptionIn
    ) -> PushSubscription:
        sub = self.session.get(PushSubscription, data.endpoint)
        if sub:
            sub.user_id = user_id
            sub.p256dh = data.keys.p256dh
            sub.auth = data.keys.auth
        else:
            sub = PushSubscription(
                endpoint=data.endpoint,
                user_id=user_id,
                p256dh=data.keys.p256dh,
                auth=data.keys.auth,
            )
            self.session.add(sub)
        self.session.commit()
        return sub

    def subscriptions_for(self, user_id: int) -> list[PushSubscription]:
        stmt = select(PushSubscription).where(PushSubscription.user_id == user_id)
        return self.session.scalars(stmt).all()

    def send_to_user(self, user_id: int, payload: dict) -> DispatchResult:
        targets = [
            PushTarget(endpoint=sub.endpoint, p256dh=sub.p256dh, auth=sub.auth)
            for sub in self.subscriptions_for(user_id)
        ]
        result = DispatchResult()
        if not targets:
            logger.debug(f"push_skipped: user_id={user_id} reason=no_subscriptions")
            return result

        body = json.dumps(payload)
        workers = max(1, min(len(targets), self.max_workers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="push") as pool:
            outcomes = list(pool.map(lambda target: self._deliver(target, body), targets))

        gone = [
            target.endpoint
            for target, outcome in zip(targets, outcomes)
            if outcome == self._GONE
        ]
        if gone:
            self.session.execute(
                delete(PushSubscription).where(PushSubscription.endpoint.in_(gone))
            )
            self.session.commit()

        result.delivered = outcomes.count(self._DELIVERED)
        result.pruned = len(gone)
        result.failed = outcomes.count(self._FAILED)
        logger.info(
            f"push_dispatch: user_id={user_id} delivered={result.delivered} "
            f"pruned={result.pruned} failed={result.failed}"
        )
        return result

    def _deliver(self, target: PushTarget, body: str) -> str:
        try:
            self.sender.send(target, body)
        except EndpointGone:
            logger.info(f"push_endpoint_gone: endpoint={target.endpoint}")
            return self._GONE
        except PushDeliveryError as exc:
            logger.error(f"push_failed: endpoint={target.endpoint} error={exc}")
            return self._FAILED
        except Exception:
            logger.exception(f"push_failed: endpoint={target.endpoint}")
            return self._FAILED
        return self._DELIVERED


@dataclass(frozen=True)
class BudgetAlert:
    budget_id: int
    category: str
    period: BudgetPeriod
    total_spent: Decimal
    limit_amount: Decimal


class BudgetAlertService:
    """
    Checks a freshly created expense against the budget for its category and
    month, and notifies the owner while the month-to-date spend is over the
    limit. Every qualifying insert alerts, not only the one that crosses it.
    """

    def __init__(
        self,
        session: Session,
        notifier: Notifier,
        currency_symbol: Optional[str] = None,
    ) -> None:
        self.session = session
        self.notifier = notifier
        self.currency_symbol = (
            currency_symbol
            if currency_symbol is not None
            else get_settings().currency_symbol
        )

    def check(self, txn: Transaction) -> Optional[BudgetAlert]:
        if txn.type != TransactionType.expense:
            return None

        period = period_for(txn.date)
        budget = BudgetService(self.session, txn.user_id).find_for_period(
            txn.category, period
        )
        if not budget:
            return None

        total = self.month_to_date_spend(txn.user_id, txn.category, period)
        limit_amount = Decimal(str(budget.limit_amount))
        if total <= limit_amount:
            return None

        alert = BudgetAlert(
            budget_id=budget.id,
            category=txn.category,
            period=period,
            total_spent=total,
            limit_amount=limit_amount,
        )
        self.notifier.send_to_user(txn.user_id, self.build_payload(alert))
        return alert

    def month_to_date_spend(
        self, user_id: int, category: str, period: BudgetPeriod
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == user_id,
            Transaction.category == category,
            Transaction.type == TransactionType.expense,
            Transaction.date >= period.start,
            Transaction.date < period.end,
        )
        total = self.session.scalar(stmt)
        return Decimal(str(total or 0)).quantize(Decimal("0.01"))

    def build_payload(self, alert: BudgetAlert) -> dict:
        symbol = self.currency_symbol
        return {
            "title": "Budget Exceeded! 🚨",
            "body": (
                f"You have spent {symbol}{alert.total_spent:,.2f} on {alert.category} "
                f"this month, exceeding your limit of {symbol}{alert.limit_amount:,.2f}."
            ),
            "icon": "/icon-192.png",
            "data": {
                "url": "/budgets",
                "budgetId": alert.budget_id,
                "category": alert.category,
                "month": alert.period.month,
                "year": alert.period.year,
                "totalSpent": float(alert.total_spent),
                "limitAmount": float(alert.limit_amount),
            },
        }


class AdminService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def stats(self) -> dict[str, int]:
        def count(model) -> int:
            return self.session.execute(select(func.count()).select_from(model)).scalar_one()

        return {
            "total_users": count(User),
            "total_transactions": count(Transaction),
            "total_budgets": count(Budget),
        }
