import logging
from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from config import get_settings
from database import session_scope
from models import Transaction
from push import PushSender
from services import BudgetAlertService, NotificationService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_budget_check(
    transaction_id: int, user_id: int, sender: Optional[PushSender] = None
) -> None:
    """Detached budget check for one transaction. Never raises."""
    try:
        with session_scope() as session:
            txn = session.get(Transaction, transaction_id)
            if txn is None or txn.user_id != user_id:
                logger.info(
                    f"budget_check: transaction_id={transaction_id} outcome=missing"
                )
                return
            notifier = NotificationService(session, sender=sender)
            alert = BudgetAlertService(session, notifier).check(txn)
            outcome = "over_budget" if alert else "ok"
            logger.info(f"budget_check: transaction_id={transaction_id} outcome={outcome}")
    except Exception:
        logger.exception(f"budget_check: transaction_id={transaction_id} outcome=error")


class SchedulerManager:
    def __init__(self, sender: Optional[PushSender] = None) -> None:
        settings = get_settings()
        self.sender = sender
        self.scheduler = BackgroundScheduler(
            timezone=settings.timezone,
            executors={"default": ThreadPoolExecutor(4)},
            job_defaults={"coalesce": False, "misfire_grace_time": None},
        )

    def enqueue_budget_check(self, txn: Transaction) -> None:
        # No trigger: the job runs as soon as an executor thread is free.
        self.scheduler.add_job(
            run_budget_check,
            args=[txn.id, txn.user_id],
            kwargs={"sender": self.sender},
            name=f"budget_check:{txn.id}",
        )
        logger.debug(f"budget_check_queued: transaction_id={txn.id}")

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started for background budget checks")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
