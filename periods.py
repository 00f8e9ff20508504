from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class BudgetPeriod:
    """A calendar month addressed the way budgets store it (0-based month)."""

    month: int
    year: int

    @property
    def start(self) -> datetime:
        return datetime(self.year, self.month + 1, 1)

    @property
    def end(self) -> datetime:
        """First instant of the following month (exclusive bound)."""
        if self.month == 11:
            return datetime(self.year + 1, 1, 1)
        return datetime(self.year, self.month + 2, 1)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def period_for(moment: datetime) -> BudgetPeriod:
    moment = to_utc_naive(moment)
    return BudgetPeriod(month=moment.month - 1, year=moment.year)


def to_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_moment(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return utcnow()
    return to_utc_naive(moment)
