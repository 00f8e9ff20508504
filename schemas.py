from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from models import Role, TransactionType


Money = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class RegisterIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(
        ..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
    )
    password: str = Field(..., min_length=6, max_length=128)
    name: str = Field(..., min_length=1, max_length=120)
    profession: Optional[str] = Field(default=None, max_length=120)
    monthly_income: Optional[Decimal] = Field(default=None, ge=0)


class LoginIn(CamelModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(CamelModel):
    id: int
    email: str
    name: str
    role: Role
    profession: Optional[str]
    monthly_income: Optional[Money]


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class TransactionIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None


class TransactionUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    notes: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None


class TransactionOut(CamelModel):
    id: int
    user_id: int
    type: TransactionType
    category: str
    amount: Money
    notes: Optional[str]
    date: datetime
    created_at: datetime


class BudgetIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    category: str = Field(..., min_length=1, max_length=100)
    limit_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    month: int = Field(..., ge=0, le=11)
    year: int = Field(..., ge=1970, le=3000)


class BudgetUpdate(CamelModel):
    model_config = ConfigDict(extra="forbid")

    limit_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class BudgetOut(CamelModel):
    id: int
    user_id: int
    category: str
    limit_amount: Money
    month: int
    year: int


class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1, max_length=255)
    auth: str = Field(..., min_length=1, max_length=255)


class PushSubscriptionIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    endpoint: str = Field(..., min_length=1, max_length=1024)
    keys: PushKeys


class ImportRow(BaseModel):
    type: TransactionType
    category: str
    amount: Decimal
    notes: str
    date: datetime


class SkippedRow(CamelModel):
    row: int
    reason: str


class ImportResultOut(CamelModel):
    count: int
    skipped: list[SkippedRow] = Field(default_factory=list)


class CountOut(CamelModel):
    count: int


class AdminStatsOut(CamelModel):
    total_users: int
    total_transactions: int
    total_budgets: int
