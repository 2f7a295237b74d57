from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, Field

from models import UserRole

Amount = Union[Decimal, str]


USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"


class UserIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    name: str = Field(..., min_length=2, max_length=100)
    role: UserRole = UserRole.user


class ProfileIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    name: str = Field(..., min_length=2, max_length=100)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=7)
    icon: Optional[str] = Field(default=None, max_length=40)


class MemberIn(BaseModel):
    name: str
    monthly_income: Amount
    is_owner: bool = False


class SharedExpenseIn(BaseModel):
    description: str
    total_amount: Amount


class SharedExpenseUpdateIn(SharedExpenseIn):
    member_ids: list[int] = Field(default_factory=list)


class InstallmentPlanIn(BaseModel):
    description: str
    total_amount: Amount
    total_installments: Optional[int] = None
    start_date: Optional[date] = None
    installments_paid: int = 0


class ExpenseIn(BaseModel):
    description: str
    amount: Amount
    category_id: int
    occurred_at: Optional[datetime] = None


class IncomeIn(BaseModel):
    description: str
    amount: Amount
    occurred_at: Optional[datetime] = None


class SavingsEntryIn(BaseModel):
    description: str
    amount: Amount
    occurred_at: Optional[datetime] = None


class SavingsSettingsIn(BaseModel):
    savings_percentage: float


class InvestmentIn(BaseModel):
    kind: str
    name: str
    amount: Amount
    occurred_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class LoanIn(BaseModel):
    person: str
    amount: Amount
    lent_on: date
    reminder_on: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
