import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import PaymentMethod


YEAR_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class BillIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    due_date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    payment_day: int = Field(default=1, ge=1, le=28)
    duration_months: int = Field(default=1, ge=1)
    regularity: str = Field(default="monthly", min_length=1, max_length=20)
    recurring: bool = True
    category: str = Field(default="general", min_length=1, max_length=100)
    icon: str = Field(default="💳", max_length=16)
    payment_method: PaymentMethod = PaymentMethod.bank


class BillUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=64)
    bill_id: int
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    due_date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    payment_day: Optional[int] = Field(default=None, ge=1, le=28)
    duration_months: Optional[int] = Field(default=None, ge=1)
    regularity: Optional[str] = Field(default=None, min_length=1, max_length=20)
    recurring: Optional[bool] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    payment_method: Optional[PaymentMethod] = None


class PayBillIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    bill_id: int
    year_month: str = Field(..., pattern=YEAR_MONTH_PATTERN)
    payment_date: Optional[dt.date] = None


class DeleteBillIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    bill_id: int


class DeleteTransactionIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    transaction_id: int
    type: str = Field(..., min_length=1, max_length=20)


class IncomeIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    category: str = Field(default="general", min_length=1, max_length=100)
    payment_method: PaymentMethod = PaymentMethod.bank
    description: Optional[str] = Field(default=None, max_length=500)


class ExpenseIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    category: str = Field(default="general", min_length=1, max_length=100)
    payment_method: PaymentMethod = PaymentMethod.bank
    description: Optional[str] = Field(default=None, max_length=500)


class LocaleIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    locale: str = Field(..., min_length=2, max_length=16)
