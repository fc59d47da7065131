from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from periods import Granularity


class PaymentMethod(str, Enum):
    cash = "cash"
    bank = "bank"


class Bucket(str, Enum):
    income = "income"
    expense = "expense"
    bill = "bill"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    bill = "bill"


PAYMENT_METHOD_ENUM = SAEnum(
    PaymentMethod,
    name="paymentmethod",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(200))
    locale: Mapped[Optional[str]] = mapped_column(String(16))


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_bill_amount_positive"),
        CheckConstraint("duration_months >= 1", name="ck_bill_duration_min"),
        CheckConstraint(
            "payment_day >= 1 AND payment_day <= 28", name="ck_bill_payment_day"
        ),
        Index("ix_bill_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration_months: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    regularity: Mapped[str] = mapped_column(
        String(20), default="monthly", nullable=False
    )
    recurring: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    category: Mapped[str] = mapped_column(
        String(100), default="general", nullable=False
    )
    icon: Mapped[str] = mapped_column(String(16), default="💳", nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        PAYMENT_METHOD_ENUM, default=PaymentMethod.bank, nullable=False
    )
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    payments: Mapped[list["BillPayment"]] = relationship(
        "BillPayment",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillPayment.year_month",
    )


class BillPayment(Base):
    __tablename__ = "bill_payments"
    __table_args__ = (
        UniqueConstraint("bill_id", "year_month", name="uq_bill_payment_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bills.id", ondelete="CASCADE"), nullable=False
    )
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_date: Mapped[Optional[date]] = mapped_column(Date)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        PAYMENT_METHOD_ENUM
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    bill: Mapped[Bill] = relationship("Bill", back_populates="payments")


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_expense_amount_positive"),
        Index("ix_expense_user_date", "user_id", "date"),
        Index("ix_expense_bill_month", "bill_id", "bill_year_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(
        String(100), default="general", nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        PAYMENT_METHOD_ENUM, default=PaymentMethod.bank, nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    bill_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("bills.id"))
    bill_year_month: Mapped[Optional[str]] = mapped_column(String(7))


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_income_amount_positive"),
        Index("ix_income_user_date", "user_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(
        String(100), default="general", nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        PAYMENT_METHOD_ENUM, default=PaymentMethod.bank, nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)


class CashBankBalanceMixin(TimestampMixin):
    """Per-period cash/bank aggregates; subclasses map ``period_key``."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    income_cash_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    income_bank_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expense_cash_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    expense_bank_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    bill_cash_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bill_bank_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    cash_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bank_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    previous_cash_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    previous_bank_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_previous_balance_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    balance_cash_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    balance_bank_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_balance_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )


class DailyCashBankBalance(Base, CashBankBalanceMixin):
    __tablename__ = "daily_cash_bank_balance"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_balance_user_period"),
    )

    period_key: Mapped[str] = mapped_column("date", String(10), nullable=False)


class WeeklyCashBankBalance(Base, CashBankBalanceMixin):
    __tablename__ = "weekly_cash_bank_balance"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "year_week", name="uq_weekly_balance_user_period"
        ),
    )

    period_key: Mapped[str] = mapped_column("year_week", String(8), nullable=False)


class MonthlyCashBankBalance(Base, CashBankBalanceMixin):
    __tablename__ = "monthly_cash_bank_balance"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "year_month", name="uq_monthly_balance_user_period"
        ),
    )

    period_key: Mapped[str] = mapped_column("year_month", String(7), nullable=False)


class QuarterlyCashBankBalance(Base, CashBankBalanceMixin):
    __tablename__ = "quarterly_cash_bank_balance"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "year_quarter", name="uq_quarterly_balance_user_period"
        ),
    )

    period_key: Mapped[str] = mapped_column(
        "year_quarter", String(7), nullable=False
    )


class SemiannualCashBankBalance(Base, CashBankBalanceMixin):
    __tablename__ = "semiannual_cash_bank_balance"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "year_half", name="uq_semiannual_balance_user_period"
        ),
    )

    period_key: Mapped[str] = mapped_column("year_half", String(7), nullable=False)


class AnnualCashBankBalance(Base, CashBankBalanceMixin):
    __tablename__ = "annual_cash_bank_balance"
    __table_args__ = (
        UniqueConstraint("user_id", "year", name="uq_annual_balance_user_period"),
    )

    period_key: Mapped[str] = mapped_column("year", String(4), nullable=False)


BALANCE_MODELS: dict[Granularity, type[CashBankBalanceMixin]] = {
    Granularity.daily: DailyCashBankBalance,
    Granularity.weekly: WeeklyCashBankBalance,
    Granularity.monthly: MonthlyCashBankBalance,
    Granularity.quarterly: QuarterlyCashBankBalance,
    Granularity.semiannual: SemiannualCashBankBalance,
    Granularity.annual: AnnualCashBankBalance,
}
