"""Per-period cash/bank ledger maintenance.

Every business event adjusts one bucket (income, expense or bill, split by
payment method) of the affected period rows, then the cascade re-derives the
running balances of all later periods of the same granularity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import func, inspect, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import BALANCE_MODELS, Bucket, CashBankBalanceMixin, PaymentMethod
from periods import Granularity, following_keys, parse_period_key, period_key


logger = logging.getLogger(__name__)


BUCKET_FIELDS: dict[tuple[Bucket, PaymentMethod], str] = {
    (Bucket.income, PaymentMethod.cash): "income_cash_cents",
    (Bucket.income, PaymentMethod.bank): "income_bank_cents",
    (Bucket.expense, PaymentMethod.cash): "expense_cash_cents",
    (Bucket.expense, PaymentMethod.bank): "expense_bank_cents",
    (Bucket.bill, PaymentMethod.cash): "bill_cash_cents",
    (Bucket.bill, PaymentMethod.bank): "bill_bank_cents",
}

CURRENT_FIELDS: dict[PaymentMethod, str] = {
    PaymentMethod.cash: "cash_cents",
    PaymentMethod.bank: "bank_cents",
}

PREVIOUS_FIELDS: dict[PaymentMethod, str] = {
    PaymentMethod.cash: "previous_cash_cents",
    PaymentMethod.bank: "previous_bank_cents",
}

BALANCE_FIELDS: dict[PaymentMethod, str] = {
    PaymentMethod.cash: "balance_cash_cents",
    PaymentMethod.bank: "balance_bank_cents",
}


def bucket_field(bucket: Bucket, method: PaymentMethod) -> str:
    try:
        return BUCKET_FIELDS[(Bucket(bucket), PaymentMethod(method))]
    except ValueError as exc:
        raise ValueError(f"Unknown bucket/method: {bucket}/{method}") from exc


class StorageError(RuntimeError):
    pass


@dataclass
class CascadeReport:
    granularity: Granularity
    start_key: str
    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class LedgerService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _model(self, granularity: Granularity) -> type[CashBankBalanceMixin]:
        return BALANCE_MODELS[Granularity(granularity)]

    def get_period(
        self, granularity: Granularity, key: str
    ) -> Optional[CashBankBalanceMixin]:
        model = self._model(granularity)
        return self.session.scalar(
            select(model).where(model.user_id == self.user_id, model.period_key == key)
        )

    def list_periods(
        self,
        granularity: Granularity,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
    ) -> list[CashBankBalanceMixin]:
        model = self._model(granularity)
        stmt = select(model).where(model.user_id == self.user_id)
        if start_key:
            stmt = stmt.where(model.period_key >= start_key)
        if end_key:
            stmt = stmt.where(model.period_key <= end_key)
        return list(self.session.scalars(stmt.order_by(model.period_key)).all())

    def _predecessor(
        self, granularity: Granularity, key: str
    ) -> Optional[CashBankBalanceMixin]:
        model = self._model(granularity)
        return self.session.scalar(
            select(model)
            .where(model.user_id == self.user_id, model.period_key < key)
            .order_by(model.period_key.desc())
            .limit(1)
        )

    def get_or_create_period(
        self, granularity: Granularity, key: str
    ) -> CashBankBalanceMixin:
        """Return the row for ``key``, inserting an all-zero row if absent.

        Uses INSERT ... ON CONFLICT DO NOTHING so an existing row is never
        overwritten.
        """
        granularity = Granularity(granularity)
        parse_period_key(key, granularity)
        model = self._model(granularity)
        period_column = inspect(model).columns["period_key"].name
        stmt = (
            sqlite_insert(model.__table__)
            .values({"user_id": self.user_id, period_column: key})
            .on_conflict_do_nothing()
        )
        self.session.execute(stmt)
        row = self.get_period(granularity, key)
        if row is None:
            raise StorageError(
                f"Period row {granularity.value}:{key} missing after insert"
            )
        return row

    def apply_amount(
        self,
        granularity: Granularity,
        key: str,
        bucket: Bucket,
        method: PaymentMethod,
        delta: int,
    ) -> CashBankBalanceMixin:
        """Add ``delta`` to one bucket; running balances are left to the cascade."""
        name = bucket_field(bucket, method)
        row = self.get_or_create_period(granularity, key)
        setattr(row, name, getattr(row, name) + delta)
        self.session.flush()
        return row

    def move_amount(
        self,
        granularity: Granularity,
        key: str,
        source: Bucket,
        target: Bucket,
        method: PaymentMethod,
        amount: int,
    ) -> CashBankBalanceMixin:
        """Shift ``amount`` between two buckets of one period (payment path)."""
        source_name = bucket_field(source, method)
        target_name = bucket_field(target, method)
        row = self.get_or_create_period(granularity, key)
        setattr(row, source_name, getattr(row, source_name) - amount)
        setattr(row, target_name, getattr(row, target_name) + amount)
        self.session.flush()
        return row

    def apply_everywhere(
        self, on: date, bucket: Bucket, method: PaymentMethod, delta: int
    ) -> dict[Granularity, str]:
        keys: dict[Granularity, str] = {}
        for granularity in Granularity:
            key = period_key(on, granularity)
            self.apply_amount(granularity, key, bucket, method, delta)
            keys[granularity] = key
        return keys

    def recalculate(self, granularity: Granularity, start_key: str) -> CascadeReport:
        """Re-derive running balances for every period from ``start_key`` on.

        Each period is committed on its own. A failed period is rolled back,
        logged and skipped; the periods after it are still processed.
        """
        granularity = Granularity(granularity)
        model = self._model(granularity)
        report = CascadeReport(granularity=granularity, start_key=start_key)
        try:
            rows = list(
                self.session.scalars(
                    select(model)
                    .where(
                        model.user_id == self.user_id,
                        model.period_key >= start_key,
                    )
                    .order_by(model.period_key)
                ).all()
            )
            seed = self._predecessor(granularity, rows[0].period_key) if rows else None
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(
                f"Could not load {granularity.value} periods from {start_key}"
            ) from exc

        previous_cash = seed.cash_cents if seed else 0
        previous_bank = seed.bank_cents if seed else 0
        previous_total = seed.total_balance_cents if seed else 0

        for row in rows:
            key = row.period_key
            stored = (row.cash_cents, row.bank_cents, row.total_balance_cents)
            cash = (
                previous_cash
                + row.income_cash_cents
                - row.expense_cash_cents
                - row.bill_cash_cents
            )
            bank = (
                previous_bank
                + row.income_bank_cents
                - row.expense_bank_cents
                - row.bill_bank_cents
            )
            try:
                row.previous_cash_cents = previous_cash
                row.previous_bank_cents = previous_bank
                row.total_previous_balance_cents = previous_total
                row.cash_cents = cash
                row.bank_cents = bank
                row.balance_cash_cents = cash
                row.balance_bank_cents = bank
                row.total_balance_cents = cash + bank
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.warning(
                    f"cascade_period_failed: user_id={self.user_id} "
                    f"granularity={granularity.value} period={key} error={exc}"
                )
                report.failed.append(key)
                previous_cash, previous_bank, previous_total = stored
                continue
            report.processed.append(key)
            previous_cash, previous_bank, previous_total = cash, bank, cash + bank

        logger.info(
            f"cascade_done: user_id={self.user_id} granularity={granularity.value} "
            f"start={start_key} processed={len(report.processed)} "
            f"failed={len(report.failed)}"
        )
        return report

    def recalculate_everywhere(self, on: date) -> list[CascadeReport]:
        return [
            self.recalculate(granularity, period_key(on, granularity))
            for granularity in Granularity
        ]

    def reconcile(self) -> list[CascadeReport]:
        """Full cascade of every granularity from the user's earliest period."""
        reports: list[CascadeReport] = []
        for granularity, model in BALANCE_MODELS.items():
            first = self.session.scalar(
                select(func.min(model.period_key)).where(
                    model.user_id == self.user_id
                )
            )
            if first is None:
                continue
            reports.append(self.recalculate(granularity, first))
        return reports

    def reverse_in_period(
        self,
        granularity: Granularity,
        key: str,
        bucket: Bucket,
        method: PaymentMethod,
        amount: int,
    ) -> bool:
        """Undo one transaction's contribution to its own period.

        Income had raised the period's running balance, expenses and bills had
        lowered it. Returns False when the period has no row.
        """
        row = self.get_period(granularity, key)
        if row is None:
            logger.info(
                f"reverse_skipped: user_id={self.user_id} "
                f"granularity={Granularity(granularity).value} period={key}"
            )
            return False
        method = PaymentMethod(method)
        sign = -1 if Bucket(bucket) == Bucket.income else 1
        name = bucket_field(bucket, method)
        setattr(row, name, getattr(row, name) - amount)
        current = CURRENT_FIELDS[method]
        balance = BALANCE_FIELDS[method]
        setattr(row, current, getattr(row, current) + sign * amount)
        setattr(row, balance, getattr(row, balance) + sign * amount)
        row.total_balance_cents = row.balance_cash_cents + row.balance_bank_cents
        self.session.flush()
        return True

    def carry_expense_forward(
        self,
        granularity: Granularity,
        on: date,
        method: PaymentMethod,
        amount: int,
        horizon: int,
    ) -> int:
        """Give back a deleted expense to the periods after ``on``.

        Only existing rows inside the horizon are touched; returns how many.
        """
        method = PaymentMethod(method)
        touched = 0
        for key in following_keys(on, granularity, horizon):
            row = self.get_period(granularity, key)
            if row is None:
                continue
            for name in (
                CURRENT_FIELDS[method],
                PREVIOUS_FIELDS[method],
                BALANCE_FIELDS[method],
                "total_previous_balance_cents",
            ):
                setattr(row, name, getattr(row, name) + amount)
            row.total_balance_cents = row.balance_cash_cents + row.balance_bank_cents
            touched += 1
        self.session.flush()
        return touched

    def rederive_forward(
        self, granularity: Granularity, on: date, horizon: int
    ) -> int:
        """Re-derive previous and current values for the periods after ``on``."""
        touched = 0
        for key in following_keys(on, granularity, horizon):
            row = self.get_period(granularity, key)
            if row is None:
                continue
            seed = self._predecessor(granularity, key)
            previous_cash = seed.cash_cents if seed else 0
            previous_bank = seed.bank_cents if seed else 0
            row.previous_cash_cents = previous_cash
            row.previous_bank_cents = previous_bank
            row.total_previous_balance_cents = seed.total_balance_cents if seed else 0
            row.cash_cents = (
                previous_cash
                + row.income_cash_cents
                - row.expense_cash_cents
                - row.bill_cash_cents
            )
            row.bank_cents = (
                previous_bank
                + row.income_bank_cents
                - row.expense_bank_cents
                - row.bill_bank_cents
            )
            row.balance_cash_cents = row.cash_cents
            row.balance_bank_cents = row.bank_cents
            row.total_balance_cents = row.cash_cents + row.bank_cents
            self.session.flush()
            touched += 1
        return touched
