from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from ledger import CascadeReport, LedgerService, StorageError
from models import (
    Bill,
    BillPayment,
    Bucket,
    Expense,
    Income,
    PaymentMethod,
    TransactionType,
    User,
)
from periods import (
    Granularity,
    add_months,
    covered_months,
    days_in_month,
    local_today,
    parse_period_key,
    period_key,
)
from schemas import BillIn, BillUpdateIn, ExpenseIn, IncomeIn


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ValidationError(ValueError):
    pass


PAYMENT_DESCRIPTION_PREFIXES = {
    "en": "Bill payment:",
    "es": "Pago factura:",
    "fr": "Paiement de facture:",
    "de": "Rechnungszahlung:",
    "it": "Pagamento bolletta:",
    "pt": "Pagamento conta:",
    "ru": "Оплата счета:",
    "ja": "請求書支払い:",
    "zh": "账单支付:",
    "hi": "बिल भुगतान:",
    "el": "Πληρωμή λογαριασμού:",
    "nl": "Rekening betaling:",
    "da": "Regning betaling:",
    "gsw": "Rächnig zahlig:",
}


def payment_description(locale: Optional[str], category: str, paid_on: date) -> str:
    prefix = PAYMENT_DESCRIPTION_PREFIXES.get(
        (locale or "").strip().lower(), PAYMENT_DESCRIPTION_PREFIXES["en"]
    )
    return f"{prefix} {category} {paid_on.isoformat()}"


@contextmanager
def atomic(session: Session, action: str) -> Iterator[None]:
    """Commit the enclosed work as one transaction, rolling back on error."""
    try:
        yield
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageError(f"{action} failed: {exc}") from exc
    except Exception:
        session.rollback()
        raise


def _month_of(year_month: str) -> str:
    parse_period_key(year_month, Granularity.monthly)
    return year_month


def _held_method(
    payment: Optional[BillPayment], fallback: PaymentMethod
) -> PaymentMethod:
    """Method whose bill bucket holds an unpaid month's amount."""
    if payment is not None and payment.payment_method is not None:
        return payment.payment_method
    return fallback


class LocaleService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: str) -> str:
        user = self.session.get(User, user_id)
        if user and user.locale:
            return user.locale
        return get_settings().default_locale

    def set(self, user_id: str, locale: str) -> str:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        value = locale.strip().lower()
        if not value:
            raise ValidationError("Locale must not be empty")
        with atomic(self.session, "set_locale"):
            user.locale = value
        logger.info(f"locale_set: user_id={user_id} locale={value}")
        return value


class BillService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.ledger = LedgerService(session, user_id)

    def get(self, bill_id: int) -> Bill:
        bill = self.session.scalar(
            select(Bill).where(Bill.id == bill_id, Bill.user_id == self.user_id)
        )
        if not bill:
            raise NotFoundError("Bill not found")
        return bill

    def list(self) -> list[Bill]:
        return list(
            self.session.scalars(
                select(Bill)
                .where(Bill.user_id == self.user_id)
                .order_by(Bill.start_date, Bill.id)
            ).all()
        )

    def _cascade(self, start_key: str) -> Optional[CascadeReport]:
        try:
            return self.ledger.recalculate(Granularity.monthly, start_key)
        except StorageError as exc:
            logger.error(
                f"cascade_aborted: user_id={self.user_id} start={start_key} error={exc}"
            )
            return None

    def _ensure_payments(self, bill: Bill) -> None:
        """Create unpaid payment rows for bills added before payments were tracked."""
        if bill.payments:
            return
        for month in covered_months(bill.start_date, bill.duration_months):
            bill.payments.append(
                BillPayment(
                    year_month=month, paid=False, payment_method=bill.payment_method
                )
            )
        self.session.flush()
        logger.info(
            f"bill_payments_backfilled: bill_id={bill.id} count={len(bill.payments)}"
        )

    def _linked_expenses(self, bill: Bill) -> dict[str, list[Expense]]:
        expenses = self.session.scalars(
            select(Expense)
            .where(Expense.bill_id == bill.id, Expense.user_id == self.user_id)
            .order_by(Expense.id)
        ).all()
        by_month: dict[str, list[Expense]] = {}
        for expense in expenses:
            month = expense.bill_year_month or period_key(
                expense.date, Granularity.monthly
            )
            by_month.setdefault(month, []).append(expense)
        return by_month

    def _drop_expenses(self, month: str, expenses: list[Expense]) -> None:
        for expense in expenses:
            self.ledger.apply_amount(
                Granularity.monthly,
                month,
                Bucket.expense,
                expense.payment_method,
                -expense.amount_cents,
            )
            self.session.delete(expense)

    def add(self, data: BillIn) -> Bill:
        name = data.name.strip()
        category = data.category.strip()
        if not name:
            raise ValidationError("Bill name is required")
        if not category:
            raise ValidationError("Bill category is required")
        start = data.start_date or data.due_date
        if start is None:
            raise ValidationError("start_date or due_date is required")

        bill = Bill(
            user_id=self.user_id,
            name=name,
            amount_cents=data.amount_cents,
            due_date=data.due_date or start,
            start_date=start,
            payment_day=data.payment_day,
            duration_months=data.duration_months,
            regularity=data.regularity,
            recurring=data.recurring,
            category=category,
            icon=data.icon or "💳",
            payment_method=data.payment_method,
            paid=False,
        )
        months = covered_months(start, data.duration_months)
        with atomic(self.session, "add_bill"):
            self.session.add(bill)
            self.session.flush()
            for month in months:
                bill.payments.append(
                    BillPayment(
                        year_month=month,
                        paid=False,
                        payment_method=data.payment_method,
                    )
                )
                self.ledger.apply_amount(
                    Granularity.monthly,
                    month,
                    Bucket.bill,
                    data.payment_method,
                    data.amount_cents,
                )
        logger.info(
            f"bill_added: user_id={self.user_id} bill_id={bill.id} "
            f"months={months[0]}..{months[-1]} amount_cents={bill.amount_cents}"
        )
        self._cascade(months[0])
        return bill

    def pay(
        self, bill_id: int, year_month: str, payment_date: Optional[date] = None
    ) -> dict:
        month = _month_of(year_month)
        paid_on = payment_date or local_today()
        bill = self.get(bill_id)
        locale = LocaleService(self.session).get(self.user_id)

        with atomic(self.session, "pay_bill"):
            self._ensure_payments(bill)
            payment = next((p for p in bill.payments if p.year_month == month), None)
            if payment is None:
                raise NotFoundError(f"Payment record not found for {month}")
            if payment.paid:
                raise ValidationError(f"Bill for month {month} is already paid")

            method = _held_method(payment, bill.payment_method)
            payment.paid = True
            payment.payment_date = paid_on
            payment.payment_method = method
            # Only the two buckets of this month move; running balances wait
            # for the next cascade over the month.
            self.ledger.move_amount(
                Granularity.monthly,
                month,
                Bucket.bill,
                Bucket.expense,
                method,
                bill.amount_cents,
            )
            expense = Expense(
                user_id=self.user_id,
                amount_cents=bill.amount_cents,
                date=paid_on,
                category=bill.category,
                payment_method=method,
                description=payment_description(locale, bill.category, paid_on),
                bill_id=bill.id,
                bill_year_month=month,
            )
            self.session.add(expense)
            remaining = sum(1 for p in bill.payments if not p.paid)
            if remaining == 0:
                bill.paid = True

        logger.info(
            f"bill_paid: user_id={self.user_id} bill_id={bill.id} month={month} "
            f"remaining={remaining}"
        )
        return {
            "bill_id": bill.id,
            "user_id": self.user_id,
            "year_month": month,
            "payment_date": paid_on.isoformat(),
            "amount_cents": bill.amount_cents,
            "payment_method": method.value,
            "expense_id": expense.id,
            "bill_fully_paid": bill.paid,
            "remaining_payments": remaining,
        }

    def payment_status(self, bill_id: int) -> dict:
        bill = self.get(bill_id)
        if not bill.payments:
            with atomic(self.session, "backfill_payments"):
                self._ensure_payments(bill)
        payments = [
            {
                "year_month": p.year_month,
                "paid": p.paid,
                "payment_date": p.payment_date.isoformat() if p.payment_date else None,
            }
            for p in bill.payments
        ]
        paid = sum(1 for p in bill.payments if p.paid)
        return {
            "bill_id": bill.id,
            "bill_name": bill.name,
            "bill_amount_cents": bill.amount_cents,
            "duration_months": bill.duration_months,
            "total_payments": len(payments),
            "paid_payments": paid,
            "remaining_payments": len(payments) - paid,
            "fully_paid": bill.paid,
            "payments": payments,
        }

    def for_period(self, on: date, *, today: Optional[date] = None) -> list[dict]:
        """Bills due in the month containing ``on`` with their payment state."""
        today = today or local_today()
        month = period_key(on, Granularity.monthly)
        results: list[dict] = []
        for bill in self.list():
            if month not in covered_months(bill.start_date, bill.duration_months):
                continue
            payment = next((p for p in bill.payments if p.year_month == month), None)
            paid = payment.paid if payment else bill.paid
            day = min(bill.payment_day, days_in_month(on.year, on.month))
            due = date(on.year, on.month, day)
            overdue = not paid and due < today
            results.append(
                {
                    "id": bill.id,
                    "name": bill.name,
                    "amount_cents": bill.amount_cents,
                    "category": bill.category,
                    "icon": bill.icon,
                    "payment_method": bill.payment_method.value,
                    "year_month": month,
                    "due_date": due.isoformat(),
                    "paid": paid,
                    "payment_date": (
                        payment.payment_date.isoformat()
                        if payment and payment.payment_date
                        else None
                    ),
                    "overdue": overdue,
                    "overdue_days": (today - due).days if overdue else 0,
                }
            )
        return results

    def update(self, data: BillUpdateIn) -> Bill:
        changes = data.model_dump(exclude_unset=True, exclude={"user_id", "bill_id"})
        changes = {key: value for key, value in changes.items() if value is not None}
        if not changes:
            raise ValidationError("No fields to update")
        bill = self.get(data.bill_id)

        old_amount = bill.amount_cents
        old_method = bill.payment_method
        old_months = covered_months(bill.start_date, bill.duration_months)
        new_amount = changes.get("amount_cents", old_amount)
        new_method = PaymentMethod(changes.get("payment_method", old_method))
        new_start = changes.get("start_date", bill.start_date)
        if "start_date" in changes and "due_date" not in changes and bill.due_date:
            # The due date moves with the schedule unless given explicitly.
            shift = (new_start.year - bill.start_date.year) * 12 + (
                new_start.month - bill.start_date.month
            )
            changes["due_date"] = add_months(bill.due_date, shift)
        new_months = covered_months(
            new_start, changes.get("duration_months", bill.duration_months)
        )
        ledger_changed = (
            new_amount != old_amount
            or new_method != old_method
            or new_months != old_months
        )

        with atomic(self.session, "update_bill"):
            self._ensure_payments(bill)
            for key in ("name", "category"):
                if key in changes:
                    changes[key] = changes[key].strip()
                    if not changes[key]:
                        raise ValidationError(f"Bill {key} must not be empty")
            for key, value in changes.items():
                setattr(bill, key, value)
            if ledger_changed:
                self._reconcile_months(
                    bill, old_months, new_months, old_amount, new_amount,
                    old_method, new_method,
                )
            bill.paid = bool(bill.payments) and all(p.paid for p in bill.payments)

        logger.info(
            f"bill_updated: user_id={self.user_id} bill_id={bill.id} "
            f"fields={sorted(changes)}"
        )
        if ledger_changed:
            self._cascade(min(old_months[0], new_months[0]))
        return bill

    def _reconcile_months(
        self,
        bill: Bill,
        old_months: list[str],
        new_months: list[str],
        old_amount: int,
        new_amount: int,
        old_method: PaymentMethod,
        new_method: PaymentMethod,
    ) -> None:
        linked = self._linked_expenses(bill)
        payments = {p.year_month: p for p in bill.payments}
        old_set = set(old_months)
        new_set = set(new_months)
        delta = new_amount - old_amount

        for month in old_months:
            if month in new_set:
                continue
            expenses = linked.pop(month, [])
            payment = payments.get(month)
            if expenses:
                self._drop_expenses(month, expenses)
            else:
                self.ledger.apply_amount(
                    Granularity.monthly,
                    month,
                    Bucket.bill,
                    _held_method(payment, old_method),
                    -old_amount,
                )
            if payment is not None:
                bill.payments.remove(payment)

        for month in new_months:
            if month not in old_set:
                bill.payments.append(
                    BillPayment(year_month=month, paid=False, payment_method=new_method)
                )
                self.ledger.apply_amount(
                    Granularity.monthly, month, Bucket.bill, new_method, new_amount
                )
                continue
            expenses = linked.get(month, [])
            if expenses:
                # Paid months keep the method they were paid with.
                if delta:
                    expense = expenses[0]
                    expense.amount_cents += delta
                    self.ledger.apply_amount(
                        Granularity.monthly,
                        month,
                        Bucket.expense,
                        expense.payment_method,
                        delta,
                    )
                continue
            payment = payments.get(month)
            held = _held_method(payment, old_method)
            if held != new_method:
                self.ledger.apply_amount(
                    Granularity.monthly, month, Bucket.bill, held, -old_amount
                )
                self.ledger.apply_amount(
                    Granularity.monthly, month, Bucket.bill, new_method, new_amount
                )
            elif delta:
                self.ledger.apply_amount(
                    Granularity.monthly, month, Bucket.bill, new_method, delta
                )
            if payment is not None and not payment.paid:
                payment.payment_method = new_method
        self.session.flush()

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        months = covered_months(bill.start_date, bill.duration_months)
        linked = self._linked_expenses(bill)
        payments = {p.year_month: p for p in bill.payments}

        with atomic(self.session, "delete_bill"):
            for month in months:
                expenses = linked.pop(month, [])
                if expenses:
                    self._drop_expenses(month, expenses)
                else:
                    self.ledger.apply_amount(
                        Granularity.monthly,
                        month,
                        Bucket.bill,
                        _held_method(payments.get(month), bill.payment_method),
                        -bill.amount_cents,
                    )
            for month, expenses in linked.items():
                self._drop_expenses(month, expenses)
            self.session.flush()
            self.session.delete(bill)

        logger.info(
            f"bill_deleted: user_id={self.user_id} bill_id={bill_id} "
            f"months={len(months)}"
        )
        self._cascade(months[0])


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.ledger = LedgerService(session, user_id)

    def _cascade_everywhere(self, on: date) -> None:
        for granularity in Granularity:
            try:
                self.ledger.recalculate(granularity, period_key(on, granularity))
            except StorageError as exc:
                logger.error(
                    f"cascade_aborted: user_id={self.user_id} "
                    f"granularity={granularity.value} error={exc}"
                )

    def create_income(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            date=data.date,
            category=data.category.strip() or "general",
            payment_method=data.payment_method,
            description=data.description,
        )
        with atomic(self.session, "create_income"):
            self.session.add(income)
            self.ledger.apply_everywhere(
                data.date, Bucket.income, data.payment_method, data.amount_cents
            )
        logger.info(
            f"income_created: user_id={self.user_id} id={income.id} "
            f"amount_cents={income.amount_cents}"
        )
        self._cascade_everywhere(data.date)
        return income

    def create_expense(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            date=data.date,
            category=data.category.strip() or "general",
            payment_method=data.payment_method,
            description=data.description,
        )
        with atomic(self.session, "create_expense"):
            self.session.add(expense)
            self.ledger.apply_everywhere(
                data.date, Bucket.expense, data.payment_method, data.amount_cents
            )
        logger.info(
            f"expense_created: user_id={self.user_id} id={expense.id} "
            f"amount_cents={expense.amount_cents}"
        )
        self._cascade_everywhere(data.date)
        return expense

    def _get(self, model, transaction_id: int):
        row = self.session.scalar(
            select(model).where(
                model.id == transaction_id, model.user_id == self.user_id
            )
        )
        if not row:
            raise NotFoundError("Transaction not found")
        return row

    def delete(self, transaction_id: int, type: str) -> dict:
        try:
            txn_type = TransactionType((type or "").strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Invalid transaction type: {type}") from exc

        if txn_type == TransactionType.expense:
            expense = self._get(Expense, transaction_id)
            if expense.bill_id is not None:
                return self._undo_bill_payment(expense)
            return self._delete_and_reverse(
                expense, txn_type, expense.date, expense.payment_method,
                expense.amount_cents,
            )
        if txn_type == TransactionType.income:
            income = self._get(Income, transaction_id)
            return self._delete_and_reverse(
                income, txn_type, income.date, income.payment_method,
                income.amount_cents,
            )
        bill = self._get(Bill, transaction_id)
        months = covered_months(bill.start_date, bill.duration_months)
        due = bill.due_date or bill.start_date
        # A due date outside the schedule falls back to its first month.
        if period_key(due, Granularity.monthly) not in months:
            due = bill.start_date
        due_month = period_key(due, Granularity.monthly)
        payment = next((p for p in bill.payments if p.year_month == due_month), None)
        return self._delete_and_reverse(
            bill, txn_type, due, _held_method(payment, bill.payment_method),
            bill.amount_cents,
        )

    def _undo_bill_payment(self, expense: Expense) -> dict:
        expense_id, bill_id, amount = expense.id, expense.bill_id, expense.amount_cents
        month = expense.bill_year_month or period_key(
            expense.date, Granularity.monthly
        )
        with atomic(self.session, "undo_bill_payment"):
            payment = self.session.scalar(
                select(BillPayment).where(
                    BillPayment.bill_id == bill_id,
                    BillPayment.year_month == month,
                )
            )
            bill = self.session.get(Bill, bill_id)
            paid_with = expense.payment_method
            # The month goes back to owing under the bill's current method.
            owed_with = bill.payment_method if bill is not None else paid_with
            if payment is None:
                logger.warning(
                    f"bill_payment_missing: bill_id={bill_id} month={month}"
                )
            else:
                payment.paid = False
                payment.payment_date = None
                payment.payment_method = owed_with
            if bill is not None:
                bill.paid = False
            self.ledger.apply_amount(
                Granularity.monthly, month, Bucket.expense, paid_with, -amount
            )
            self.ledger.apply_amount(
                Granularity.monthly, month, Bucket.bill, owed_with, amount
            )
            self.session.delete(expense)
        logger.info(
            f"bill_payment_undone: user_id={self.user_id} expense_id={expense_id} "
            f"bill_id={bill_id} month={month}"
        )
        if owed_with != paid_with:
            # Money moved between cash and bank, so running balances shift.
            try:
                self.ledger.recalculate(Granularity.monthly, month)
            except StorageError as exc:
                logger.error(
                    f"cascade_aborted: user_id={self.user_id} start={month} "
                    f"error={exc}"
                )
        return {
            "id": expense_id,
            "type": TransactionType.expense.value,
            "amount_cents": amount,
            "bill_id": bill_id,
            "year_month": month,
            "reversed": [Granularity.monthly.value],
        }

    def _delete_and_reverse(
        self,
        row,
        txn_type: TransactionType,
        on: date,
        method: PaymentMethod,
        amount: int,
    ) -> dict:
        row_id = row.id
        with atomic(self.session, f"delete_{txn_type.value}"):
            if txn_type == TransactionType.bill:
                # Expenses already paid against the bill stay as plain expenses.
                for expense in self.session.scalars(
                    select(Expense).where(Expense.bill_id == row_id)
                ).all():
                    expense.bill_id = None
                    expense.bill_year_month = None
                self.session.flush()
            self.session.delete(row)

        settings = get_settings()
        if txn_type == TransactionType.expense:
            horizons = settings.expense_horizons
        else:
            horizons = settings.rederive_horizons
        # Bills are only ledgered by month.
        if txn_type == TransactionType.bill:
            granularities = [Granularity.monthly]
        else:
            granularities = list(Granularity)
        bucket = Bucket(txn_type.value)

        reversed_in: list[str] = []
        for granularity in granularities:
            key = period_key(on, granularity)
            horizon = horizons.get(granularity.value, 0)
            try:
                with atomic(self.session, f"reverse_{granularity.value}"):
                    if not self.ledger.reverse_in_period(
                        granularity, key, bucket, method, amount
                    ):
                        continue
                    if txn_type == TransactionType.expense:
                        self.ledger.carry_expense_forward(
                            granularity, on, method, amount, horizon
                        )
                    else:
                        self.ledger.rederive_forward(granularity, on, horizon)
            except StorageError as exc:
                logger.error(
                    f"reverse_failed: user_id={self.user_id} "
                    f"granularity={granularity.value} period={key} error={exc}"
                )
                continue
            reversed_in.append(granularity.value)

        logger.info(
            f"transaction_deleted: user_id={self.user_id} type={txn_type.value} "
            f"id={row_id} amount_cents={amount}"
        )
        return {
            "id": row_id,
            "type": txn_type.value,
            "amount_cents": amount,
            "reversed": reversed_in,
        }
