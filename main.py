import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, run_migrations
from ledger import LedgerService, StorageError
from models import Bill, CashBankBalanceMixin
from periods import Granularity, local_today
from scheduler import SchedulerManager
from schemas import (
    BillIn,
    BillUpdateIn,
    DeleteBillIn,
    DeleteTransactionIn,
    ExpenseIn,
    IncomeIn,
    LocaleIn,
    PayBillIn,
)
from services import (
    BillService,
    LocaleService,
    NotFoundError,
    TransactionService,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cash/Bank Ledger")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().run_migrations:
        run_migrations()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def ok(message: str, data=None) -> dict:
    return {"success": True, "message": message, "data": data}


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, StorageError):
        logger.error(f"storage_error: {exc}")
        return HTTPException(status_code=500, detail="Database error")
    return HTTPException(status_code=400, detail=str(exc))


def bill_payload(bill: Bill) -> dict:
    return {
        "id": bill.id,
        "user_id": bill.user_id,
        "name": bill.name,
        "amount_cents": bill.amount_cents,
        "due_date": bill.due_date.isoformat() if bill.due_date else None,
        "start_date": bill.start_date.isoformat(),
        "payment_day": bill.payment_day,
        "duration_months": bill.duration_months,
        "regularity": bill.regularity,
        "recurring": bill.recurring,
        "category": bill.category,
        "icon": bill.icon,
        "payment_method": bill.payment_method.value,
        "paid": bill.paid,
    }


def balance_payload(row: CashBankBalanceMixin) -> dict:
    return {
        "period": row.period_key,
        "income_cash_cents": row.income_cash_cents,
        "income_bank_cents": row.income_bank_cents,
        "expense_cash_cents": row.expense_cash_cents,
        "expense_bank_cents": row.expense_bank_cents,
        "bill_cash_cents": row.bill_cash_cents,
        "bill_bank_cents": row.bill_bank_cents,
        "cash_cents": row.cash_cents,
        "bank_cents": row.bank_cents,
        "previous_cash_cents": row.previous_cash_cents,
        "previous_bank_cents": row.previous_bank_cents,
        "total_previous_balance_cents": row.total_previous_balance_cents,
        "balance_cash_cents": row.balance_cash_cents,
        "balance_bank_cents": row.balance_bank_cents,
        "total_balance_cents": row.total_balance_cents,
    }


@app.get("/health")
def health():
    return ok("ok", {"date": local_today().isoformat()})


@app.get("/bills")
def list_bills(
    user_id: str,
    period: Optional[str] = None,
    on: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
):
    service = BillService(db, user_id)
    logger.info(f"bills_fetch: user_id={user_id} period={period} date={on}")
    if period and on is None:
        raise HTTPException(status_code=400, detail="date is required with period")
    # Bills are scheduled by month whatever the requested period.
    if on is not None:
        return ok("Bills for period", service.for_period(on))
    return ok("Bills", [bill_payload(bill) for bill in service.list()])


@app.post("/bills/add")
def add_bill(data: BillIn, db: Session = Depends(get_db)):
    try:
        bill = BillService(db, data.user_id).add(data)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Bill added", bill_payload(bill))


@app.post("/bills/pay")
def pay_bill(data: PayBillIn, db: Session = Depends(get_db)):
    try:
        result = BillService(db, data.user_id).pay(
            data.bill_id, data.year_month, data.payment_date
        )
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Bill paid", result)


@app.get("/bills/payment-status")
def bill_payment_status(bill_id: int, user_id: str, db: Session = Depends(get_db)):
    try:
        status = BillService(db, user_id).payment_status(bill_id)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Payment status", status)


@app.post("/bills/update")
def update_bill(data: BillUpdateIn, db: Session = Depends(get_db)):
    try:
        bill = BillService(db, data.user_id).update(data)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Bill updated", bill_payload(bill))


@app.post("/bills/delete")
def delete_bill(data: DeleteBillIn, db: Session = Depends(get_db)):
    try:
        BillService(db, data.user_id).delete(data.bill_id)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Bill deleted", {"bill_id": data.bill_id})


@app.post("/incomes/add")
def add_income(data: IncomeIn, db: Session = Depends(get_db)):
    try:
        income = TransactionService(db, data.user_id).create_income(data)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Income added", {"id": income.id, "amount_cents": income.amount_cents})


@app.post("/expenses/add")
def add_expense(data: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = TransactionService(db, data.user_id).create_expense(data)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok(
        "Expense added", {"id": expense.id, "amount_cents": expense.amount_cents}
    )


@app.post("/transactions/delete")
def delete_transaction(data: DeleteTransactionIn, db: Session = Depends(get_db)):
    try:
        result = TransactionService(db, data.user_id).delete(
            data.transaction_id, data.type
        )
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Transaction deleted", result)


@app.get("/balances/{granularity}")
def list_balances(
    granularity: Granularity,
    user_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
):
    rows = LedgerService(db, user_id).list_periods(granularity, start, end)
    return ok(
        f"{granularity.value} balances", [balance_payload(row) for row in rows]
    )


@app.get("/user_locale/get")
def get_user_locale(user_id: str, db: Session = Depends(get_db)):
    return ok("Locale", {"user_id": user_id, "locale": LocaleService(db).get(user_id)})


@app.post("/user_locale/set")
def set_user_locale(data: LocaleIn, db: Session = Depends(get_db)):
    try:
        locale = LocaleService(db).set(data.user_id, data.locale)
    except (ValueError, StorageError) as exc:
        raise http_error(exc) from exc
    return ok("Locale updated", {"user_id": data.user_id, "locale": locale})


@app.post("/admin/reconcile")
def admin_reconcile(user_id: str, db: Session = Depends(get_db)):
    try:
        reports = LedgerService(db, user_id).reconcile()
    except StorageError as exc:
        raise http_error(exc) from exc
    return ok(
        "Ledger reconciled",
        [
            {
                "granularity": report.granularity.value,
                "start": report.start_key,
                "processed": len(report.processed),
                "failed": report.failed,
            }
            for report in reports
        ],
    )
