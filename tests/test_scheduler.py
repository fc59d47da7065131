from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import scheduler
from database import Base
from ledger import LedgerService, StorageError
from models import Bucket, PaymentMethod
from periods import Granularity


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session, user_id: str, amount: int) -> None:
    LedgerService(session, user_id).apply_amount(
        Granularity.monthly, "2025-01", Bucket.income, PaymentMethod.cash, amount
    )
    session.commit()


def test_reconcile_users_skips_user_with_storage_failure(monkeypatch) -> None:
    session = make_session()
    seed(session, "user-a", 1_000)
    seed(session, "user-b", 2_000)
    real_reconcile = LedgerService.reconcile

    def reconcile(self):
        if self.user_id == "user-a":
            raise StorageError("Could not load monthly periods from 2025-01")
        return real_reconcile(self)

    monkeypatch.setattr(LedgerService, "reconcile", reconcile)
    summary = scheduler.reconcile_users(session)

    assert summary == {"users": 2, "failed_periods": 0, "aborted": ["user-a"]}
    ledger_b = LedgerService(session, "user-b")
    assert ledger_b.get_period(Granularity.monthly, "2025-01").cash_cents == 2_000
    ledger_a = LedgerService(session, "user-a")
    assert ledger_a.get_period(Granularity.monthly, "2025-01").cash_cents == 0


def test_scheduler_stays_off_unless_enabled() -> None:
    manager = scheduler.SchedulerManager()
    manager.enabled = False

    manager.start()

    assert not manager.scheduler.running
    manager.stop()
