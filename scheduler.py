import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select, union

from config import get_settings
from database import session_scope
from ledger import LedgerService, StorageError
from models import BALANCE_MODELS


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def ledger_user_ids(session) -> list[str]:
    stmt = union(*(select(model.user_id) for model in BALANCE_MODELS.values()))
    return sorted(session.execute(stmt).scalars().all())


def reconcile_users(session) -> dict:
    """Reconcile every user; one user's storage failure does not stop the rest."""
    failed = 0
    aborted: list[str] = []
    user_ids = ledger_user_ids(session)
    for user_id in user_ids:
        try:
            reports = LedgerService(session, user_id).reconcile()
        except StorageError as exc:
            logger.error(f"reconcile_user_failed: user_id={user_id} error={exc}")
            aborted.append(user_id)
            continue
        failed += sum(len(report.failed) for report in reports)
    return {"users": len(user_ids), "failed_periods": failed, "aborted": aborted}


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.reconcile_enabled
        self.hour = settings.reconcile_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"reconcile_run: source={source}")
        with session_scope() as session:
            summary = reconcile_users(session)
        logger.info(
            f"reconcile_run: source={source} users={summary['users']} "
            f"failed_periods={summary['failed_periods']} "
            f"aborted_users={len(summary['aborted'])}"
        )

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled; ledger reconciliation is manual only")
            return

        trigger = CronTrigger(hour=self.hour, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{self.hour:02d}:15"],
            id="ledger_reconcile_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily {self.hour:02d}:15 reconciliation")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
