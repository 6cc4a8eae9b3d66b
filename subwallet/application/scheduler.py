"""
Background scheduler: runs periodic jobs inside the FastAPI process.

Jobs (cron times are in settings.TIMEZONE):
  - Scheduled allocations sweep (every ALLOCATION_SWEEP_MINUTES)
  - Budget alerts sweep (every BUDGET_ALERT_SWEEP_MINUTES)
  - Complete expired budget periods (00:05)
  - Auto-create monthly budgets (1st of month, 00:10)
  - Ledger reconciliation (03:00)
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from subwallet.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_scheduled_allocations():
    from subwallet.infrastructure.db.session import session_scope
    from subwallet.application.allocation_engine import process_scheduled_allocations

    try:
        with session_scope() as db:
            process_scheduled_allocations(db)
    except Exception:
        logger.exception("Scheduled allocations job failed")


def _run_budget_alerts():
    from subwallet.infrastructure.db.session import session_scope
    from subwallet.application.budgets import check_budget_alerts

    try:
        with session_scope() as db:
            check_budget_alerts(db)
    except Exception:
        logger.exception("Budget alerts job failed")


def _run_complete_expired_budgets():
    from subwallet.infrastructure.db.session import session_scope
    from subwallet.application.budgets import complete_expired_budgets

    try:
        with session_scope() as db:
            complete_expired_budgets(db)
    except Exception:
        logger.exception("Complete expired budgets job failed")


def _run_auto_monthly_budgets():
    from subwallet.infrastructure.db.session import session_scope
    from subwallet.application.budgets import auto_create_monthly_budgets_for_all

    try:
        with session_scope() as db:
            created = auto_create_monthly_budgets_for_all(db)
        logger.info("Auto-created %d monthly budget period(s)", created)
    except Exception:
        logger.exception("Auto monthly budgets job failed")


def _run_reconciliation():
    from subwallet.infrastructure.db.session import session_scope
    from subwallet.application.sub_accounts import reconcile_all

    try:
        with session_scope() as db:
            mismatches = reconcile_all(db)
        if mismatches:
            logger.error("Ledger reconciliation found %d mismatched sub-account(s)", len(mismatches))
    except Exception:
        logger.exception("Ledger reconciliation job failed")


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()
    scheduler.configure(timezone=settings.TIMEZONE)

    scheduler.add_job(
        _run_scheduled_allocations,
        "interval",
        minutes=settings.ALLOCATION_SWEEP_MINUTES,
        id="scheduled_allocations",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        _run_budget_alerts,
        "interval",
        minutes=settings.BUDGET_ALERT_SWEEP_MINUTES,
        id="budget_alerts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        _run_complete_expired_budgets,
        CronTrigger(hour=0, minute=5, timezone=settings.TIMEZONE),
        id="complete_expired_budgets",
        replace_existing=True,
    )

    scheduler.add_job(
        _run_auto_monthly_budgets,
        CronTrigger(day=1, hour=0, minute=10, timezone=settings.TIMEZONE),
        id="auto_monthly_budgets",
        replace_existing=True,
    )

    scheduler.add_job(
        _run_reconciliation,
        CronTrigger(hour=3, minute=0, timezone=settings.TIMEZONE),
        id="ledger_reconciliation",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: scheduled_allocations (every %d min), budget_alerts (every %d min), "
        "complete_expired_budgets (00:05), auto_monthly_budgets (1st 00:10), "
        "ledger_reconciliation (03:00), timezone %s",
        settings.ALLOCATION_SWEEP_MINUTES, settings.BUDGET_ALERT_SWEEP_MINUTES, settings.TIMEZONE,
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
