"""
Background scheduler - runs periodic jobs inside the FastAPI process.

Jobs:
  - Execution automation (daily at AUTOMATION_HOUR UTC): auto start on day 1,
    auto complete on the last day of the month
"""
import asyncio
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_execution_automation():
    from app.config import get_settings
    from app.infrastructure.db.session import get_session_factory
    from app.infrastructure.rates import build_rate_provider
    from app.application.automation import AutomationService

    settings = get_settings()
    Session = get_session_factory()
    db = Session()
    try:
        service = AutomationService(db, build_rate_provider(settings), settings.planning_settings())
        results = asyncio.run(service.check_and_execute())
        for result in results:
            if not result.success:
                logger.error("Automation %s for %s gave up: %s", result.action, result.month_label, result.error)
    except Exception:
        logger.exception("Execution automation job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    from app.config import get_settings

    hour = get_settings().AUTOMATION_HOUR

    scheduler.add_job(
        _run_execution_automation,
        CronTrigger(hour=hour, minute=0, timezone="UTC"),
        id="execution_automation",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: execution_automation (%02d:00 UTC)", hour)


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
