import logging

from celery import Celery
from celery.schedules import crontab

from ksiegai.core.config import get_settings
from ksiegai.core.database import SessionLocal

settings = get_settings()
logger = logging.getLogger("ksiegai.tasks")

celery_app = Celery("ksiegai_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.beat_schedule = {
    "ksef-sync": {
        "task": "ksiegai.tasks.ksef_sync",
        "schedule": settings.ksef_sync_interval_minutes * 60,
    },
    "period-auto-lock": {
        "task": "ksiegai.tasks.period_auto_lock",
        "schedule": crontab(hour=2, minute=0),
    },
}


@celery_app.task(name="ksiegai.tasks.ksef_sync")
def ksef_sync_task() -> dict[str, int]:
    from ksiegai.integrations.ksef.sync import get_sync_job

    results = get_sync_job().run_once(trigger="scheduled")
    return {
        "profiles": len(results),
        "failed": sum(1 for item in results if not item.success),
        "invoices_synced": sum(item.invoices_synced for item in results),
    }


@celery_app.task(name="ksiegai.tasks.period_auto_lock")
def period_auto_lock_task() -> dict[str, int]:
    from ksiegai.platform.periods.service import period_service

    current = get_settings()
    session = SessionLocal()
    try:
        results = period_service.auto_lock_all_profiles(
            session,
            max_days_overdue=current.period_auto_lock_max_days_overdue,
            skip_if_unposted=current.period_auto_lock_skip_if_unposted,
        )
    finally:
        session.close()
    locked = sum(len(item.locked) for item in results)
    logger.info("periods.auto_lock.completed", extra={"count": locked})
    return {"profiles": len(results), "locked": locked}
