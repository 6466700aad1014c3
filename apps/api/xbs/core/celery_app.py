from __future__ import annotations

import logging

from celery import Celery

from xbs.business.subscription.service import subscription_service
from xbs.core.config import get_settings
from xbs.core.database import Database
from xbs.otel import get_tracer

settings = get_settings()
logger = logging.getLogger("xbs.jobs")
tracer = get_tracer("xbs.jobs")

celery_app = Celery("xbs_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    timezone="UTC",
    beat_schedule={
        "activate-expired-trials": {
            "task": "xbs.tasks.activate_expired_trials",
            "schedule": settings.trial_sweep_interval_seconds,
        },
    },
)


@celery_app.task(name="xbs.tasks.activate_expired_trials")
def activate_expired_trials_task() -> list[str]:
    with tracer.start_as_current_span("xbs.job.trial_sweep") as job_span:
        job_span.set_attribute("job_type", "trial_sweep")
        job_span.set_attribute("batch_size", settings.trial_sweep_batch_size)
        database = Database(settings.database_url, echo=settings.database_echo)
        try:
            with database.session() as session:
                activated = subscription_service.activate_expired_trials(
                    session,
                    limit=settings.trial_sweep_batch_size,
                )
        finally:
            database.dispose()
        job_span.set_attribute("activated_count", len(activated))
    logger.info(
        "trial_sweep.completed",
        extra={"job_type": "trial_sweep", "status": "ok", "count": len(activated)},
    )
    return [str(subscription_id) for subscription_id in activated]
