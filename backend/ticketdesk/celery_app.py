"""
Celery worker executing the fire-and-forget side effects of ticket operations.
"""
from celery import Celery
import logging
from .config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "ticketdesk",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_ignore_result=True,
)

_worker_context = None


def get_worker_context():
    """Context for this worker process, built on first use."""
    global _worker_context
    if _worker_context is None:
        from .context import build_app_context

        _worker_context = build_app_context(settings)
        logger.info("Worker context ready")
    return _worker_context


@celery_app.task(name="ticketdesk.execute_job")
def execute_job(job_name: str, payload: dict):
    """Run one registered side-effect job; failures are logged, not retried."""
    from .jobs import run_job

    ok = run_job(get_worker_context(), job_name, payload)
    return {"job": job_name, "ok": ok}
