"""Celery application instance used when SCHEDULER_MODE=celery.

Start beat + a worker with:
    celery -A app.celery_app worker -B -Q dispatch -l info --concurrency=1
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("chat_scheduler", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True

celery_app.conf.task_routes = {
    "app.workers.dispatcher.dispatch_due": {"queue": "dispatch"},
}

# Beat schedule: one tick per interval (60 s by default)
celery_app.conf.beat_schedule = {
    "dispatch-due-items": {
        "task": "app.workers.dispatcher.dispatch_due",
        "schedule": settings.SCHEDULER_INTERVAL_SECONDS,
    }
}

# --- Ensure tasks are registered ---
import app.workers.dispatcher  # noqa: E402,F401
