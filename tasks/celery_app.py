"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "home_services",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.assignment_tasks",
        "tasks.booking_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.TIMEZONE,
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    task_routes={
        "tasks.assignment_tasks.*": {"queue": "assignment"},
        "tasks.booking_tasks.*": {"queue": "default"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────

celery_app.conf.beat_schedule = {
    # Paid items that found no partner at payment time
    "retry-unassigned-items": {
        "task": "tasks.assignment_tasks.retry_unassigned_items",
        "schedule": 600,
    },
    # Bookings abandoned at checkout release their credits
    "expire-unpaid-bookings": {
        "task": "tasks.booking_tasks.expire_unpaid_bookings",
        "schedule": 300,
    },
}
