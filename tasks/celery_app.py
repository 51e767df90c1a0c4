"""
tasks/celery_app.py
Celery application for the background activity sink.

Workers are started with:
    celery -A tasks.celery_app worker -Q activity --loglevel=info --concurrency=4
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "gig_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.activity_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.APP_TIMEZONE,
    enable_utc=True,

    # Reliability: acknowledge task AFTER execution, not before
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Activity entries are fire-and-forget; nobody reads the results
    task_ignore_result=True,

    # Publishing happens on the request path: give up fast when the broker is down
    task_publish_retry=False,
    broker_connection_timeout=2,

    task_max_retries=3,

    # Routing
    task_routes={
        "tasks.activity_tasks.*": {"queue": settings.ACTIVITY_QUEUE},
    },

    worker_prefetch_multiplier=1,
)
