"""
Celery application: broker and result backend from settings.
Tasks live in photovault.workers.tasks.
"""
from celery import Celery
from celery.schedules import crontab

from photovault.core.config import settings

celery_app = Celery(
    "photovault",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "photovault.workers.tasks.reservations",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "release-stale-reservations": {
            "task": "photovault.workers.tasks.reservations.release_stale_reservations",
            "schedule": crontab(minute="*/5"),
        },
        "verify-ledger-balances": {
            "task": "photovault.workers.tasks.reservations.verify_ledger_balances",
            "schedule": crontab(minute=15, hour="*/6"),
        },
    },
)
