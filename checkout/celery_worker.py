# checkout/celery_worker.py
from celery import Celery

from checkout.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    RECONCILE_INTERVAL_SECONDS,
)

celery_app = Celery(
    "checkout",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAZNE: explicite importuj taski, zeby Celery je zarejestrowal
celery_app.conf.imports = (
    "checkout.tasks.reconcile",
    "checkout.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "reconcile-partial-checkouts": {
        "task": "checkout.tasks.reconcile.reconcile_checkouts_task",
        "schedule": RECONCILE_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
