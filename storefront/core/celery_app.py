from celery import Celery
from kombu import Queue

from storefront.core.config import settings

NOTIFICATIONS_QUEUE = "notifications"

celery_app = Celery(
    "storefront",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["storefront.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Confirmation emails are fire-and-forget; nobody reads the results
    task_ignore_result=True,
    task_time_limit=120,
    task_soft_time_limit=90,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_queues=(Queue(NOTIFICATIONS_QUEUE),),
    task_default_queue=NOTIFICATIONS_QUEUE,
    task_routes={"storefront.tasks.notification_tasks.*": {"queue": NOTIFICATIONS_QUEUE}},
    # Publishing happens on the checkout request path; fail fast when the broker is down
    broker_connection_timeout=2,
    task_publish_retry_policy={
        "max_retries": 2,
        "interval_start": 0,
        "interval_step": 0.2,
        "interval_max": 0.5,
    },
)
