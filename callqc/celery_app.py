from celery import Celery

from callqc.core.config import settings

celery_app = Celery(
    "callqc",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["callqc.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.queue_name,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.queue_concurrency,
    broker_transport_options={"visibility_timeout": settings.queue_visibility_timeout_seconds},
    result_expires=settings.completed_retention_seconds,
)

celery_app.conf.beat_schedule = {
    "reconcile-queued-calls-every-5m": {
        "task": "callqc.tasks.reconcile_queued_calls",
        "schedule": 300.0,
    }
}
