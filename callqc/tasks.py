import logging
from typing import Optional

from celery import Task
from celery.signals import setup_logging, worker_process_init, worker_process_shutdown, worker_shutdown
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from callqc.celery_app import celery_app
from callqc.container import Services, build_services
from callqc.core.config import settings
from callqc.core.logging import configure_logging
from callqc.services.errors import JobFailedError
from callqc.services.replay import requeue_stale
from callqc.services.states import CallStatus

logger = logging.getLogger(__name__)


class PipelineTask(Task):
    _services: Optional[Services] = None

    @property
    def services(self) -> Services:
        if PipelineTask._services is None:
            PipelineTask._services = build_services(settings)
        return PipelineTask._services


class CallTask(PipelineTask):
    def on_failure(self, exc, task_id, args, kwargs, einfo):
        # JobFailedError means the worker already wrote the terminal state
        if isinstance(exc, JobFailedError) or not args:
            return
        self.services.worker.abandon(int(args[0]), str(exc) or type(exc).__name__)


def bind_services(services: Optional[Services]) -> None:
    PipelineTask._services = services


def release_services() -> None:
    services = PipelineTask._services
    PipelineTask._services = None
    if services is not None:
        services.close()


@setup_logging.connect
def on_setup_logging(**kwargs) -> None:
    configure_logging(settings.log_level)


@worker_process_init.connect
def on_worker_process_init(**kwargs) -> None:
    bind_services(build_services(settings))


@worker_process_shutdown.connect
def on_worker_process_shutdown(**kwargs) -> None:
    release_services()


@worker_shutdown.connect
def on_worker_shutdown(**kwargs) -> None:
    release_services()


@celery_app.task(
    name="callqc.tasks.process_call",
    base=CallTask,
    bind=True,
    max_retries=settings.queue_max_attempts - 1,
    autoretry_for=(OperationalError, RedisConnectionError),
    retry_backoff=int(settings.queue_backoff_seconds),
)
def process_call(self, record_id: str):
    attempt = self.request.retries + 1
    result = self.services.worker.handle(int(record_id), attempt)
    if result.should_retry:
        raise self.retry(countdown=result.retry_in)
    if result.status != CallStatus.COMPLETED:
        raise JobFailedError(result.record_id, result.status.value, result.error or "")
    return {"record_id": result.record_id, "status": result.status.value}


@celery_app.task(name="callqc.tasks.reconcile_queued_calls", base=PipelineTask, bind=True)
def reconcile_queued_calls(self):
    services = self.services
    return requeue_stale(services.store, services.queue, services.settings.reconcile_after_minutes)


def send_job(job_id: str) -> None:
    process_call.apply_async(args=[job_id], task_id=job_id, queue=settings.queue_name)
