import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from callqc.core.config import Settings
from callqc.core.database import make_engine, make_session_factory
from callqc.services.adapters import DispositionClassifier, SpeakerLabeler, Transcriber
from callqc.services.analysis import OpenAIAnalyzer
from callqc.services.gateway import WebhookGateway
from callqc.services.pipeline import PipelineWorker
from callqc.services.queue import JobSender, WorkQueue
from callqc.services.records import CallRecordStore
from callqc.services.transcription import DeepgramTranscriber

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a process needs, built once at startup and passed explicitly."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    store: CallRecordStore
    queue: WorkQueue
    gateway: WebhookGateway
    worker: PipelineWorker
    closers: List[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        # the queue connection goes last so no in-flight hand-off loses it
        for closer in self.closers:
            closer()
        self.engine.dispose()
        self.queue.close()
        logger.info("Services closed")


def default_sender(job_id: str) -> None:
    from callqc.tasks import send_job

    send_job(job_id)


def build_services(
    settings: Settings,
    *,
    engine: Optional[Engine] = None,
    redis_client: Optional[redis.Redis] = None,
    send: Optional[JobSender] = None,
    transcriber: Optional[Transcriber] = None,
    labeler: Optional[SpeakerLabeler] = None,
    classifier: Optional[DispositionClassifier] = None,
) -> Services:
    closers: List[Callable[[], None]] = []
    engine = engine or make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    store = CallRecordStore(session_factory)

    queue = WorkQueue(
        redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True),
        send or default_sender,
        name=settings.queue_name,
        max_attempts=settings.queue_max_attempts,
        backoff_seconds=settings.queue_backoff_seconds,
        visibility_timeout_seconds=settings.queue_visibility_timeout_seconds,
        pending_timeout_seconds=settings.queue_pending_timeout_seconds,
        rate_limit=settings.queue_rate_limit,
        rate_window_seconds=settings.queue_rate_window_seconds,
        completed_retention_seconds=settings.completed_retention_seconds,
        completed_retention_count=settings.completed_retention_count,
        failed_retention_seconds=settings.failed_retention_seconds,
    )

    if transcriber is None:
        deepgram = DeepgramTranscriber(
            settings.deepgram_api_key,
            url=settings.deepgram_url,
            model=settings.deepgram_model,
            cost_per_minute=settings.deepgram_cost_per_minute,
            timeout_seconds=settings.transcription_timeout_seconds,
        )
        closers.append(deepgram.close)
        transcriber = deepgram
    if labeler is None or classifier is None:
        analyzer = OpenAIAnalyzer(
            settings.openai_api_key,
            settings.disposition_taxonomy,
            url=settings.openai_url,
            model=settings.openai_model,
            timeout_seconds=settings.analysis_timeout_seconds,
            strict=settings.strict_classification,
        )
        closers.append(analyzer.close)
        labeler = labeler or analyzer
        classifier = classifier or analyzer

    gateway = WebhookGateway(store, queue, reprocess_terminal=settings.reprocess_terminal_duplicates)
    worker = PipelineWorker(store, queue, transcriber, labeler, classifier)
    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        queue=queue,
        gateway=gateway,
        worker=worker,
        closers=closers,
    )
