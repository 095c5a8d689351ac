import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from callqc.models import CallRecord
from callqc.services.adapters import DispositionClassifier, SpeakerLabeler, Transcriber
from callqc.services.errors import failure_status_for
from callqc.services.queue import WorkQueue
from callqc.services.records import CallRecordStore
from callqc.services.states import CallStatus, can_transition, is_terminal

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobResult:
    record_id: int
    status: CallStatus
    error: Optional[str] = None
    retry_in: Optional[float] = None

    @property
    def should_retry(self) -> bool:
        return self.retry_in is not None


class PipelineWorker:
    """Drives one call record through transcription, labeling and classification.

    The whole job restarts at ``processing`` on every attempt. Stage outputs from
    an earlier attempt are overwritten. Only the last attempt writes a terminal
    failure state, so a record never looks finished while a retry is pending.
    """

    def __init__(
        self,
        store: CallRecordStore,
        queue: WorkQueue,
        transcriber: Transcriber,
        labeler: SpeakerLabeler,
        classifier: DispositionClassifier,
    ) -> None:
        self.store = store
        self.queue = queue
        self.transcriber = transcriber
        self.labeler = labeler
        self.classifier = classifier

    def handle(self, record_id: int, attempt: int = 1) -> JobResult:
        record = self.store.get(record_id)
        if record is None:
            logger.error("Job %s has no call record; dropping it", record_id)
            self.queue.fail(str(record_id), "call record not found")
            return JobResult(record_id, CallStatus.FAILED, error="call record not found")
        if is_terminal(record.call_status):
            # redelivery of a job whose final write already landed
            logger.warning("Job %s redelivered in terminal state %s; skipping", record_id, record.call_status)
            self.queue.complete(str(record_id))
            return JobResult(record_id, CallStatus(record.call_status), error=record.error)

        self.queue.begin(str(record_id), attempt)
        try:
            record = self.run(record, attempt)
        except Exception as exc:
            return self._handle_failure(record_id, attempt, exc)
        self.queue.complete(str(record_id))
        logger.info("Job %s completed with disposition %s", record_id, record.status)
        return JobResult(record_id, CallStatus.COMPLETED)

    def run(self, record: CallRecord, attempt: int) -> CallRecord:
        record_id = record.id
        self.store.update_status(
            record_id,
            CallStatus.PROCESSING,
            attempts=attempt,
            processing_started_at=utcnow(),
            processing_ended_at=None,
        )

        self.store.update_status(record_id, CallStatus.TRANSCRIBING)
        transcription = self.transcriber.transcribe(record.recording_url)

        self.store.update_status(
            record_id,
            CallStatus.LABELING_SPEAKERS,
            transcript=transcription.transcript,
            duration_seconds=transcription.duration_seconds,
            estimated_cost=transcription.estimated_cost,
        )
        labeled = self.labeler.label_speakers(transcription.transcript)

        self.store.update_status(record_id, CallStatus.ANALYZING_DISPOSITION, labeled_transcript=labeled)
        qc = self.classifier.classify(labeled, record.campaign_name or "")

        return self.store.update_status(
            record_id,
            CallStatus.COMPLETED,
            qc=qc.model_dump(),
            status=qc.disposition,
            error=None,
            processing_ended_at=utcnow(),
        )

    def _handle_failure(self, record_id: int, attempt: int, exc: Exception) -> JobResult:
        message = str(exc) or type(exc).__name__
        if self.queue.should_retry(attempt):
            self.store.record_failure(record_id, message)
            delay = self.queue.defer(str(record_id), attempt)
            logger.warning(
                "Job %s attempt %s/%s failed (%s); retrying in %.0fs",
                record_id,
                attempt,
                self.queue.max_attempts,
                message,
                delay,
            )
            current = self.store.get(record_id)
            return JobResult(record_id, CallStatus(current.call_status), error=message, retry_in=delay)

        current = self.store.get(record_id)
        target = failure_status_for(exc)
        if not can_transition(current.call_status, target):
            target = CallStatus.FAILED
        if can_transition(current.call_status, target):
            self.store.update_status(record_id, target, error=message, processing_ended_at=utcnow())
        else:
            target = CallStatus(current.call_status)
            self.store.record_failure(record_id, message)
        self.queue.fail(str(record_id), message)
        logger.error("Job %s failed after %s attempt(s) in %s: %s", record_id, attempt, target.value, message)
        return JobResult(record_id, target, error=message)

    def abandon(self, record_id: int, error: str) -> None:
        """Close out a job that died outside ``handle``, e.g. after its broker retries ran out."""
        record = self.store.get(record_id)
        if record is None or is_terminal(record.call_status):
            return
        if can_transition(record.call_status, CallStatus.FAILED):
            self.store.update_status(record_id, CallStatus.FAILED, error=error, processing_ended_at=utcnow())
        else:
            # still queued; reconciliation picks it up once the lock is gone
            self.store.record_failure(record_id, error)
        self.queue.fail(str(record_id), error)
        logger.error("Job %s abandoned in %s: %s", record_id, record.call_status, error)
