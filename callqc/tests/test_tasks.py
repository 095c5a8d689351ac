from datetime import datetime, timedelta, timezone

import pytest

from callqc.services.errors import (
    DuplicateCallError,
    InvalidTransitionError,
    JobFailedError,
    RecordNotFoundError,
    TranscriptionError,
)
from callqc.services.states import CallStatus
from callqc.tasks import bind_services, process_call, reconcile_queued_calls, send_job

PAYLOAD = {"system_call_id": "SC200", "recording_url": "https://cdn.example/200.mp3", "campaign_name": "Solar-B"}


@pytest.fixture()
def bound(services):
    bind_services(services)
    yield services
    bind_services(None)


def test_process_call_completes_record(bound):
    bound.gateway.ingest(PAYLOAD)
    record = bound.store.find_by_external_id("SC200")

    result = process_call.apply(args=[str(record.id)])

    assert result.successful()
    assert result.result == {"record_id": record.id, "status": "completed"}
    assert bound.store.get(record.id).call_status == "completed"


def test_process_call_retries_through_celery(make_services, fakes):
    transcriber = fakes.Transcriber(failures=[TranscriptionError("deepgram timed out")])
    services = make_services(transcriber=transcriber)
    bind_services(services)
    try:
        services.gateway.ingest(PAYLOAD)
        record = services.store.find_by_external_id("SC200")
        result = process_call.apply(args=[str(record.id)])
    finally:
        bind_services(None)

    assert result.successful()
    assert len(transcriber.calls) == 2
    assert services.store.get(record.id).attempts == 2


def test_process_call_reports_terminal_failure(make_services, fakes, test_settings):
    single_attempt = test_settings.model_copy(update={"queue_max_attempts": 1})
    services = make_services(
        settings=single_attempt,
        transcriber=fakes.Transcriber(failures=[TranscriptionError("audio 404")]),
    )
    bind_services(services)
    try:
        services.gateway.ingest(PAYLOAD)
        record = services.store.find_by_external_id("SC200")
        result = process_call.apply(args=[str(record.id)])
    finally:
        bind_services(None)

    assert result.state == "FAILURE"
    assert isinstance(result.result, JobFailedError)
    assert result.result.status == "transcription_failed"
    assert services.store.get(record.id).call_status == "transcription_failed"


def test_reconcile_task_requeues_stale_records(bound, sink):
    record = bound.store.create(
        external_call_id="SC-OLD",
        raw_payload={"system_call_id": "SC-OLD"},
        recording_url="https://cdn.example/old.mp3",
        created_at=datetime.now(timezone.utc) - timedelta(hours=1),
        updated_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    result = reconcile_queued_calls.apply()
    assert result.result == [record.id]
    assert sink.jobs == [str(record.id)]


def test_send_job_publishes_with_job_id(monkeypatch):
    calls = []
    monkeypatch.setattr(process_call, "apply_async", lambda **kwargs: calls.append(kwargs))
    send_job("17")
    assert calls == [{"args": ["17"], "task_id": "17", "queue": "call-processing"}]


@pytest.mark.parametrize(
    "exc",
    [
        JobFailedError(3, "transcription_failed", "audio 404"),
        InvalidTransitionError(3, "completed", "transcribing"),
        RecordNotFoundError(3),
        DuplicateCallError("SC3"),
    ],
)
def test_errors_rebuild_from_args(exc):
    rebuilt = type(exc)(*exc.args)
    assert str(rebuilt) == str(exc)
    assert vars(rebuilt) == vars(exc)


def test_unexpected_task_failure_marks_record_failed(bound, monkeypatch):
    bound.gateway.ingest(PAYLOAD)
    record = bound.store.find_by_external_id("SC200")

    def crash(record_id, attempt):
        bound.store.update_status(record_id, CallStatus.PROCESSING)
        bound.store.update_status(record_id, CallStatus.TRANSCRIBING)
        raise RuntimeError("worker blew up")

    monkeypatch.setattr(bound.worker, "handle", crash)
    result = process_call.apply(args=[str(record.id)])

    assert result.state == "FAILURE"
    final = bound.store.get(record.id)
    assert final.call_status == "failed"
    assert final.error == "worker blew up"
    assert not bound.queue.is_in_flight(str(record.id))
    assert bound.queue.last_error(str(record.id)) == "worker blew up"
