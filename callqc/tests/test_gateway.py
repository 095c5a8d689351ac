from datetime import datetime, timezone

import pytest

from callqc.services.errors import WebhookValidationError
from callqc.services.gateway import IngestOutcome, WebhookGateway, normalize_payload, parse_datetime

PAYLOAD = {"system_call_id": "SC200", "recording_url": "https://cdn.example/y.mp3", "campaign_name": "Solar-B"}


def test_accept_trims_keys():
    gateway = WebhookGateway(store=None, queue=None)
    payload = gateway.accept({" system_call_id": "A1", "recording_url  ": "https://cdn.example/a.mp3"})
    assert payload == {"system_call_id": "A1", "recording_url": "https://cdn.example/a.mp3"}


def test_accept_rejects_missing_fields():
    gateway = WebhookGateway(store=None, queue=None)
    with pytest.raises(WebhookValidationError):
        gateway.accept({"system_call_id": "A1"})


def test_normalize_payload_keeps_values():
    assert normalize_payload({" a ": " b "}) == {"a": " b "}


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2026-10-18T15:04:05Z", datetime(2026, 10, 18, 15, 4, 5, tzinfo=timezone.utc)),
        ("1760799845", datetime(2025, 10, 18, 15, 4, 5, tzinfo=timezone.utc)),
        ("1760799845000", datetime(2025, 10, 18, 15, 4, 5, tzinfo=timezone.utc)),
        ("yesterday", None),
        (None, None),
    ],
)
def test_parse_datetime(value, expected):
    assert parse_datetime(value) == expected


def test_ingest_creates_record_and_enqueues(services, sink):
    assert services.gateway.ingest(PAYLOAD) == IngestOutcome.CREATED
    record = services.store.find_by_external_id("SC200")
    assert sink.jobs == [str(record.id)]
    assert services.queue.is_in_flight(str(record.id))


def test_ingest_duplicate_while_non_terminal(services, sink):
    services.gateway.ingest(PAYLOAD)
    record = services.store.find_by_external_id("SC200")
    services.store.update_status(record.id, "processing")
    assert services.gateway.ingest(PAYLOAD) == IngestOutcome.DUPLICATE
    assert len(sink.jobs) == 1


def test_ingest_terminal_record_ignored_by_default(services, sink):
    services.store.create(
        external_call_id="SC200",
        recording_url="https://cdn.example/y.mp3",
        raw_payload=PAYLOAD,
        call_status="completed",
    )
    assert services.gateway.ingest(PAYLOAD) == IngestOutcome.IGNORED
    assert services.store.find_by_external_id("SC200").call_status == "completed"
    assert sink.jobs == []


def test_ingest_terminal_record_requeued_when_enabled(test_settings, make_services, sink):
    services = make_services(test_settings.model_copy(update={"reprocess_terminal_duplicates": True}))
    record = services.store.create(
        external_call_id="SC200",
        recording_url="https://cdn.example/old.mp3",
        raw_payload=PAYLOAD,
        call_status="transcription_failed",
        error="boom",
        attempts=3,
    )
    assert services.gateway.ingest(PAYLOAD) == IngestOutcome.REQUEUED
    refreshed = services.store.get(record.id)
    assert refreshed.call_status == "queued"
    assert refreshed.error is None
    assert refreshed.attempts == 0
    assert refreshed.recording_url == "https://cdn.example/y.mp3"
    assert sink.jobs == [str(record.id)]

    # a second late webhook while the replay is pending is a duplicate
    assert services.gateway.ingest(PAYLOAD) == IngestOutcome.DUPLICATE
    assert len(sink.jobs) == 1


def test_ingest_creation_race_reports_duplicate(services, sink, monkeypatch):
    services.gateway.ingest(PAYLOAD)
    monkeypatch.setattr(services.store, "find_by_external_id", lambda external_call_id: None)
    assert services.gateway.ingest(PAYLOAD) == IngestOutcome.DUPLICATE
    assert len(sink.jobs) == 1


def test_hand_off_swallows_errors(services, monkeypatch):
    def explode(**fields):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(services.store, "create", explode)
    assert services.gateway.hand_off(PAYLOAD) is None
