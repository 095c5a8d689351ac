from types import SimpleNamespace

import fakeredis
import pytest
from fastapi.testclient import TestClient

from callqc.container import build_services
from callqc.core.config import Settings
from callqc.core.database import Base, make_engine
from callqc.main import create_app
from callqc.schemas import QCResult, TranscriptionResult


class FakeTranscriber:
    def __init__(self, failures=None):
        self.calls = []
        self.failures = list(failures or [])

    def transcribe(self, recording_url):
        self.calls.append(recording_url)
        if self.failures:
            raise self.failures.pop(0)
        return TranscriptionResult(
            transcript="hi this is dana from bright solar are you the homeowner yes I am",
            duration_seconds=90.0,
            estimated_cost=0.006,
        )


class FakeLabeler:
    def __init__(self, failures=None):
        self.calls = []
        self.failures = list(failures or [])

    def label_speakers(self, transcript):
        self.calls.append(transcript)
        if self.failures:
            raise self.failures.pop(0)
        return "Agent: hi this is dana from bright solar\nCustomer: yes I am"


class FakeClassifier:
    def __init__(self, failures=None, disposition="Sale"):
        self.calls = []
        self.failures = list(failures or [])
        self.disposition = disposition

    def classify(self, labeled_transcript, campaign_name):
        self.calls.append((labeled_transcript, campaign_name))
        if self.failures:
            raise self.failures.pop(0)
        return QCResult(
            disposition=self.disposition,
            reason="Customer agreed to the installation appointment",
            summary="Homeowner booked a solar consultation.",
            sentiment="Positive",
            confidence_level="High",
            key_moments=["Customer confirmed homeownership"],
        )


class JobSink:
    """Stands in for the Celery publisher."""

    def __init__(self):
        self.jobs = []

    def __call__(self, job_id):
        self.jobs.append(job_id)


def drain(services, sink):
    """Run every published job to the end, replaying retries like the broker would."""
    results = []
    while sink.jobs:
        job_id = sink.jobs.pop(0)
        attempt = 1
        while True:
            result = services.worker.handle(int(job_id), attempt)
            if not result.should_retry:
                break
            attempt += 1
        results.append(result)
    return results


@pytest.fixture()
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        redis_url="redis://localhost:6379/15",
        queue_rate_limit=1000,
    )


@pytest.fixture()
def engine():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture()
def sink():
    return JobSink()


@pytest.fixture()
def transcriber():
    return FakeTranscriber()


@pytest.fixture()
def labeler():
    return FakeLabeler()


@pytest.fixture()
def classifier():
    return FakeClassifier()


@pytest.fixture()
def make_services(test_settings, engine, redis_client, sink, transcriber, labeler, classifier):
    def factory(settings=None, **overrides):
        options = {
            "engine": engine,
            "redis_client": redis_client,
            "send": sink,
            "transcriber": transcriber,
            "labeler": labeler,
            "classifier": classifier,
        }
        options.update(overrides)
        return build_services(settings or test_settings, **options)

    return factory


@pytest.fixture()
def services(make_services):
    return make_services()


@pytest.fixture()
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture()
def run_jobs(services, sink):
    return lambda: drain(services, sink)


@pytest.fixture()
def fakes():
    return SimpleNamespace(Transcriber=FakeTranscriber, Labeler=FakeLabeler, Classifier=FakeClassifier)
