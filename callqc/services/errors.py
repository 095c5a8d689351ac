from callqc.services.states import CallStatus


class CallQCError(Exception):
    """Base class for errors raised by the call QC pipeline."""


class WebhookValidationError(CallQCError):
    pass


class EnqueueError(CallQCError):
    """Record creation or job hand-off failed after the webhook was acknowledged."""


# Constructor arguments stay in ``args`` so Celery can rebuild stored exceptions.


class DuplicateCallError(CallQCError):
    def __init__(self, external_call_id: str) -> None:
        super().__init__(external_call_id)
        self.external_call_id = external_call_id

    def __str__(self) -> str:
        return f"Call {self.external_call_id} already exists"


class RecordNotFoundError(CallQCError):
    def __init__(self, record_id: int) -> None:
        super().__init__(record_id)
        self.record_id = record_id

    def __str__(self) -> str:
        return f"Call record {self.record_id} not found"


class InvalidTransitionError(CallQCError):
    def __init__(self, record_id: int, current: str, target: str) -> None:
        super().__init__(record_id, current, target)
        self.record_id = record_id
        self.current = current
        self.target = target

    def __str__(self) -> str:
        return f"Call record {self.record_id} cannot move from {self.current} to {self.target}"


class StageError(CallQCError):
    """An adapter failed. ``failure_status`` is the terminal state it maps to."""

    failure_status = CallStatus.FAILED
    stage = "pipeline"


class TranscriptionError(StageError):
    failure_status = CallStatus.TRANSCRIPTION_FAILED
    stage = "transcription"


class LabelingError(StageError):
    failure_status = CallStatus.LABELING_FAILED
    stage = "speaker labeling"


class AnalysisError(StageError):
    failure_status = CallStatus.ANALYSIS_FAILED
    stage = "disposition analysis"


class JobFailedError(CallQCError):
    def __init__(self, record_id: int, status: str, error: str) -> None:
        super().__init__(record_id, status, error)
        self.record_id = record_id
        self.status = status
        self.error = error

    def __str__(self) -> str:
        return f"Job {self.record_id} ended in {self.status}: {self.error}"


def failure_status_for(exc: BaseException) -> CallStatus:
    if isinstance(exc, StageError):
        return exc.failure_status
    return CallStatus.FAILED
