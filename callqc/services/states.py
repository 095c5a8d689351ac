import enum


class CallStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    TRANSCRIBING = "transcribing"
    LABELING_SPEAKERS = "labeling_speakers"
    ANALYZING_DISPOSITION = "analyzing_disposition"
    COMPLETED = "completed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    LABELING_FAILED = "labeling_failed"
    ANALYSIS_FAILED = "analysis_failed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.TRANSCRIPTION_FAILED,
        CallStatus.LABELING_FAILED,
        CallStatus.ANALYSIS_FAILED,
        CallStatus.FAILED,
    }
)

IN_PROGRESS_STATUSES = frozenset(
    {
        CallStatus.PROCESSING,
        CallStatus.TRANSCRIBING,
        CallStatus.LABELING_SPEAKERS,
        CallStatus.ANALYZING_DISPOSITION,
    }
)

# Forward edges plus the stage failure edges. Every in-progress state may also
# fall to the generic FAILED state or restart at PROCESSING for a retry attempt.
TRANSITIONS = {
    CallStatus.QUEUED: {CallStatus.PROCESSING},
    CallStatus.PROCESSING: {CallStatus.TRANSCRIBING},
    CallStatus.TRANSCRIBING: {CallStatus.LABELING_SPEAKERS, CallStatus.TRANSCRIPTION_FAILED},
    CallStatus.LABELING_SPEAKERS: {CallStatus.ANALYZING_DISPOSITION, CallStatus.LABELING_FAILED},
    CallStatus.ANALYZING_DISPOSITION: {CallStatus.COMPLETED, CallStatus.ANALYSIS_FAILED},
}
for _status in IN_PROGRESS_STATUSES:
    TRANSITIONS[_status] = TRANSITIONS[_status] | {CallStatus.FAILED, CallStatus.PROCESSING}
for _status in TERMINAL_STATUSES:
    # reprocessing a finished call starts over from the queue
    TRANSITIONS[_status] = {CallStatus.QUEUED}


def is_terminal(status: str) -> bool:
    return CallStatus(status) in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return CallStatus(target) in TRANSITIONS[CallStatus(current)]
