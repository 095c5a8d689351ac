from typing import Protocol

from callqc.schemas import QCResult, TranscriptionResult


class Transcriber(Protocol):
    """Speech-to-text boundary. Raises ``TranscriptionError`` on failure."""

    def transcribe(self, recording_url: str) -> TranscriptionResult:
        ...


class SpeakerLabeler(Protocol):
    """Annotates a raw transcript with speaker turns. Raises ``LabelingError``."""

    def label_speakers(self, transcript: str) -> str:
        ...


class DispositionClassifier(Protocol):
    """Classifies a labeled transcript into a QC result. Raises ``AnalysisError``."""

    def classify(self, labeled_transcript: str, campaign_name: str) -> QCResult:
        ...


__all__ = ["Transcriber", "SpeakerLabeler", "DispositionClassifier"]
