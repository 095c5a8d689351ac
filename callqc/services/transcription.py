import logging
from typing import Any, Dict, Optional

import httpx

from callqc.schemas import TranscriptionResult
from callqc.services.errors import TranscriptionError

logger = logging.getLogger(__name__)


class DeepgramTranscriber:
    def __init__(
        self,
        api_key: str,
        url: str = "https://api.deepgram.com/v1/listen",
        model: str = "nova-2",
        cost_per_minute: float = 0.004,
        timeout_seconds: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.model = model
        self.cost_per_minute = cost_per_minute
        self._client = client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)

    def transcribe(self, recording_url: str) -> TranscriptionResult:
        try:
            audio = self._client.get(recording_url)
            audio.raise_for_status()
            response = self._client.post(
                self.url,
                params={"model": self.model, "smart_format": "true"},
                headers={
                    "Authorization": f"Token {self.api_key}",
                    "Content-Type": audio.headers.get("content-type", "audio/mpeg"),
                },
                content=audio.content,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Transcription request failed for {recording_url}: {exc}") from exc
        except ValueError as exc:
            raise TranscriptionError(f"Transcription response was not JSON: {exc}") from exc
        return self.parse_response(body)

    def parse_response(self, body: Dict[str, Any]) -> TranscriptionResult:
        channels = (body.get("results") or {}).get("channels") or [{}]
        alternatives = channels[0].get("alternatives") or [{}]
        transcript = alternatives[0].get("transcript") or ""
        duration = float((body.get("metadata") or {}).get("duration") or 0)
        return TranscriptionResult(
            transcript=transcript,
            duration_seconds=duration,
            estimated_cost=(duration / 60) * self.cost_per_minute,
        )

    def close(self) -> None:
        self._client.close()
