import json
import logging
import re
from typing import List, Optional

import httpx
from pydantic import ValidationError

from callqc.schemas import QCResult
from callqc.services.errors import AnalysisError, LabelingError

logger = logging.getLogger(__name__)

SPEAKER_PROMPT = (
    "You receive the raw transcript of a recorded sales phone call. Rewrite it as a "
    "dialogue, one turn per line, prefixing each turn with 'Agent:' or 'Customer:'. "
    "Keep the wording exactly as transcribed and do not add commentary. Automated "
    "messages and voicemail greetings are labeled 'System:'."
)

QC_PROMPT = """You are a call quality-control analyst. Read the labeled transcript and \
classify the call outcome.

Allowed dispositions: {dispositions}

Reply with a single JSON object and nothing else, using these keys:
- "disposition": one of the allowed dispositions
- "sub_disposition": a short refinement or null
- "reason": why this disposition applies
- "summary": two or three sentences describing the call
- "sentiment": "Positive", "Neutral" or "Negative"
- "confidence_level": "High", "Medium" or "Low"
- "key_moments": list of short quotes or events
- "objections_raised": list of customer objections
- "objections_overcome": "Yes", "No" or "Partial"
"""

FENCE_RE = re.compile(r"```(?:json)?")


class OpenAIAnalyzer:
    """Speaker labeling and disposition classification over the chat completions API."""

    def __init__(
        self,
        api_key: str,
        dispositions: List[str],
        url: str = "https://api.openai.com/v1/chat/completions",
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 120.0,
        strict: bool = False,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.dispositions = dispositions
        self.url = url
        self.model = model
        self.strict = strict
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def _complete(self, system_prompt: str, user_content: str) -> str:
        response = self._client.post(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "temperature": 0,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
            },
        )
        response.raise_for_status()
        choices = response.json().get("choices") or [{}]
        return ((choices[0].get("message") or {}).get("content") or "").strip()

    def label_speakers(self, transcript: str) -> str:
        try:
            content = self._complete(SPEAKER_PROMPT, transcript or "")
        except (httpx.HTTPError, ValueError) as exc:
            raise LabelingError(f"Speaker labeling failed: {exc}") from exc
        return content or transcript or ""

    def classify(self, labeled_transcript: str, campaign_name: str) -> QCResult:
        prompt = QC_PROMPT.format(dispositions=", ".join(self.dispositions))
        user_content = f'This Call is from Campaign: "{campaign_name}". Transcript:\n{labeled_transcript}'
        try:
            content = self._complete(prompt, user_content)
        except (httpx.HTTPError, ValueError) as exc:
            raise AnalysisError(f"Disposition analysis failed: {exc}") from exc
        return self.parse_classification(content)

    def parse_classification(self, content: str) -> QCResult:
        cleaned = FENCE_RE.sub("", content).strip()
        try:
            parsed = json.loads(cleaned)
            if not isinstance(parsed, dict):
                raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
            return QCResult.from_model_output(parsed)
        except (ValueError, ValidationError) as exc:
            if self.strict:
                raise AnalysisError(f"Disposition analysis returned malformed output: {exc}") from exc
            logger.warning("Unparsable disposition output, using placeholder: %s", exc)
            return QCResult()

    def close(self) -> None:
        self._client.close()
