from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    success: bool
    message: str


class TranscriptionResult(BaseModel):
    transcript: str = ""
    duration_seconds: float = 0.0
    estimated_cost: float = 0.0


CHOICE_FIELDS = {
    "sentiment": ("Positive", "Neutral", "Negative"),
    "confidence_level": ("High", "Medium", "Low"),
    "objections_overcome": ("Yes", "No", "Partial"),
}
LIST_FIELDS = ("key_moments", "objections_raised")


def _match_choice(value: Any, choices) -> Optional[str]:
    text = str(value).strip().lower()
    for choice in choices:
        if choice.lower() == text:
            return choice
    return None


class QCResult(BaseModel):
    disposition: str = "Not Classified"
    sub_disposition: Optional[str] = None
    reason: str = ""
    summary: str = ""
    sentiment: str = Field(default="Neutral", pattern="^(Positive|Neutral|Negative)$")
    confidence_level: str = Field(default="Low", pattern="^(High|Medium|Low)$")
    key_moments: List[str] = Field(default_factory=list)
    objections_raised: List[str] = Field(default_factory=list)
    objections_overcome: str = Field(default="No", pattern="^(Yes|No|Partial)$")

    @classmethod
    def from_model_output(cls, parsed: Dict[str, Any]) -> "QCResult":
        """Build a result from model JSON, defaulting each unusable field on its own."""
        defaults = cls()
        values = {}
        for name in cls.model_fields:
            value = parsed.get(name)
            if not value:
                values[name] = getattr(defaults, name)
            elif name in CHOICE_FIELDS:
                values[name] = _match_choice(value, CHOICE_FIELDS[name]) or getattr(defaults, name)
            elif name in LIST_FIELDS:
                items = value if isinstance(value, list) else [value]
                values[name] = [str(item) for item in items if item]
            elif name == "sub_disposition":
                values[name] = str(value)
            else:
                values[name] = value if isinstance(value, str) else str(value)
        return cls.model_validate(values)


class QueueStats(BaseModel):
    waiting: int
    active: int
    delayed: int
    completed: int
    failed: int
    total: int
