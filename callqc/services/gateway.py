import enum
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from callqc.services.errors import DuplicateCallError, EnqueueError, WebhookValidationError
from callqc.services.queue import WorkQueue
from callqc.services.records import CallRecordStore
from callqc.services.states import CallStatus, is_terminal

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("recording_url", "system_call_id")
MISSING_FIELDS_MESSAGE = "Missing required fields: recording_url and system_call_id"
ACK_MESSAGE = "Webhook received and queued for processing"


class IngestOutcome(str, enum.Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REQUEUED = "requeued"


def normalize_payload(raw: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(key).strip(): value for key, value in raw.items()}


def validate_payload(payload: Mapping[str, Any]) -> None:
    if any(not payload.get(field) for field in REQUIRED_FIELDS):
        raise WebhookValidationError(MISSING_FIELDS_MESSAGE)


def parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.isdigit():
        seconds = int(text)
        # epoch milliseconds are common in call tracking payloads
        if seconds > 10**11:
            seconds = seconds / 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparsable call_timestamp %r", value)
        return None


def map_payload_to_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "external_call_id": str(payload["system_call_id"]).strip(),
        "recording_url": str(payload["recording_url"]).strip(),
        "campaign_name": payload.get("campaign_name"),
        "caller_id": payload.get("caller_number"),
        "publisher_id": payload.get("system_publisher_id"),
        "buyer_id": payload.get("system_buyer_id"),
        "system_name": payload.get("system_name"),
        "call_timestamp": parse_datetime(payload.get("call_timestamp")),
        "inbound_phone_number": payload.get("inbound_phone_number"),
        "dialed_number": payload.get("dialed_number"),
        "raw_payload": dict(payload),
    }


class WebhookGateway:
    def __init__(self, store: CallRecordStore, queue: WorkQueue, reprocess_terminal: bool = False) -> None:
        self.store = store
        self.queue = queue
        self.reprocess_terminal = reprocess_terminal

    def accept(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        """Normalize and validate synchronously; raises ``WebhookValidationError``."""
        payload = normalize_payload(raw)
        validate_payload(payload)
        return payload

    def ingest(self, payload: Mapping[str, Any]) -> IngestOutcome:
        fields = map_payload_to_fields(payload)
        external_call_id = fields["external_call_id"]

        existing = self.store.find_by_external_id(external_call_id)
        if existing is not None:
            return self._handle_existing(existing, fields)

        try:
            record = self.store.create(**fields)
        except DuplicateCallError:
            logger.info("Call %s created concurrently; treating webhook as duplicate", external_call_id)
            return IngestOutcome.DUPLICATE
        self._enqueue(record.id, external_call_id)
        logger.info("Call %s stored as record %s and queued", external_call_id, record.id)
        return IngestOutcome.CREATED

    def _handle_existing(self, existing, fields: Dict[str, Any]) -> IngestOutcome:
        external_call_id = fields["external_call_id"]
        if not is_terminal(existing.call_status):
            logger.info(
                "Duplicate webhook for call %s (record %s is %s)",
                external_call_id,
                existing.id,
                existing.call_status,
            )
            return IngestOutcome.DUPLICATE
        if not self.reprocess_terminal:
            logger.info(
                "Ignoring webhook for finished call %s (record %s is %s)",
                external_call_id,
                existing.id,
                existing.call_status,
            )
            return IngestOutcome.IGNORED
        if self.queue.is_in_flight(str(existing.id)):
            return IngestOutcome.DUPLICATE
        fields.pop("external_call_id")
        self.store.update_status(existing.id, CallStatus.QUEUED, error=None, attempts=0, **fields)
        self._enqueue(existing.id, external_call_id)
        logger.info("Call %s re-queued for processing as record %s", external_call_id, existing.id)
        return IngestOutcome.REQUEUED

    def _enqueue(self, record_id: int, external_call_id: str) -> None:
        try:
            self.queue.enqueue(str(record_id))
        except EnqueueError:
            raise
        except Exception as exc:
            raise EnqueueError(f"Could not enqueue call {external_call_id}: {exc}") from exc

    def hand_off(self, payload: Mapping[str, Any]) -> Optional[IngestOutcome]:
        """Background entry point: the caller has already been answered, so errors are only logged."""
        try:
            return self.ingest(payload)
        except Exception:
            logger.exception("Failed to queue webhook for call %s", payload.get("system_call_id"))
            return None
