import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from callqc.models import CallRecord
from callqc.services.errors import DuplicateCallError, InvalidTransitionError, RecordNotFoundError
from callqc.services.states import IN_PROGRESS_STATUSES, CallStatus, can_transition

logger = logging.getLogger(__name__)


class CallRecordStore:
    """Persistence for call records.

    Every method runs in its own short-lived session so the store can be shared
    by request handlers, background hand-offs and worker processes alike. Writes
    are last-write-wins; the only guard is the status transition table.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def get(self, record_id: int) -> Optional[CallRecord]:
        with self.session_factory() as db:
            return db.get(CallRecord, record_id)

    def find_by_external_id(self, external_call_id: str) -> Optional[CallRecord]:
        with self.session_factory() as db:
            return (
                db.query(CallRecord)
                .filter(CallRecord.external_call_id == external_call_id)
                .first()
            )

    def create(self, **fields) -> CallRecord:
        fields.setdefault("call_status", CallStatus.QUEUED.value)
        record = CallRecord(**fields)
        with self.session_factory() as db:
            db.add(record)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateCallError(fields.get("external_call_id")) from exc
            db.refresh(record)
        return record

    def update_status(self, record_id: int, call_status: CallStatus, **fields) -> CallRecord:
        target = CallStatus(call_status)
        with self.session_factory() as db:
            record = db.get(CallRecord, record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            if not can_transition(record.call_status, target):
                raise InvalidTransitionError(record_id, record.call_status, target.value)
            record.call_status = target.value
            for name, value in fields.items():
                setattr(record, name, value)
            db.commit()
            db.refresh(record)
        logger.info("Call record %s -> %s", record_id, target.value)
        return record

    def record_failure(self, record_id: int, error: str) -> CallRecord:
        with self.session_factory() as db:
            record = db.get(CallRecord, record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            record.error = error
            db.commit()
            db.refresh(record)
        return record

    def list_stale(self, older_than: datetime) -> List[CallRecord]:
        """Queued or in-progress records not written to since ``older_than``."""
        pending = [CallStatus.QUEUED.value] + [status.value for status in IN_PROGRESS_STATUSES]
        with self.session_factory() as db:
            return (
                db.query(CallRecord)
                .filter(CallRecord.call_status.in_(pending))
                .filter(CallRecord.updated_at <= older_than)
                .order_by(CallRecord.updated_at)
                .all()
            )
