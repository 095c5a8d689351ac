import logging
from datetime import datetime, timedelta, timezone
from typing import List

from callqc.services.errors import CallQCError
from callqc.services.queue import WorkQueue
from callqc.services.records import CallRecordStore
from callqc.services.states import CallStatus, is_terminal

logger = logging.getLogger(__name__)


def requeue_stale(store: CallRecordStore, queue: WorkQueue, older_than_minutes: int) -> List[int]:
    """Re-enqueue queued or half-processed records that no job is working on.

    A record qualifies when it has not been written to for ``older_than_minutes``,
    holds no in-flight lock and has no message waiting in the broker. The worker
    restarts such a record at ``processing`` from whatever stage it stopped in.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    stale = store.list_stale(cutoff)
    if not stale:
        return []
    waiting = queue.waiting_job_ids()
    requeued = []
    for record in stale:
        job_id = str(record.id)
        if job_id in waiting or queue.is_in_flight(job_id):
            continue
        if queue.enqueue(job_id):
            requeued.append(record.id)
    if requeued:
        logger.warning("Reconciliation re-enqueued %s stale record(s): %s", len(requeued), requeued)
    return requeued


def replay(store: CallRecordStore, queue: WorkQueue, external_call_id: str) -> int:
    record = store.find_by_external_id(external_call_id)
    if record is None:
        raise CallQCError(f"No call record for {external_call_id}")
    if not is_terminal(record.call_status):
        raise CallQCError(f"Call {external_call_id} is still {record.call_status}")
    if queue.is_in_flight(str(record.id)):
        raise CallQCError(f"Call {external_call_id} still has a job in flight")
    store.update_status(record.id, CallStatus.QUEUED, error=None, attempts=0)
    if not queue.enqueue(str(record.id)):
        # lost a race with another publisher; that job will process the record
        logger.warning("Replay of call %s found a job already in flight for record %s", external_call_id, record.id)
        return record.id
    logger.info("Replaying call %s as record %s", external_call_id, record.id)
    return record.id
