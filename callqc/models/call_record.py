from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.sql import func

from callqc.core.database import Base
from callqc.services.states import CallStatus


class CallRecord(Base):
    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True)
    external_call_id = Column(String(128), unique=True, nullable=False)
    raw_payload = Column(JSON, nullable=False)
    recording_url = Column(String(1024), nullable=False)
    campaign_name = Column(String(255), index=True)
    caller_id = Column(String(64), index=True)
    publisher_id = Column(String(128), index=True)
    buyer_id = Column(String(128), index=True)
    system_name = Column(String(128))
    call_timestamp = Column(DateTime(timezone=True), index=True)
    inbound_phone_number = Column(String(64))
    dialed_number = Column(String(64))

    call_status = Column(String(40), nullable=False, default=CallStatus.QUEUED.value, index=True)
    status = Column(String(128), index=True)
    transcript = Column(Text)
    labeled_transcript = Column(Text)
    qc = Column(JSON)
    duration_seconds = Column(Float)
    estimated_cost = Column(Float)

    error = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)
    processing_started_at = Column(DateTime(timezone=True))
    processing_ended_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
