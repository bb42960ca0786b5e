from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, Numeric, String, Text
from sqlalchemy.sql import func

from callsync.core.database import Base


class CallRecord(Base):
    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True)
    call_id = Column(String(128), unique=True, nullable=False)
    user_id = Column(String(64), nullable=True, index=True)
    company_id = Column(String(64), nullable=True, index=True)
    agent_id = Column(Integer, nullable=True, index=True)
    retell_agent_id = Column(String(128), nullable=True, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_sec = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Numeric(12, 4), nullable=False, default=0)
    revenue_amount = Column(Numeric(12, 4), nullable=False, default=0)
    call_status = Column(String(64), nullable=False, default="unknown")
    call_type = Column(String(32), nullable=False, default="phone_call")
    from_number = Column(String(64), nullable=True)
    to_number = Column(String(64), nullable=True)
    disconnection_reason = Column(String(128), nullable=True)
    disposition = Column(String(128), nullable=True)
    recording_url = Column(String(1024), nullable=True)
    transcript = Column(Text, nullable=True)
    transcript_url = Column(String(1024), nullable=True)
    sentiment = Column(String(32), nullable=True)
    sentiment_score = Column(Float, nullable=True)
    call_summary = Column(Text, nullable=True)
    latency_ms = Column(Integer, nullable=True)
    is_degraded = Column(Boolean, default=False, nullable=False)
    raw_payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
