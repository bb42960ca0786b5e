from callsync.models.agent import Agent, UserAgent
from callsync.models.call_record import CallRecord
from callsync.models.audit_log import AuditLog

__all__ = ["Agent", "UserAgent", "CallRecord", "AuditLog"]
