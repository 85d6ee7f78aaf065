"""
Pydantic models for the Inbox Organizer API.

Response shapes derived from the engine's records and query projections.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from domains.inbox.queries import TimelineEntry, issue_message
from domains.inbox.records import FileRecord


# =====================================================
# Record Models
# =====================================================

class StageLogOut(BaseModel):
    """Stage log as exposed by the API."""
    action: str
    display_name: str
    timestamp: datetime
    completed: bool
    skipped: bool
    bypassed: bool = False
    error: Optional[str] = None
    message: Optional[str] = None


class RecordSummary(BaseModel):
    """Compact view of a record."""
    id: str
    original_name: str
    new_name: Optional[str] = None
    status: str
    file_path: Optional[str] = None
    new_path: Optional[str] = None
    tags: List[str] = []
    last_step: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: FileRecord) -> "RecordSummary":
        last_step = record.last_step()
        return cls(
            id=record.id,
            original_name=record.original_name,
            new_name=record.new_name,
            status=record.status.value,
            file_path=record.file_path,
            new_path=record.new_path,
            tags=list(record.tags),
            last_step=last_step.value if last_step else None,
            updated_at=record.latest_timestamp(),
        )


class IssueOut(RecordSummary):
    """Errored or bypassed record with the message to show."""
    message: str

    @classmethod
    def from_record(cls, record: FileRecord) -> "IssueOut":
        summary = RecordSummary.from_record(record)
        return cls(**summary.model_dump(), message=issue_message(record))


# =====================================================
# Timeline Models
# =====================================================

class TimelineEntryOut(StageLogOut):
    """Stage log with the time since the previous logged stage."""
    duration_seconds: Optional[float] = None

    @classmethod
    def from_entry(cls, entry: TimelineEntry) -> "TimelineEntryOut":
        log = entry.log
        return cls(
            action=entry.action.value,
            display_name=entry.action.display_name,
            timestamp=log.timestamp,
            completed=log.completed,
            skipped=log.skipped,
            bypassed=bool(log.error and log.error.bypassed),
            error=log.error.message if log.error else None,
            message=log.message,
            duration_seconds=entry.duration.total_seconds() if entry.duration is not None else None,
        )


class TimelineOut(BaseModel):
    """Ordered stage history of one record."""
    record: RecordSummary
    entries: List[TimelineEntryOut]
    total_seconds: Optional[float] = None


# =====================================================
# Request / Response Models
# =====================================================

class BypassRequest(BaseModel):
    reason: str = "bypassed by user"


class QueueStats(BaseModel):
    """Queue and record statistics."""
    queued: int
    processing: int
    workers: int
    records: Dict[str, int]


class OperationStatus(BaseModel):
    """Generic operation status."""
    status: str
    message: str
    record_id: Optional[str] = None
