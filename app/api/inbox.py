"""
Inbox endpoints.

Includes:
- Record listing and timelines
- Recent issues (errored and bypassed files)
- Retry, re-enqueue, cancel, bypass, undo and delete
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger

from app.models.schemas import (
    BypassRequest,
    IssueOut,
    OperationStatus,
    QueueStats,
    RecordSummary,
    TimelineEntryOut,
    TimelineOut,
)
from domains.inbox import queries
from domains.inbox.errors import (
    InboxError,
    InvalidTransitionError,
    RecordNotFoundError,
    StaleReferenceError,
    UndoConflictError,
)
from domains.inbox.records import FileRecord
from domains.inbox.service import InboxService

router = APIRouter()


def get_inbox(request: Request) -> InboxService:
    """Engine instance owned by the application."""
    return request.app.state.inbox


def _to_http(exc: InboxError) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, StaleReferenceError, UndoConflictError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _get_record(inbox: InboxService, record_id: str) -> FileRecord:
    record = inbox.store.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record not found: {record_id}")
    return record


@router.get("/records", response_model=List[RecordSummary])
async def list_records(status: Optional[str] = None, inbox: InboxService = Depends(get_inbox)):
    """
    List records in insertion order.

    Args:
        status: Optional status filter (processing, completed, error, bypassed)
    """
    records = inbox.store.get_all()
    if status:
        records = [r for r in records if r.status.value == status]
    return [RecordSummary.from_record(r) for r in records]


@router.get("/records/{record_id}", response_model=RecordSummary)
async def get_record(record_id: str, inbox: InboxService = Depends(get_inbox)):
    return RecordSummary.from_record(_get_record(inbox, record_id))


@router.get("/records/{record_id}/timeline", response_model=TimelineOut)
async def get_timeline(record_id: str, inbox: InboxService = Depends(get_inbox)):
    """Stage history of a record with per-stage durations."""
    record = _get_record(inbox, record_id)
    total = queries.total_duration(record)
    return TimelineOut(
        record=RecordSummary.from_record(record),
        entries=[TimelineEntryOut.from_entry(e) for e in queries.timeline(record)],
        total_seconds=total.total_seconds() if total is not None else None,
    )


@router.get("/issues", response_model=List[IssueOut])
async def recent_issues(limit: int = 10, inbox: InboxService = Depends(get_inbox)):
    """Most recent errored or bypassed files, newest first."""
    return [IssueOut.from_record(r) for r in queries.recent_issues(inbox.store, limit)]


@router.get("/stats", response_model=QueueStats)
async def stats(inbox: InboxService = Depends(get_inbox)):
    queue_stats = inbox.queue.stats()
    return QueueStats(**queue_stats, records=queries.status_counts(inbox.store))


@router.post("/records/{record_id}/retry", response_model=OperationStatus, status_code=202)
async def retry_record(record_id: str, inbox: InboxService = Depends(get_inbox)):
    """Retry an errored or bypassed file from the stage where it stopped."""
    try:
        inbox.queue.retry(record_id)
    except InboxError as e:
        logger.warning(f"Retry rejected for {record_id}: {e}")
        raise _to_http(e)
    return OperationStatus(status="queued", message="Retry queued", record_id=record_id)


@router.post("/records/{record_id}/reenqueue", response_model=OperationStatus, status_code=202)
async def reenqueue_record(record_id: str, inbox: InboxService = Depends(get_inbox)):
    """Run the whole pipeline again for a finished file."""
    try:
        inbox.queue.reenqueue(record_id)
    except InboxError as e:
        raise _to_http(e)
    return OperationStatus(status="queued", message="Re-enqueued", record_id=record_id)


@router.post("/records/{record_id}/cancel", response_model=OperationStatus)
async def cancel_record(record_id: str, inbox: InboxService = Depends(get_inbox)):
    try:
        cancelled = inbox.queue.cancel(record_id)
    except InboxError as e:
        raise _to_http(e)
    if not cancelled:
        raise HTTPException(status_code=409, detail="Record is not processing")
    return OperationStatus(status="cancelling", message="Stops before the next stage", record_id=record_id)


@router.post("/records/{record_id}/bypass", response_model=OperationStatus)
async def bypass_record(
    record_id: str,
    body: BypassRequest,
    inbox: InboxService = Depends(get_inbox),
):
    try:
        inbox.queue.bypass(record_id, body.reason)
    except InboxError as e:
        raise _to_http(e)
    return OperationStatus(status="bypassed", message=body.reason, record_id=record_id)


@router.delete("/records/{record_id}", response_model=OperationStatus)
async def delete_record(record_id: str, inbox: InboxService = Depends(get_inbox)):
    """Forget a record. The file stays where it is."""
    if not inbox.queue.remove(record_id):
        raise HTTPException(status_code=404, detail=f"Record not found: {record_id}")
    return OperationStatus(status="deleted", message="Record removed", record_id=record_id)


@router.post("/records/{record_id}/undo", response_model=OperationStatus)
async def undo_record(record_id: str, inbox: InboxService = Depends(get_inbox)):
    """Move a completed file back to the inbox and strip the tags it received."""
    try:
        record = inbox.queue.undo(record_id)
    except InboxError as e:
        logger.warning(f"Undo rejected for {record_id}: {e}")
        raise _to_http(e)
    return OperationStatus(status="undone", message=f"Moved back to {record.file_path}", record_id=record_id)
