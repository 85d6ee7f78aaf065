"""
Read-only projections over the record store.

Used by the API to list recent issues and render per-stage timelines.
Nothing in here mutates records.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from domains.inbox.records import Action, FileRecord, FileStatus, RecordStore, StageLog

ISSUE_STATUSES = (FileStatus.ERROR, FileStatus.BYPASSED)


@dataclass(frozen=True)
class TimelineEntry:
    """One stage log with the time elapsed since the previous logged stage."""
    action: Action
    log: StageLog
    duration: Optional[timedelta]


def recent_issues(store: RecordStore, limit: int = 10) -> List[FileRecord]:
    """
    Most recent errored or bypassed records.

    Args:
        store: Record store to query
        limit: Maximum number of records to return

    Returns:
        Records sorted by their latest stage timestamp, newest first
    """
    issues = [r for r in store.get_all() if r.status in ISSUE_STATUSES]
    issues.sort(key=lambda r: r.latest_timestamp() or r.created_at, reverse=True)
    return issues[:max(limit, 0)]


def timeline(record: FileRecord) -> List[TimelineEntry]:
    """Stage logs of ``record`` in canonical order with inter-stage durations."""
    entries = []
    previous = None
    for action in Action.ordered():
        log = record.logs.get(action)
        if log is None:
            continue
        duration = log.timestamp - previous if previous is not None else None
        entries.append(TimelineEntry(action=action, log=log, duration=duration))
        previous = log.timestamp
    return entries


def total_duration(record: FileRecord) -> Optional[timedelta]:
    """Time from the first to the last stage, once the record is completed."""
    if record.status != FileStatus.COMPLETED or not record.logs:
        return None
    stamps = [log.timestamp for log in record.logs.values()]
    return max(stamps) - min(stamps)


def issue_message(record: FileRecord) -> str:
    """Error message or bypass reason to show for a record."""
    log = record.last_error()
    if log is not None and log.error.message:
        return log.error.message
    if record.status == FileStatus.BYPASSED:
        return "File bypassed"
    return "Unknown issue"


def status_counts(store: RecordStore) -> Dict[str, int]:
    """Number of records per status."""
    counts = {status.value: 0 for status in FileStatus}
    for record in store.get_all():
        counts[record.status.value] += 1
    return counts
