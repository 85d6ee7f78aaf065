"""
Record Store for the inbox processing engine.

Holds one FileRecord per file under management and persists the registry
to a single JSON document. Writes are debounced: rapid successive upserts
are coalesced into one disk write by a single writer.
"""

import json
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from app.utils.helpers import utc_now
from domains.inbox.errors import PersistenceError

LEGACY_BYPASS_PREFIX = "Bypassed due to "


class Action(str, Enum):
    """Pipeline stages in their canonical execution order."""

    VALIDATE = "validate"
    CONTAINER = "container"
    MOVING_ATTACHMENT = "moving_attachment"
    EXTRACT = "extract"
    CLEANUP = "cleanup"
    FETCH_YOUTUBE = "fetch_youtube"
    CLASSIFY = "classify"
    MOVING = "moving"
    RENAME = "rename"
    FORMATTING = "formatting"
    APPEND = "append"
    TAGGING = "tagging"
    COMPLETED = "completed"

    @classmethod
    def ordered(cls) -> List["Action"]:
        return list(cls)

    @property
    def position(self) -> int:
        return Action.ordered().index(self)

    def next(self) -> Optional["Action"]:
        ordered = Action.ordered()
        pos = self.position
        return ordered[pos + 1] if pos + 1 < len(ordered) else None

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Action.VALIDATE: "Validating",
    Action.CONTAINER: "Creating container",
    Action.MOVING_ATTACHMENT: "Moving attachment",
    Action.EXTRACT: "Extracting content",
    Action.CLEANUP: "Cleaning up",
    Action.FETCH_YOUTUBE: "Fetching YouTube transcript",
    Action.CLASSIFY: "Classifying",
    Action.MOVING: "Moving",
    Action.RENAME: "Renaming",
    Action.FORMATTING: "Formatting",
    Action.APPEND: "Appending",
    Action.TAGGING: "Tagging",
    Action.COMPLETED: "Completed",
}


class FileStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    BYPASSED = "bypassed"


class StageError(BaseModel):
    """Failure attached to a stage log. ``bypassed`` marks a deliberate bypass."""

    message: str
    bypassed: bool = False

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_bypass(cls, data):
        # Older documents encoded bypasses as a message prefix
        if isinstance(data, dict) and "bypassed" not in data:
            message = data.get("message") or ""
            if message.startswith(LEGACY_BYPASS_PREFIX):
                data = dict(data)
                data["message"] = message[len(LEGACY_BYPASS_PREFIX):].strip()
                data["bypassed"] = True
        return data


class StageLog(BaseModel):
    """Outcome of one attempt of one action."""

    timestamp: datetime = Field(default_factory=utc_now)
    completed: bool = False
    skipped: bool = False
    error: Optional[StageError] = None
    message: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Classification(BaseModel):
    """Answer of the classification collaborator."""

    destination_folder: str
    tags: List[str] = Field(default_factory=list)
    suggested_name: Optional[str] = None
    template: Optional[str] = None
    append_to: Optional[str] = None


class FileRecord(BaseModel):
    """Durable processing state of one file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    original_name: str = Field(validation_alias=AliasChoices("original_name", "originalName"))
    original_path: Optional[str] = None
    new_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("new_name", "newName"))
    new_path: Optional[str] = Field(default=None, validation_alias=AliasChoices("new_path", "newPath"))
    file_path: Optional[str] = None
    attachment_path: Optional[str] = None
    status: FileStatus = FileStatus.PROCESSING
    tags: List[str] = Field(default_factory=list)
    classification: Optional[Classification] = None
    logs: Dict[Action, StageLog] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="before")
    @classmethod
    def _drop_unknown_actions(cls, data):
        if isinstance(data, dict) and isinstance(data.get("logs"), dict):
            known = {a.value for a in Action}
            logs = {
                k: v for k, v in data["logs"].items()
                if (k.value if isinstance(k, Action) else k) in known
            }
            if len(logs) != len(data["logs"]):
                logger.debug(f"Dropping unknown actions from record {data.get('id')}")
            data = dict(data, logs=logs)
        return data

    @model_validator(mode="after")
    def _sync_status(self):
        self.status = self.derive_status()
        return self

    @property
    def current_name(self) -> str:
        return self.new_name or self.original_name

    def derive_status(self) -> FileStatus:
        """Aggregate status implied by the logs."""
        last_error = self.last_error()
        if last_error is not None:
            return FileStatus.BYPASSED if last_error.error.bypassed else FileStatus.ERROR

        done = self.logs.get(Action.COMPLETED)
        if done is not None and done.completed:
            return FileStatus.COMPLETED
        return FileStatus.PROCESSING

    def record(self, action: Action, log: StageLog) -> None:
        """Store ``log`` for ``action``, replacing any previous attempt."""
        self.logs[action] = log
        self.status = self.derive_status()

    def clear_log(self, action: Action) -> None:
        self.logs.pop(action, None)
        self.status = self.derive_status()

    def clear_errors(self) -> None:
        for action in [a for a, log in self.logs.items() if log.failed]:
            self.logs.pop(action)
        self.status = self.derive_status()

    def cursor(self) -> Optional[Action]:
        """First action whose log is missing or errored."""
        for action in Action.ordered():
            log = self.logs.get(action)
            if log is None or log.failed:
                return action
        return None

    def last_error(self) -> Optional[StageLog]:
        for action in reversed(Action.ordered()):
            log = self.logs.get(action)
            if log is not None and log.failed:
                return log
        return None

    def last_step(self) -> Optional[Action]:
        for action in reversed(Action.ordered()):
            if action in self.logs:
                return action
        return None

    def latest_timestamp(self) -> Optional[datetime]:
        if not self.logs:
            return None
        return max(log.timestamp for log in self.logs.values())

    def add_tags(self, tags: List[str]) -> List[str]:
        """Merge ``tags`` into the record, returning the ones that were new."""
        added = []
        for tag in tags:
            if tag and tag not in self.tags:
                self.tags.append(tag)
                added.append(tag)
        return added


class RecordStore:
    """Durable, queryable registry of FileRecords keyed by id."""

    def __init__(self, path: Path, debounce_seconds: float = 1.0):
        """
        Initialize record store.

        Args:
            path: Location of the JSON document
            debounce_seconds: Window used to coalesce writes
        """
        self.path = path
        self.debounce_seconds = debounce_seconds
        self.degraded = False
        self.write_count = 0

        self._records: Dict[str, FileRecord] = {}
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._dirty = False

    # Queries -----------------------------------------------------------------

    def get(self, record_id: str) -> Optional[FileRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def get_all(
        self,
        sort_by: Optional[Callable[[FileRecord], object]] = None,
        reverse: bool = False,
    ) -> List[FileRecord]:
        with self._lock:
            records = [r.model_copy(deep=True) for r in self._records.values()]
        if sort_by is not None:
            records.sort(key=sort_by, reverse=reverse)
        return records

    def find_by_path(self, path: str) -> Optional[FileRecord]:
        """Record currently referencing ``path`` as its file or attachment."""
        with self._lock:
            for record in self._records.values():
                if path in (record.file_path, record.attachment_path):
                    return record.model_copy(deep=True)
        return None

    def get_last_error(self, record_id: str) -> Optional[StageLog]:
        """Errored log closest to the failure point (latest in Action order)."""
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return None
            log = record.last_error()
            return log.model_copy(deep=True) if log else None

    def get_last_step(self, record_id: str) -> Optional[Action]:
        with self._lock:
            record = self._records.get(record_id)
            return record.last_step() if record else None

    def __contains__(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # Mutations ---------------------------------------------------------------

    def upsert(self, record: FileRecord) -> None:
        """Insert or replace ``record`` and schedule a debounced persist."""
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
            self._dirty = True
        self._schedule_persist()

    def remove(self, record_id: str) -> bool:
        """Delete a record. The underlying file is left untouched."""
        with self._lock:
            removed = self._records.pop(record_id, None)
            if removed is None:
                return False
            self._dirty = True
        self._schedule_persist()
        logger.info(f"Record removed: {record_id}")
        return True

    # Persistence -------------------------------------------------------------

    def load(self) -> int:
        """
        Load the registry from disk.

        Accepts the array-of-pairs layout and the legacy object layout keyed
        by id. A corrupt document is preserved next to the original and the
        store starts empty.

        Returns:
            Number of records loaded
        """
        if not self.path.exists():
            logger.info(f"No record store at {self.path}, starting empty")
            return 0

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read record store {self.path}: {e}")
            self.degraded = True
            return 0

        try:
            records, legacy = self._parse_document(raw)
        except ValueError as e:
            logger.warning(f"Record store {self.path} is corrupt: {e}")
            self._quarantine()
            self.degraded = True
            return 0

        with self._lock:
            self._records = {r.id: r for r in records}

        if legacy:
            logger.info("Legacy record store layout detected, converting on next save")
            with self._lock:
                self._dirty = True
            self._schedule_persist()

        logger.success(f"Loaded {len(records)} records from {self.path}")
        return len(records)

    def flush(self) -> bool:
        """
        Write pending changes now.

        Returns:
            True if a write happened, False if there was nothing to write
            or the write failed
        """
        self._cancel_timer()

        with self._write_lock:
            with self._lock:
                if not self._dirty:
                    return False
                payload = [
                    [record_id, record.model_dump(mode="json")]
                    for record_id, record in self._records.items()
                ]
                self._dirty = False

            try:
                self._write_document(payload)
            except PersistenceError as e:
                logger.error(f"Failed to persist record store: {e}")
                with self._lock:
                    self._dirty = True
                self.degraded = True
                return False

        self.degraded = False
        return True

    def close(self) -> None:
        """Flush pending writes and stop the debounce timer."""
        self.flush()

    def _parse_document(self, raw: str) -> tuple[List[FileRecord], bool]:
        data = json.loads(raw)

        if isinstance(data, dict):
            pairs = list(data.items())
            legacy = True
        elif isinstance(data, list):
            pairs = data
            legacy = False
        else:
            raise ValueError(f"unexpected document type {type(data).__name__}")

        records = []
        for pair in pairs:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise ValueError(f"malformed entry: {pair!r:.80}")
            record_id, payload = pair
            if not isinstance(payload, dict):
                raise ValueError(f"malformed record for {record_id}")
            records.append(FileRecord.model_validate({**payload, "id": record_id}))

        return records, legacy

    def _quarantine(self) -> None:
        stamp = utc_now().strftime("%Y%m%dT%H%M%S")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            self.path.replace(backup)
            logger.warning(f"Corrupt record store preserved at {backup}")
        except OSError as e:
            logger.error(f"Could not preserve corrupt record store: {e}")

    def _write_document(self, payload: list) -> None:
        """Persist ``payload`` atomically."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e
        self.write_count += 1
        logger.debug(f"Record store persisted ({len(payload)} records)")

    def _schedule_persist(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
