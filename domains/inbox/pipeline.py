"""
Pipeline Runner for the inbox.

Drives a FileRecord through the ordered stages until it is completed,
bypassed or errored, relocates stuck files out of the inbox, and
implements retry, re-enqueue, cancellation, manual bypass and undo.
"""

import threading
import time
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Set

import frontmatter
from loguru import logger

from app.utils.config import Settings
from app.utils.helpers import is_in_folder, join_path, record_id_for_path, unique_name
from domains.inbox.errors import (
    InvalidTransitionError,
    RecordNotFoundError,
    StaleReferenceError,
    UndoConflictError,
)
from domains.inbox.outcomes import Bypassed, Failed
from domains.inbox.records import FileRecord, FileStatus, RecordStore
from domains.inbox.stages import Collaborators, StageExecutor


class PipelineRunner:
    """Orchestrates the stage sequence for one file at a time."""

    def __init__(self, store: RecordStore, collaborators: Collaborators, settings: Settings):
        """
        Initialize pipeline runner.

        Args:
            store: Record store holding per-file state
            collaborators: External services used by the stages
            settings: Application settings
        """
        self.store = store
        self.collaborators = collaborators
        self.storage = collaborators.storage
        self.settings = settings
        self.executor = StageExecutor(settings, collaborators, claim_path=self.claim_path)

        self._claims: Dict[str, str] = {}
        self._cancelled: Set[str] = set()
        self._lock = threading.Lock()

    # Path claims -------------------------------------------------------------

    def claim_path(self, path: str, record_id: str) -> None:
        """Mark ``path`` as owned by ``record_id`` before the engine writes it."""
        with self._lock:
            self._claims[path] = record_id

    def _release_claims(self, record_id: str) -> None:
        with self._lock:
            for path in [p for p, rid in self._claims.items() if rid == record_id]:
                del self._claims[path]

    # Entry points ------------------------------------------------------------

    def ingest(self, path: str) -> Optional[FileRecord]:
        """
        Create a record for a file that arrived in the inbox.

        Args:
            path: Vault path of the new file

        Returns:
            The new record, or None when the path is already tracked
        """
        with self._lock:
            if path in self._claims:
                return None

            if not self.storage.exists(path):
                logger.debug(f"Ignoring vanished file: {path}")
                return None

            if self.store.find_by_path(path) is not None:
                logger.debug(f"Already tracked: {path}")
                return None

            salt = 0
            record_id = record_id_for_path(path)
            while record_id in self.store:
                salt += 1
                record_id = record_id_for_path(path, salt)

            record = FileRecord(
                id=record_id,
                original_name=PurePosixPath(path).name,
                original_path=path,
                file_path=path,
            )
            self.store.upsert(record)

        logger.info(f"New inbox file: {path} ({record_id})")
        return record

    def run(self, record_id: str) -> FileRecord:
        """
        Process a record from its cursor until it leaves the processing state.

        Args:
            record_id: Record to process

        Returns:
            The record in its final state for this run
        """
        record = self._get(record_id)
        if record.status != FileStatus.PROCESSING:
            logger.debug(f"Record {record_id} is {record.status.value}, nothing to run")
            return record

        started = time.monotonic()
        try:
            while record.status == FileStatus.PROCESSING:
                action = record.cursor()
                if action is None:
                    break

                if self._consume_cancel(record_id):
                    logger.info(f"Cancelled {record.current_name} before {action.value}")
                    record.record(action, Failed("processing cancelled").to_log())
                    self.store.upsert(record)
                    break

                outcome = self.executor.execute(record, action)
                self.store.upsert(record)
                if not outcome.proceed:
                    break

            self._finish(record, time.monotonic() - started)
        finally:
            # A cancel that arrived during the last stage dies with this run
            with self._lock:
                self._cancelled.discard(record_id)
            self._release_claims(record_id)

        return record

    def retry(self, record_id: str) -> FileRecord:
        """
        Prepare an errored or bypassed record to run again.

        The file is re-resolved, moved back into the inbox when it sits in
        the error or bypass folder, and the errored log is dropped so the
        run resumes at the first missing or errored action.

        Raises:
            InvalidTransitionError: record is not in error or bypassed state
            StaleReferenceError: the file cannot be found anymore
        """
        record = self._get(record_id)
        if record.status not in (FileStatus.ERROR, FileStatus.BYPASSED):
            raise InvalidTransitionError(record_id, record.status.value, "retry")

        self._restore_to_inbox(record)
        record.clear_errors()
        self.store.upsert(record)

        logger.info(f"Retrying {record.current_name} from {record.cursor().value}")
        return record

    def reenqueue(self, record_id: str) -> FileRecord:
        """Reset a finished record so the whole pipeline runs again."""
        record = self._get(record_id)
        if record.status == FileStatus.PROCESSING:
            raise InvalidTransitionError(record_id, record.status.value, "re-enqueue")

        self._restore_to_inbox(record)
        record.logs.clear()
        record.classification = None
        record.tags = []
        record.status = record.derive_status()
        self.store.upsert(record)

        logger.info(f"Re-enqueued {record.current_name}")
        return record

    def cancel(self, record_id: str) -> bool:
        """Stop a processing record before its next stage starts."""
        record = self._get(record_id)
        if record.status != FileStatus.PROCESSING:
            return False
        with self._lock:
            self._cancelled.add(record_id)
        logger.info(f"Cancellation requested for {record.current_name}")
        return True

    def bypass(self, record_id: str, reason: str) -> FileRecord:
        """Manually route an errored record to the bypassed state."""
        record = self._get(record_id)
        if record.status != FileStatus.ERROR:
            raise InvalidTransitionError(record_id, record.status.value, "bypass")

        record.clear_errors()
        record.record(record.cursor(), Bypassed(reason).to_log())
        self._relocate(record, self.settings.bypassed_folder,
                       [self.settings.inbox_folder, self.settings.error_folder])
        self.store.upsert(record)

        logger.info(f"Manually bypassed {record.current_name}: {reason}")
        return record

    def undo(self, record_id: str) -> FileRecord:
        """
        Move a completed file back into the inbox under its original name.

        Tags added by the pipeline are stripped from the note's frontmatter.
        The record stays completed and no longer carries a ``new_path``.

        Raises:
            InvalidTransitionError: record is not completed or was never moved
            UndoConflictError: a file already exists at the inbox target
            StaleReferenceError: the file cannot be found anymore
        """
        record = self._get(record_id)
        if record.status != FileStatus.COMPLETED or not record.new_path:
            raise InvalidTransitionError(record_id, record.status.value, "undo")

        current = self.resolve_file(record)
        name = PurePosixPath(record.original_name).stem + PurePosixPath(current).suffix
        target = join_path(self.settings.inbox_folder, name)
        if current != target and self.storage.exists(target):
            raise UndoConflictError(record_id, target)

        if record.tags:
            self._strip_tags(current, record.tags)

        self.claim_path(target, record_id)
        try:
            if current != target:
                self.storage.move(current, target)
            record.file_path = target
            record.new_path = None
            record.new_name = None
            record.tags = []
            self.store.upsert(record)
        finally:
            self._release_claims(record_id)

        logger.info(f"Undid {record.original_name}: {current} -> {target}")
        return record

    def remove(self, record_id: str) -> bool:
        """Forget a record. The file itself is left where it is."""
        with self._lock:
            self._cancelled.discard(record_id)
        return self.store.remove(record_id)

    # File resolution ---------------------------------------------------------

    def candidate_names(self, record: FileRecord) -> List[str]:
        names = []
        for name in (
            PurePosixPath(record.file_path).name if record.file_path else None,
            record.new_name,
            record.original_name,
        ):
            if name and name not in names:
                names.append(name)
        return names

    def resolve_file(self, record: FileRecord) -> str:
        """
        Find the current location of a record's file.

        Uses the recorded path when it still exists, otherwise searches by
        name in the error folder, the bypass folder, the inbox and finally
        the whole vault. The first match wins.

        Raises:
            StaleReferenceError: no candidate found
        """
        if record.file_path and self.storage.exists(record.file_path):
            return record.file_path

        names = self.candidate_names(record)

        def available(path: str) -> bool:
            owner = self.store.find_by_path(path)
            return owner is None or owner.id == record.id

        for folder in (
            self.settings.error_folder,
            self.settings.bypassed_folder,
            self.settings.inbox_folder,
        ):
            for name in names:
                candidate = join_path(folder, name)
                if self.storage.exists(candidate) and available(candidate):
                    logger.info(f"Re-resolved {record.id} in {folder}: {candidate}")
                    return candidate

        paths = list(self.storage.walk())
        for name in names:
            for path in paths:
                if PurePosixPath(path).name == name and available(path):
                    logger.info(f"Re-resolved {record.id} by vault scan: {path}")
                    return path

        raise StaleReferenceError(record.id, names)

    # Internals ---------------------------------------------------------------

    def _get(self, record_id: str) -> FileRecord:
        record = self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def _consume_cancel(self, record_id: str) -> bool:
        with self._lock:
            if record_id in self._cancelled:
                self._cancelled.discard(record_id)
                return True
        return False

    def _restore_to_inbox(self, record: FileRecord) -> None:
        record.file_path = self.resolve_file(record)
        parked = (self.settings.error_folder, self.settings.bypassed_folder)
        inbox = self.settings.inbox_folder

        for attr in ("file_path", "attachment_path"):
            path = getattr(record, attr)
            if not path or not any(is_in_folder(path, f) for f in parked):
                continue
            if not self.storage.exists(path):
                continue
            destination = self._free_path(inbox, PurePosixPath(path).name)
            self.claim_path(destination, record.id)
            self.storage.move(path, destination)
            setattr(record, attr, destination)
            logger.info(f"Moved {path} back to {destination}")

    def _strip_tags(self, path: str, tags: List[str]) -> None:
        post = frontmatter.loads(self.storage.read(path).decode("utf-8", errors="replace"))
        existing = post.get("tags") or []
        if isinstance(existing, str):
            existing = [existing]
        kept = [t for t in existing if t not in tags]
        if len(kept) == len(existing):
            return

        if kept:
            post["tags"] = kept
        else:
            del post["tags"]
        text = frontmatter.dumps(post) + "\n" if post.metadata else post.content + "\n"
        self.storage.write(path, text.encode("utf-8"))

    def _free_path(self, folder: str, name: str) -> str:
        free = unique_name(name, lambda n: self.storage.exists(join_path(folder, n)))
        return join_path(folder, free)

    def _relocate(self, record: FileRecord, folder: str, from_folders: List[str]) -> None:
        """Move the record's note and attachment to ``folder`` if they sit in ``from_folders``."""
        for attr in ("file_path", "attachment_path"):
            path = getattr(record, attr)
            if not path or not any(is_in_folder(path, f) for f in from_folders):
                continue
            try:
                if not self.storage.exists(path):
                    continue
                destination = self._free_path(folder, PurePosixPath(path).name)
                self.storage.move(path, destination)
            except OSError as e:
                logger.error(f"Failed to relocate {path} to {folder}: {e}")
                continue
            setattr(record, attr, destination)
            logger.info(f"Relocated {path} -> {destination}")

    def _finish(self, record: FileRecord, elapsed: float) -> None:
        name = record.current_name

        if record.status == FileStatus.COMPLETED:
            logger.success(f"Processed {name} in {elapsed:.1f}s -> {record.file_path}")
            self._notify(f"Processed {record.original_name} -> {record.file_path}", 3.0)
            return

        error = record.last_error()
        if record.status == FileStatus.BYPASSED:
            self._relocate(record, self.settings.bypassed_folder, [self.settings.inbox_folder])
            self.store.upsert(record)
            self._notify(f"Bypassed {name}: {error.error.message}", 5.0)
        elif record.status == FileStatus.ERROR:
            self._relocate(record, self.settings.error_folder, [self.settings.inbox_folder])
            self.store.upsert(record)
            logger.warning(f"Error processing {name}: {error.error.message}")
            self._notify(f"Error processing {name}: {error.error.message}", 8.0)

    def _notify(self, message: str, duration: float) -> None:
        try:
            self.collaborators.notifier.notify(message, duration)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")
