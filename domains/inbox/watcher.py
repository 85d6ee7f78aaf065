"""
Inbox folder watcher.

Monitors the inbox folder and hands every new file to the pipeline.
Uses watchdog library for cross-platform file system event monitoring.
"""

import threading
from typing import Callable, Dict, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.utils.helpers import is_hidden, is_in_folder, should_exclude_path
from app.utils.storage import LocalStorage

# Files that are still being written or belong to other tools
IN_PROGRESS_PATTERNS = ["*.tmp", "*.part", "*.crdownload", "*.swp", "*.download"]


class InboxEventHandler(FileSystemEventHandler):
    """Turns file system events inside the inbox into file-arrived callbacks."""

    def __init__(
        self,
        storage: LocalStorage,
        inbox_folder: str,
        on_file: Callable[[str], object],
        settle_seconds: float = 1.0,
    ):
        """
        Initialize event handler.

        Args:
            storage: Vault storage used to map absolute paths to vault paths
            inbox_folder: Vault path of the watched folder
            on_file: Called with the vault path of each arrived file
            settle_seconds: Quiet period before a file is handed over
        """
        super().__init__()
        self.storage = storage
        self.inbox_folder = inbox_folder.strip("/")
        self.on_file = on_file
        self.settle_seconds = settle_seconds
        self._pending: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def should_process(self, raw_path: str) -> Optional[str]:
        """
        Map an event path to a vault path if it should be processed.

        Args:
            raw_path: Absolute path reported by watchdog

        Returns:
            Vault path, or None when the event is irrelevant
        """
        path = self.storage.relative(raw_path)
        if path is None or not is_in_folder(path, self.inbox_folder):
            return None

        if is_hidden(path) or should_exclude_path(path, IN_PROGRESS_PATTERNS):
            return None

        return path

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        self._schedule(event.src_path)

    def on_modified(self, event: FileSystemEvent):
        """Restart the settle period of a file that is still being written."""
        if event.is_directory:
            return
        with self._lock:
            pending = self.storage.relative(event.src_path) in self._pending
        if pending:
            self._schedule(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        """Handle files renamed or moved into the inbox."""
        if event.is_directory:
            return
        dest = getattr(event, "dest_path", None)
        if dest:
            self._schedule(dest)

    def _schedule(self, raw_path: str):
        path = self.should_process(raw_path)
        if path is None:
            return

        if self.settle_seconds <= 0:
            self._emit(path)
            return

        with self._lock:
            timer = self._pending.pop(path, None)
            if timer is not None:
                timer.cancel()
            timer = threading.Timer(self.settle_seconds, self._emit, args=[path])
            timer.daemon = True
            self._pending[path] = timer
            timer.start()

    def _emit(self, path: str):
        with self._lock:
            self._pending.pop(path, None)

        logger.info(f"File arrived: {path}")
        try:
            self.on_file(path)
        except Exception as e:
            logger.error(f"Failed to enqueue {path}: {e}")

    def cancel_pending(self):
        with self._lock:
            for timer in self._pending.values():
                timer.cancel()
            self._pending.clear()


class InboxWatcher:
    """Inbox monitoring orchestrator."""

    def __init__(
        self,
        storage: LocalStorage,
        inbox_folder: str,
        on_file: Callable[[str], object],
        settle_seconds: float = 1.0,
    ):
        self.storage = storage
        self.inbox_folder = inbox_folder
        self.event_handler = InboxEventHandler(storage, inbox_folder, on_file, settle_seconds)
        self.observer: Optional[Observer] = None

        logger.info(f"Inbox watcher initialized for {inbox_folder}")

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def scan_existing(self) -> int:
        """
        Hand over files already sitting in the inbox.

        Returns:
            Number of files handed over
        """
        count = 0
        for path in self.storage.list(self.inbox_folder):
            if self.event_handler.should_process(str(self.storage.absolute(path))) is None:
                continue
            self.event_handler.on_file(path)
            count += 1

        if count:
            logger.info(f"Found {count} files already in the inbox")
        return count

    def start(self):
        """Start watching the inbox folder."""
        directory = self.storage.absolute(self.inbox_folder)
        directory.mkdir(parents=True, exist_ok=True)

        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(directory), recursive=False)
        self.observer.daemon = True
        self.observer.start()
        logger.success(f"Started watching: {directory}")

    def stop(self):
        """Stop watching."""
        if self.observer is None:
            return
        self.event_handler.cancel_pending()
        self.observer.stop()
        self.observer.join()
        self.observer = None
        logger.info("Inbox observer stopped")
