"""
Process root of the inbox engine.

Constructs the record store, pipeline runner, work queue and watcher once
and hands the same instances to everything that needs them.
"""

from typing import Optional

from loguru import logger

from app.utils.classifier import OllamaClassifier
from app.utils.config import Settings
from app.utils.extraction import AttachmentTextExtractor
from app.utils.notify import LogNotifier
from app.utils.storage import LocalStorage
from app.utils.transcription import TranscriptionClient
from app.utils.youtube import YouTubeTranscriptFetcher
from domains.inbox.interfaces import (
    AudioTranscriber,
    Classifier,
    Notifier,
    TextExtractor,
    VideoTranscriptFetcher,
)
from domains.inbox.pipeline import PipelineRunner
from domains.inbox.queue import InboxQueue
from domains.inbox.records import FileStatus, RecordStore
from domains.inbox.stages import Collaborators
from domains.inbox.watcher import InboxWatcher


class InboxService:
    """Owns the engine components for the lifetime of the process."""

    def __init__(
        self,
        settings: Settings,
        storage: Optional[LocalStorage] = None,
        classifier: Optional[Classifier] = None,
        extractor: Optional[TextExtractor] = None,
        transcriber: Optional[AudioTranscriber] = None,
        video: Optional[VideoTranscriptFetcher] = None,
        notifier: Optional[Notifier] = None,
    ):
        """
        Wire the engine.

        Collaborators default to the production clients; tests pass fakes.
        """
        self.settings = settings
        self.storage = storage or LocalStorage(settings.get_vault_path())

        self.collaborators = Collaborators(
            storage=self.storage,
            classifier=classifier or OllamaClassifier(settings),
            extractor=extractor or AttachmentTextExtractor(self.storage),
            transcriber=transcriber or TranscriptionClient(settings),
            video=video or YouTubeTranscriptFetcher(settings),
            notifier=notifier or LogNotifier(),
        )

        self.store = RecordStore(
            settings.get_record_store_path(),
            debounce_seconds=settings.persist_debounce_seconds,
        )
        self.runner = PipelineRunner(self.store, self.collaborators, settings)
        self.queue = InboxQueue(self.runner, workers=settings.inbox_workers)
        self.watcher = InboxWatcher(
            self.storage,
            settings.inbox_folder,
            on_file=self.queue.enqueue_path,
            settle_seconds=settings.watch_settle_seconds,
        )

    def start(self) -> None:
        """Load state, resume interrupted runs and start watching the inbox."""
        self.store.load()

        interrupted = [r for r in self.store.get_all() if r.status == FileStatus.PROCESSING]
        for record in interrupted:
            self.queue.submit(record.id)
        if interrupted:
            logger.info(f"Resuming {len(interrupted)} interrupted records")

        if self.settings.watch_inbox:
            self.watcher.scan_existing()
            self.watcher.start()

        logger.success("Inbox service started")

    def stop(self) -> None:
        """Stop watching, let in-flight stages finish and flush the store."""
        self.watcher.stop()
        self.queue.shutdown(wait=True)
        self.store.close()
        logger.info("Inbox service stopped")
