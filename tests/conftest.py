"""
Shared fixtures for the inbox engine tests.

Collaborators that would call out to Ollama, a transcription server or
YouTube are replaced by in-process fakes; the vault is a real directory
under pytest's tmp_path.
"""

from typing import List

import pytest

from app.utils.config import Settings
from app.utils.storage import LocalStorage
from domains.inbox.interfaces import VideoTranscript
from domains.inbox.pipeline import PipelineRunner
from domains.inbox.records import Classification, RecordStore
from domains.inbox.stages import Collaborators


class FakeClassifier:
    """Returns a fixed classification; queued exceptions are raised first."""

    def __init__(self, classification: Classification = None):
        self.classification = classification or Classification(
            destination_folder="Notes/Projects",
            tags=["project", "idea"],
            suggested_name="Project Idea",
        )
        self.failures: List[Exception] = []
        self.calls = 0
        self.format_calls = 0
        self.last_metadata = None

    def classify(self, content, metadata):
        self.calls += 1
        self.last_metadata = metadata
        if self.failures:
            raise self.failures.pop(0)
        return self.classification.model_copy(deep=True)

    def format_content(self, content, template):
        self.format_calls += 1
        return f"# Formatted\n\n{content}"


class FakeExtractor:
    def __init__(self, text: str = "Invoice 2024-113\nTotal: 42 EUR"):
        self.text = text
        self.paths = []

    def extract_text(self, path):
        self.paths.append(path)
        return self.text


class FakeTranscriber:
    def __init__(self, text: str = "Remember to call the plumber."):
        self.text = text
        self.calls = []

    def transcribe_audio(self, data, filename):
        self.calls.append(filename)
        return self.text


class FakeVideo:
    def __init__(self, error: Exception = None):
        self.error = error
        self.calls = []

    def fetch_video_transcript(self, video_id):
        self.calls.append(video_id)
        if self.error is not None:
            raise self.error
        return VideoTranscript(title="A Talk", transcript="hello and welcome")


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, message, duration=5.0):
        self.messages.append(message)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        vault_path=tmp_path / "vault",
        record_store_path=tmp_path / "state" / "records.json",
        persist_debounce_seconds=60.0,
        watch_inbox=False,
        watch_settle_seconds=0,
        inbox_workers=2,
    )


@pytest.fixture
def storage(settings) -> LocalStorage:
    return LocalStorage(settings.get_vault_path())


@pytest.fixture
def collaborators(storage) -> Collaborators:
    return Collaborators(
        storage=storage,
        classifier=FakeClassifier(),
        extractor=FakeExtractor(),
        transcriber=FakeTranscriber(),
        video=FakeVideo(),
        notifier=RecordingNotifier(),
    )


@pytest.fixture
def store(settings):
    store = RecordStore(settings.get_record_store_path(), debounce_seconds=60.0)
    yield store
    store.close()


@pytest.fixture
def runner(store, collaborators, settings) -> PipelineRunner:
    return PipelineRunner(store, collaborators, settings)


@pytest.fixture
def drop(storage, settings):
    """Write a file into the inbox and return its vault path."""

    def _drop(name: str, content="Some notes\n") -> str:
        path = f"{settings.inbox_folder}/{name}"
        data = content.encode("utf-8") if isinstance(content, str) else content
        storage.write(path, data)
        return path

    return _drop
