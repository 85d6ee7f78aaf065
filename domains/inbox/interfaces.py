"""
Contracts of the collaborators the inbox engine calls into.

Concrete implementations live in app.utils; tests substitute fakes.
"""

from typing import Any, Dict, Iterator, List, Protocol

from pydantic import BaseModel

from domains.inbox.records import Classification


class VideoTranscript(BaseModel):
    """Title and transcript of an external video."""
    title: str
    transcript: str


class Storage(Protocol):
    """Hierarchical file tree addressed by vault-relative POSIX paths."""

    def read(self, path: str) -> bytes: ...

    def write(self, path: str, data: bytes) -> None: ...

    def move(self, path: str, new_path: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def exists(self, path: str) -> bool: ...

    def list(self, folder: str) -> List[str]: ...

    def size(self, path: str) -> int: ...

    def walk(self) -> Iterator[str]: ...


class Classifier(Protocol):
    def classify(self, content: str, metadata: Dict[str, Any]) -> Classification: ...

    def format_content(self, content: str, template: str) -> str: ...


class TextExtractor(Protocol):
    def extract_text(self, path: str) -> str: ...


class AudioTranscriber(Protocol):
    def transcribe_audio(self, data: bytes, filename: str) -> str: ...


class VideoTranscriptFetcher(Protocol):
    def fetch_video_transcript(self, video_id: str) -> VideoTranscript: ...


class Notifier(Protocol):
    def notify(self, message: str, duration: float = 5.0) -> None: ...
