"""
Stage Executor for the inbox pipeline.

Runs exactly one Action for one FileRecord, records the outcome in
``record.logs[action]`` and reports it back to the runner. Every handler
is idempotent: re-running an action after it completed either skips or
redoes the work without duplicating side effects.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, Dict, List

import frontmatter
from loguru import logger

from app.utils.config import Settings
from app.utils.helpers import (
    get_file_extension,
    is_in_folder,
    join_path,
    parent_folder,
    sanitize_filename,
    should_exclude_path,
    unique_name,
)
from app.utils.youtube import YOUTUBE_SECTION_HEADER, extract_youtube_video_id
from domains.inbox.errors import BypassError, InboxError, StaleReferenceError
from domains.inbox.interfaces import (
    AudioTranscriber,
    Classifier,
    Notifier,
    Storage,
    TextExtractor,
    VideoTranscriptFetcher,
)
from domains.inbox.outcomes import Bypassed, Completed, Failed, Skipped, StageOutcome
from domains.inbox.records import Action, FileRecord

AUDIO_EXTENSIONS = {"mp3", "wav", "m4a", "webm", "ogg"}
EXTRACTED_HEADER = "## Extracted content"


@dataclass
class Collaborators:
    """External services the pipeline calls into."""

    storage: Storage
    classifier: Classifier
    extractor: TextExtractor
    transcriber: AudioTranscriber
    video: VideoTranscriptFetcher
    notifier: Notifier


def append_marker(record_id: str) -> str:
    return f"<!-- inbox:{record_id} -->"


def normalise_content(text: str) -> str:
    """Unify line endings, collapse runs of blank lines, end with one newline."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = text.strip("\n")
    return f"{text}\n" if text else ""


class StageExecutor:
    """Executes single pipeline stages against the vault."""

    def __init__(
        self,
        settings: Settings,
        collaborators: Collaborators,
        claim_path: Callable[[str, str], None] = None,
    ):
        """
        Initialize stage executor.

        Args:
            settings: Application settings
            collaborators: External services
            claim_path: Called with (path, record_id) before the engine creates
                a file inside the inbox, so the watcher does not pick it up
        """
        self.settings = settings
        self.collaborators = collaborators
        self.storage = collaborators.storage
        self.claim_path = claim_path or (lambda path, record_id: None)

        self._handlers: Dict[Action, Callable[[FileRecord], StageOutcome]] = {
            Action.VALIDATE: self._validate,
            Action.CONTAINER: self._container,
            Action.MOVING_ATTACHMENT: self._moving_attachment,
            Action.EXTRACT: self._extract,
            Action.CLEANUP: self._cleanup,
            Action.FETCH_YOUTUBE: self._fetch_youtube,
            Action.CLASSIFY: self._classify,
            Action.MOVING: self._moving,
            Action.RENAME: self._rename,
            Action.FORMATTING: self._formatting,
            Action.APPEND: self._append,
            Action.TAGGING: self._tagging,
            Action.COMPLETED: self._completed,
        }

    def execute(self, record: FileRecord, action: Action) -> StageOutcome:
        """
        Execute ``action`` for ``record`` and store the resulting log.

        Collaborator exceptions never escape: they become a Failed outcome,
        BypassError becomes Bypassed.

        Args:
            record: Record to process (mutated in place)
            action: Stage to run

        Returns:
            The stage outcome; ``outcome.proceed`` tells whether to continue
        """
        logger.debug(f"{action.display_name}: {record.current_name}")

        try:
            outcome = self._handlers[action](record)
        except BypassError as e:
            outcome = Bypassed(e.reason)
        except Exception as e:
            logger.error(f"{action.display_name} failed for {record.current_name}: {e}")
            outcome = Failed(str(e) or e.__class__.__name__)

        record.record(action, outcome.to_log())

        if isinstance(outcome, Bypassed):
            logger.info(f"Bypassed {record.current_name} at {action.value}: {outcome.reason}")
        return outcome

    # Storage helpers ---------------------------------------------------------

    def _read_text(self, path: str) -> str:
        return self.storage.read(path).decode("utf-8", errors="replace")

    def _write_text(self, path: str, text: str) -> None:
        self.storage.write(path, text.encode("utf-8"))

    def _require_file(self, record: FileRecord) -> str:
        path = record.file_path
        if not path or not self.storage.exists(path):
            raise StaleReferenceError(record.id, [record.current_name])
        return path

    def _free_name(self, folder: str, name: str) -> str:
        return unique_name(name, lambda n: self.storage.exists(join_path(folder, n)))

    def _system_folders(self) -> List[str]:
        return [
            self.settings.inbox_folder,
            self.settings.error_folder,
            self.settings.bypassed_folder,
            self.settings.attachments_folder,
        ]

    def _known_folders(self) -> List[str]:
        system = self._system_folders()
        folders = set()
        for path in self.storage.walk():
            folder = parent_folder(path)
            if not folder:
                continue
            if any(folder == s or folder.startswith(f"{s}/") for s in system):
                continue
            folders.add(folder)
        return sorted(folders)

    # Handlers ----------------------------------------------------------------

    def _validate(self, record: FileRecord) -> StageOutcome:
        path = self._require_file(record)
        target = record.attachment_path or path
        name = PurePosixPath(target).name
        extension = get_file_extension(target)

        if should_exclude_path(name, self.settings.get_ignore_patterns()):
            raise BypassError("file matches ignore pattern")

        if extension not in self.settings.get_supported_extensions():
            raise BypassError(f"unsupported file type: .{extension}")

        if self.storage.size(target) > self.settings.max_file_size_bytes():
            raise BypassError("file too large")

        return Completed()

    def _container(self, record: FileRecord) -> StageOutcome:
        if record.attachment_path:
            return Skipped("container already created")

        path = self._require_file(record)
        if get_file_extension(path) == "md":
            return Skipped("markdown note")

        folder = parent_folder(path)
        attachment = PurePosixPath(path)
        note_path = join_path(folder, self._free_name(folder, f"{attachment.stem}.md"))

        self.claim_path(note_path, record.id)
        self._write_text(note_path, f"![[{attachment.name}]]\n")

        record.attachment_path = path
        record.file_path = note_path
        return Completed(f"created {note_path}")

    def _moving_attachment(self, record: FileRecord) -> StageOutcome:
        attachment = record.attachment_path
        if not attachment:
            return Skipped("no attachment")

        folder = self.settings.attachments_folder
        if is_in_folder(attachment, folder):
            return Skipped("attachment already in place")

        if not self.storage.exists(attachment):
            raise StaleReferenceError(record.id, [PurePosixPath(attachment).name])

        old_name = PurePosixPath(attachment).name
        new_name = self._free_name(folder, old_name)
        destination = join_path(folder, new_name)
        self.storage.move(attachment, destination)
        record.attachment_path = destination

        if new_name != old_name:
            note = self._require_file(record)
            content = self._read_text(note).replace(f"![[{old_name}]]", f"![[{new_name}]]")
            self._write_text(note, content)

        return Completed(f"moved to {destination}")

    def _extract(self, record: FileRecord) -> StageOutcome:
        attachment = record.attachment_path
        if not attachment:
            return Skipped("markdown note")

        note = self._require_file(record)
        content = self._read_text(note)
        if EXTRACTED_HEADER in content:
            return Skipped("content already extracted")

        name = PurePosixPath(attachment).name
        if get_file_extension(attachment) in AUDIO_EXTENSIONS:
            text = self.collaborators.transcriber.transcribe_audio(self.storage.read(attachment), name)
        else:
            text = self.collaborators.extractor.extract_text(attachment)

        if not text.strip():
            return Completed("no text found")

        self._write_text(note, f"{content.rstrip()}\n\n{EXTRACTED_HEADER}\n\n{text.strip()}\n")
        return Completed(f"extracted {len(text)} characters")

    def _cleanup(self, record: FileRecord) -> StageOutcome:
        note = self._require_file(record)
        content = self._read_text(note)
        cleaned = normalise_content(content)

        if not cleaned.strip():
            raise BypassError("empty file")
        if cleaned == content:
            return Skipped("nothing to clean")

        self._write_text(note, cleaned)
        return Completed()

    def _fetch_youtube(self, record: FileRecord) -> StageOutcome:
        note = self._require_file(record)
        content = self._read_text(note)

        if YOUTUBE_SECTION_HEADER in content:
            return Skipped("transcript already present")

        video_id = extract_youtube_video_id(content)
        if video_id is None:
            return Skipped("no video reference")

        try:
            video = self.collaborators.video.fetch_video_transcript(video_id)
        except Exception as e:
            # Transcripts are optional; continue without one
            logger.warning(f"Proceeding without transcript for {record.current_name}: {e}")
            return Skipped(f"transcript unavailable: {e}")

        section = f"\n\n{YOUTUBE_SECTION_HEADER} {video.title}\n\n{video.transcript.strip()}\n"
        self._write_text(note, content.rstrip("\n") + section)
        return Completed(video.title)

    def _classify(self, record: FileRecord) -> StageOutcome:
        note = self._require_file(record)
        content = self._read_text(note)

        metadata = {
            "filename": record.original_name,
            "extension": get_file_extension(record.attachment_path or note),
            "folders": self._known_folders(),
            "tags": list(record.tags),
        }
        classification = self.collaborators.classifier.classify(content, metadata)

        folder = classification.destination_folder.strip().strip("/")
        if not folder:
            raise InboxError("classification returned no destination folder")
        classification.destination_folder = folder

        if classification.template is None:
            classification.template = self.settings.format_template
        if classification.append_to is None:
            classification.append_to = self.settings.append_to_note

        record.classification = classification
        return Completed(f"destination {folder}")

    def _moving(self, record: FileRecord) -> StageOutcome:
        if record.classification is None:
            raise InboxError("no classification available")

        note = self._require_file(record)
        folder = record.classification.destination_folder

        if is_in_folder(note, folder):
            record.new_path = note
            return Skipped("already in destination")

        destination = join_path(folder, self._free_name(folder, PurePosixPath(note).name))
        self.storage.move(note, destination)
        record.file_path = destination
        record.new_path = destination
        return Completed(f"moved to {destination}")

    def _rename(self, record: FileRecord) -> StageOutcome:
        suggestion = record.classification.suggested_name if record.classification else None
        if not suggestion:
            return Skipped("no name suggested")

        note = self._require_file(record)
        current = PurePosixPath(note)
        stem = sanitize_filename(suggestion)
        if stem.lower().endswith(current.suffix.lower()):
            stem = stem[:-len(current.suffix)].rstrip(". ")
        if not stem:
            return Skipped("suggested name is empty after sanitizing")

        target_name = f"{stem}{current.suffix}"
        if current.name == target_name:
            record.new_name = target_name
            return Skipped("already named")

        folder = parent_folder(note)
        new_name = self._free_name(folder, target_name)
        destination = join_path(folder, new_name)
        self.storage.move(note, destination)

        record.file_path = destination
        record.new_path = destination
        record.new_name = new_name
        return Completed(f"renamed to {new_name}")

    def _formatting(self, record: FileRecord) -> StageOutcome:
        template = record.classification.template if record.classification else None
        if not template:
            return Skipped("no template selected")

        note = self._require_file(record)
        formatted = self.collaborators.classifier.format_content(self._read_text(note), template)
        self._write_text(note, normalise_content(formatted))
        return Completed()

    def _append(self, record: FileRecord) -> StageOutcome:
        target = record.classification.append_to if record.classification else None
        if not target:
            return Skipped("no append target")

        if not target.endswith(".md"):
            target = f"{target}.md"

        marker = append_marker(record.id)
        existing = self._read_text(target) if self.storage.exists(target) else ""
        if marker in existing:
            return Skipped("already appended")

        note = self._require_file(record)
        content = self._read_text(note).strip()
        combined = f"{existing.rstrip()}\n\n{marker}\n{content}\n".lstrip("\n")
        self._write_text(target, combined)
        return Completed(f"appended to {target}")

    def _tagging(self, record: FileRecord) -> StageOutcome:
        tags = record.classification.tags if record.classification else []
        if not tags:
            return Skipped("no tags")

        note = self._require_file(record)
        post = frontmatter.loads(self._read_text(note))

        existing = post.get("tags") or []
        if isinstance(existing, str):
            existing = [existing]
        merged = list(existing) + [t for t in tags if t not in existing]

        record.add_tags(tags)

        if len(merged) == len(existing):
            return Skipped("tags already applied")

        post["tags"] = merged
        self._write_text(note, frontmatter.dumps(post) + "\n")
        return Completed(f"added {len(merged) - len(existing)} tags")

    def _completed(self, record: FileRecord) -> StageOutcome:
        return Completed()
