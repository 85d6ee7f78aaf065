"""
Service-level tests for the inbox pipeline.

Each test drops a real file into a temporary vault, runs the pipeline with
in-process collaborators and checks the observable outcome: where the file
ended up, what it contains, and what the record store says about it.
"""

import frontmatter
import pytest

from domains.inbox.errors import (
    CollaboratorError,
    InvalidTransitionError,
    StaleReferenceError,
    UndoConflictError,
)
from domains.inbox.pipeline import PipelineRunner
from domains.inbox.records import Action, FileStatus
from domains.inbox.stages import EXTRACTED_HEADER


def _assert_ordered(record):
    stamps = [record.logs[a].timestamp for a in Action.ordered() if a in record.logs]
    assert stamps == sorted(stamps)


def test_markdown_note_is_filed_and_tagged(runner, drop, storage, store, collaborators):
    path = drop("meeting.md", "Some notes\n\n\n\nabout the new project\n")
    record = runner.ingest(path)

    result = runner.run(record.id)

    assert result.status == FileStatus.COMPLETED
    assert len(result.tags) == 2
    assert result.logs[Action.CONTAINER].skipped
    assert result.logs[Action.CLASSIFY].completed
    assert result.logs[Action.MOVING].completed
    assert result.logs[Action.RENAME].completed
    assert result.logs[Action.FORMATTING].skipped
    assert result.logs[Action.FORMATTING].message == "no template selected"
    assert result.logs[Action.APPEND].skipped
    assert result.logs[Action.TAGGING].completed
    assert result.cursor() is None
    _assert_ordered(result)

    assert result.file_path == "Notes/Projects/Project Idea.md"
    assert result.new_path == "Notes/Projects/Project Idea.md"
    assert result.new_name == "Project Idea.md"
    assert not storage.exists(path)

    post = frontmatter.loads(storage.read(result.file_path).decode())
    assert post["tags"] == ["project", "idea"]
    assert "Some notes\n\nabout the new project" in post.content

    assert store.get(record.id).status == FileStatus.COMPLETED
    assert any("Processed meeting.md" in m for m in collaborators.notifier.messages)


def test_oversized_file_is_bypassed(store, collaborators, settings, drop, storage):
    runner = PipelineRunner(store, collaborators, settings.model_copy(update={"max_file_size_mb": 0.0001}))
    path = drop("big.md", "x" * 500)
    record = runner.ingest(path)

    result = runner.run(record.id)

    assert result.status == FileStatus.BYPASSED
    assert store.get_last_error(record.id).error.message == "file too large"
    assert result.file_path == f"{settings.bypassed_folder}/big.md"
    assert storage.exists(result.file_path)
    assert not storage.exists(path)
    assert list(result.logs) == [Action.VALIDATE]
    assert collaborators.classifier.calls == 0


def test_classification_timeout_then_retry(runner, drop, storage, settings, collaborators, store):
    collaborators.classifier.failures.append(CollaboratorError("Classification timed out after 60s"))
    path = drop("idea.md", "An idea worth keeping\n")
    record = runner.ingest(path)

    failed = runner.run(record.id)

    assert failed.status == FileStatus.ERROR
    assert failed.file_path == f"{settings.error_folder}/idea.md"
    assert storage.exists(failed.file_path)
    assert store.get_last_error(record.id).error.message == "Classification timed out after 60s"
    validated_at = failed.logs[Action.VALIDATE].timestamp

    retried = runner.retry(record.id)

    assert retried.file_path == path
    assert storage.exists(path)
    assert retried.status == FileStatus.PROCESSING
    assert retried.cursor() == Action.CLASSIFY

    result = runner.run(record.id)

    assert result.status == FileStatus.COMPLETED
    assert result.logs[Action.VALIDATE].timestamp == validated_at
    assert collaborators.classifier.calls == 2
    assert storage.exists("Notes/Projects/Project Idea.md")
    _assert_ordered(result)


def test_retry_at_tagging_only_reruns_tagging(runner, drop, storage, collaborators):
    path = drop("draft.md", "---\ntags: [unclosed\n---\nbody text\n")
    record = runner.ingest(path)

    failed = runner.run(record.id)

    assert failed.status == FileStatus.ERROR
    assert failed.last_step() == Action.TAGGING
    assert failed.file_path == "Notes/Projects/Project Idea.md"
    before = {a: log.timestamp for a, log in failed.logs.items() if a != Action.TAGGING}

    # The user repairs the frontmatter in place
    storage.write(failed.file_path, b"---\ntags:\n- existing\n---\nbody text\n")

    runner.retry(record.id)
    result = runner.run(record.id)

    assert result.status == FileStatus.COMPLETED
    assert collaborators.classifier.calls == 1
    for action, stamp in before.items():
        assert result.logs[action].timestamp == stamp

    post = frontmatter.loads(storage.read(result.file_path).decode())
    assert post["tags"] == ["existing", "project", "idea"]
    assert result.tags == ["project", "idea"]


def test_attachment_gets_container_note(runner, drop, storage, settings, collaborators):
    path = drop("scan.pdf", b"%PDF-1.4 fake")
    record = runner.ingest(path)

    result = runner.run(record.id)

    assert result.status == FileStatus.COMPLETED
    assert result.attachment_path == f"{settings.attachments_folder}/scan.pdf"
    assert result.file_path == "Notes/Projects/Project Idea.md"
    assert collaborators.classifier.last_metadata["extension"] == "pdf"

    content = storage.read(result.file_path).decode()
    assert "![[scan.pdf]]" in content
    assert EXTRACTED_HEADER in content
    assert "Total: 42 EUR" in content

    # Files the engine created are never ingested as new arrivals
    assert runner.ingest(result.file_path) is None
    assert runner.ingest(result.attachment_path) is None


def test_ingest_is_idempotent_per_path(runner, drop):
    path = drop("note.md")
    assert runner.ingest(path) is not None
    assert runner.ingest(path) is None
    assert runner.ingest("_Organizer/Inbox/missing.md") is None


def test_cancel_stops_before_next_stage(runner, drop, settings, storage):
    path = drop("note.md")
    record = runner.ingest(path)

    assert runner.cancel(record.id) is True
    result = runner.run(record.id)

    assert result.status == FileStatus.ERROR
    assert result.logs[Action.VALIDATE].error.message == "processing cancelled"
    assert storage.exists(f"{settings.error_folder}/note.md")
    assert runner.cancel(record.id) is False


def test_manual_bypass_and_retry_from_bypass(runner, drop, storage, settings, collaborators):
    collaborators.classifier.failures.append(CollaboratorError("model not found"))
    record = runner.ingest(drop("note.md"))
    runner.run(record.id)

    bypassed = runner.bypass(record.id, "not worth filing")

    assert bypassed.status == FileStatus.BYPASSED
    assert bypassed.logs[Action.CLASSIFY].error.message == "not worth filing"
    assert bypassed.file_path == f"{settings.bypassed_folder}/note.md"
    assert storage.exists(bypassed.file_path)

    with pytest.raises(InvalidTransitionError):
        runner.bypass(record.id, "again")

    retried = runner.retry(record.id)
    assert retried.file_path == f"{settings.inbox_folder}/note.md"
    assert runner.run(record.id).status == FileStatus.COMPLETED


def test_reenqueue_runs_everything_again_without_duplicates(runner, drop, storage, collaborators):
    record = runner.ingest(drop("note.md", "body\n"))
    first = runner.run(record.id)

    with pytest.raises(InvalidTransitionError):
        runner.retry(record.id)

    runner.reenqueue(record.id)
    second = runner.run(record.id)

    assert second.status == FileStatus.COMPLETED
    assert second.file_path == first.file_path
    assert second.logs[Action.MOVING].skipped
    assert second.logs[Action.RENAME].skipped
    assert second.logs[Action.TAGGING].skipped
    assert collaborators.classifier.calls == 2

    post = frontmatter.loads(storage.read(second.file_path).decode())
    assert post["tags"] == ["project", "idea"]


def test_retry_finds_file_moved_by_user(runner, drop, storage, settings, collaborators):
    collaborators.classifier.failures.append(CollaboratorError("connection refused"))
    record = runner.ingest(drop("note.md"))
    runner.run(record.id)

    storage.move(f"{settings.error_folder}/note.md", "Elsewhere/note.md")

    retried = runner.retry(record.id)
    assert retried.file_path == "Elsewhere/note.md"
    assert runner.run(record.id).status == FileStatus.COMPLETED


def test_retry_of_vanished_file_is_stale(runner, drop, storage, settings, collaborators):
    collaborators.classifier.failures.append(CollaboratorError("connection refused"))
    record = runner.ingest(drop("note.md"))
    runner.run(record.id)
    storage.delete(f"{settings.error_folder}/note.md")

    with pytest.raises(StaleReferenceError):
        runner.retry(record.id)


def test_remove_forgets_record_but_keeps_file(runner, drop, storage, store):
    path = drop("note.md")
    record = runner.ingest(path)

    assert runner.remove(record.id) is True
    assert record.id not in store
    assert storage.exists(path)


def test_cancel_during_last_stage_does_not_leak_into_next_run(runner, drop, monkeypatch):
    record = runner.ingest(drop("note.md"))
    execute = runner.executor.execute

    def cancel_at_completion(rec, action):
        if action == Action.COMPLETED:
            assert runner.cancel(rec.id) is True
        return execute(rec, action)

    monkeypatch.setattr(runner.executor, "execute", cancel_at_completion)
    assert runner.run(record.id).status == FileStatus.COMPLETED

    monkeypatch.setattr(runner.executor, "execute", execute)
    runner.reenqueue(record.id)
    result = runner.run(record.id)

    assert result.status == FileStatus.COMPLETED
    assert result.logs[Action.VALIDATE].error is None


def test_undo_moves_file_back_and_strips_added_tags(runner, drop, storage, store, settings):
    path = drop("meeting.md", "---\ntags:\n- existing\n---\nbody\n")
    record = runner.ingest(path)
    done = runner.run(record.id)
    assert done.file_path == "Notes/Projects/Project Idea.md"

    undone = runner.undo(record.id)

    assert undone.file_path == path
    assert undone.new_path is None
    assert undone.new_name is None
    assert undone.tags == []
    assert undone.status == FileStatus.COMPLETED
    assert not storage.exists(done.file_path)

    post = frontmatter.loads(storage.read(path).decode())
    assert post["tags"] == ["existing"]
    assert "body" in post.content

    # The restored file is tracked, so it is not picked up as a new arrival
    assert runner.ingest(path) is None
    assert store.get(record.id).file_path == path

    with pytest.raises(InvalidTransitionError):
        runner.undo(record.id)


def test_undo_drops_frontmatter_it_created(runner, drop, storage):
    record = runner.ingest(drop("plain.md", "just text\n"))
    runner.run(record.id)

    undone = runner.undo(record.id)

    post = frontmatter.loads(storage.read(undone.file_path).decode())
    assert post.metadata == {}
    assert post.content.strip() == "just text"


def test_undo_refuses_to_overwrite_inbox_file(runner, drop, storage):
    path = drop("meeting.md")
    record = runner.ingest(path)
    done = runner.run(record.id)
    drop("meeting.md", "a different file\n")

    with pytest.raises(UndoConflictError):
        runner.undo(record.id)

    assert storage.exists(done.file_path)
    assert storage.read(path) == b"a different file\n"


def test_undo_requires_completed_record(runner, drop, collaborators):
    collaborators.classifier.failures.append(CollaboratorError("connection refused"))
    record = runner.ingest(drop("note.md"))
    runner.run(record.id)

    with pytest.raises(InvalidTransitionError):
        runner.undo(record.id)
