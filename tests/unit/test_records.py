import json
import time
from datetime import datetime, timedelta, timezone

from domains.inbox.outcomes import Bypassed, Completed, Failed, Skipped
from domains.inbox.records import (
    Action,
    FileRecord,
    FileStatus,
    RecordStore,
    StageError,
    StageLog,
)


def _log(minutes: int, **kwargs) -> StageLog:
    stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return StageLog(timestamp=stamp, **kwargs)


def test_action_order_is_canonical():
    assert [a.value for a in Action.ordered()] == [
        "validate", "container", "moving_attachment", "extract", "cleanup",
        "fetch_youtube", "classify", "moving", "rename", "formatting",
        "append", "tagging", "completed",
    ]
    assert Action.VALIDATE.next() == Action.CONTAINER
    assert Action.COMPLETED.next() is None
    assert Action.CLASSIFY.display_name == "Classifying"


def test_status_is_derived_from_logs():
    record = FileRecord(id="r1", original_name="a.md")
    assert record.status == FileStatus.PROCESSING

    record.record(Action.VALIDATE, Completed().to_log())
    assert record.status == FileStatus.PROCESSING

    record.record(Action.CONTAINER, Failed("disk full").to_log())
    assert record.status == FileStatus.ERROR

    record.record(Action.CONTAINER, Bypassed("empty file").to_log())
    assert record.status == FileStatus.BYPASSED

    record.clear_errors()
    for action in Action.ordered()[1:-1]:
        record.record(action, Skipped().to_log())
    assert record.status == FileStatus.PROCESSING

    record.record(Action.COMPLETED, Completed().to_log())
    assert record.status == FileStatus.COMPLETED


def test_cursor_points_at_first_missing_or_errored_action():
    record = FileRecord(id="r1", original_name="a.md")
    assert record.cursor() == Action.VALIDATE

    for action in Action.ordered()[:7]:
        record.record(action, Completed().to_log())
    record.record(Action.CLASSIFY, Failed("timeout").to_log())
    assert record.cursor() == Action.CLASSIFY

    record.clear_errors()
    assert Action.CLASSIFY not in record.logs
    assert record.cursor() == Action.CLASSIFY
    assert record.status == FileStatus.PROCESSING


def test_retry_replaces_previous_log_for_action():
    record = FileRecord(id="r1", original_name="a.md")
    record.record(Action.VALIDATE, Failed("boom").to_log())
    record.record(Action.VALIDATE, Completed().to_log())

    assert len(record.logs) == 1
    assert record.logs[Action.VALIDATE].completed
    assert record.logs[Action.VALIDATE].error is None


def test_legacy_bypass_prefix_is_upgraded():
    error = StageError.model_validate({"message": "Bypassed due to file too large"})
    assert error.bypassed is True
    assert error.message == "file too large"

    plain = StageError.model_validate({"message": "Connection refused"})
    assert plain.bypassed is False


def test_record_accepts_camel_case_and_drops_unknown_actions():
    record = FileRecord.model_validate({
        "id": "r1",
        "originalName": "a.md",
        "newName": "b.md",
        "newPath": "Notes/b.md",
        "logs": {
            "validate": {"timestamp": "2024-05-01T12:00:00Z", "completed": True},
            "summarize": {"timestamp": "2024-05-01T12:01:00Z", "completed": True},
        },
    })

    assert record.original_name == "a.md"
    assert record.current_name == "b.md"
    assert record.new_path == "Notes/b.md"
    assert list(record.logs) == [Action.VALIDATE]


def test_last_error_is_latest_in_action_order():
    record = FileRecord(id="r1", original_name="a.md")
    # Later action logged with an older timestamp still wins
    record.record(Action.VALIDATE, _log(5, error=StageError(message="first")))
    record.record(Action.CLASSIFY, _log(1, error=StageError(message="second")))

    assert record.last_error().error.message == "second"
    assert record.last_step() == Action.CLASSIFY


def test_add_tags_returns_only_new_tags():
    record = FileRecord(id="r1", original_name="a.md", tags=["work"])
    assert record.add_tags(["work", "idea", "", "idea"]) == ["idea"]
    assert record.tags == ["work", "idea"]


# Record store ---------------------------------------------------------------


def test_upserts_are_coalesced_into_one_write(tmp_path):
    store = RecordStore(tmp_path / "records.json", debounce_seconds=60.0)
    record = FileRecord(id="r1", original_name="a.md")

    for i in range(10):
        record.tags.append(f"t{i}")
        store.upsert(record)

    assert store.write_count == 0
    assert store.flush() is True
    assert store.write_count == 1
    assert store.flush() is False

    data = json.loads((tmp_path / "records.json").read_text())
    assert data[0][0] == "r1"
    assert len(data[0][1]["tags"]) == 10


def test_timer_coalesces_distinct_records_into_one_write(tmp_path):
    path = tmp_path / "records.json"
    store = RecordStore(path, debounce_seconds=0.2)

    for i in range(10):
        store.upsert(FileRecord(id=f"r{i}", original_name=f"{i}.md"))

    deadline = time.monotonic() + 5.0
    while store.write_count == 0 and time.monotonic() < deadline:
        time.sleep(0.05)
    time.sleep(0.3)

    assert store.write_count == 1
    data = json.loads(path.read_text())
    assert [entry[0] for entry in data] == [f"r{i}" for i in range(10)]
    store.close()
    assert store.write_count == 1


def test_store_returns_copies(tmp_path):
    store = RecordStore(tmp_path / "records.json", debounce_seconds=60.0)
    store.upsert(FileRecord(id="r1", original_name="a.md"))

    copy = store.get("r1")
    copy.tags.append("changed")

    assert store.get("r1").tags == []
    store.close()


def test_store_round_trips_through_disk(tmp_path):
    path = tmp_path / "records.json"
    store = RecordStore(path, debounce_seconds=60.0)
    record = FileRecord(id="r1", original_name="a.md", file_path="_Organizer/Inbox/a.md")
    record.record(Action.VALIDATE, Bypassed("file too large").to_log())
    store.upsert(record)
    store.upsert(FileRecord(id="r2", original_name="b.md"))
    store.close()

    reloaded = RecordStore(path, debounce_seconds=60.0)
    assert reloaded.load() == 2
    assert [r.id for r in reloaded.get_all()] == ["r1", "r2"]
    assert reloaded.get("r1").status == FileStatus.BYPASSED
    assert reloaded.get_last_error("r1").error.message == "file too large"
    assert reloaded.get_last_step("r1") == Action.VALIDATE
    assert reloaded.get_last_step("r2") is None
    assert reloaded.get_last_step("missing") is None
    assert reloaded.find_by_path("_Organizer/Inbox/a.md").id == "r1"
    reloaded.close()


def test_legacy_object_layout_is_converted_on_save(tmp_path):
    path = tmp_path / "records.json"
    path.write_text(json.dumps({
        "abc": {
            "originalName": "big.pdf",
            "logs": {
                "validate": {
                    "timestamp": "2024-05-01T12:00:00Z",
                    "error": {"message": "Bypassed due to file too large"},
                },
            },
        },
    }))

    store = RecordStore(path, debounce_seconds=60.0)
    assert store.load() == 1
    assert store.get("abc").status == FileStatus.BYPASSED
    assert store.get_last_error("abc").error.message == "file too large"

    store.flush()
    data = json.loads(path.read_text())
    assert isinstance(data, list)
    assert data[0][0] == "abc"
    assert data[0][1]["logs"]["validate"]["error"]["bypassed"] is True


def test_corrupt_document_is_preserved_and_store_starts_empty(tmp_path):
    path = tmp_path / "records.json"
    path.write_text("{not json")

    store = RecordStore(path, debounce_seconds=60.0)
    assert store.load() == 0
    assert store.degraded is True
    assert len(store) == 0
    assert not path.exists()
    backups = list(tmp_path.glob("records.json.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text() == "{not json"

    store.upsert(FileRecord(id="r1", original_name="a.md"))
    assert store.flush() is True
    assert store.degraded is False


def test_missing_document_loads_empty(tmp_path):
    store = RecordStore(tmp_path / "missing.json", debounce_seconds=60.0)
    assert store.load() == 0
    assert store.degraded is False


def test_remove_only_forgets_record(tmp_path):
    store = RecordStore(tmp_path / "records.json", debounce_seconds=60.0)
    store.upsert(FileRecord(id="r1", original_name="a.md"))

    assert store.remove("r1") is True
    assert store.remove("r1") is False
    assert "r1" not in store
    store.close()


def test_get_all_sorting(tmp_path):
    store = RecordStore(tmp_path / "records.json", debounce_seconds=60.0)
    store.upsert(FileRecord(id="b", original_name="b.md"))
    store.upsert(FileRecord(id="a", original_name="a.md"))

    assert [r.id for r in store.get_all()] == ["b", "a"]
    assert [r.id for r in store.get_all(sort_by=lambda r: r.original_name)] == ["a", "b"]
    store.close()


def test_write_failure_degrades_without_losing_records(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = RecordStore(blocker / "records.json", debounce_seconds=60.0)
    store.upsert(FileRecord(id="r1", original_name="a.md"))

    assert store.flush() is False
    assert store.degraded is True
    assert store.write_count == 0
    assert store.get("r1") is not None
