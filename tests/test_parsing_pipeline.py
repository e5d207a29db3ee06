import queue
import threading
import time
from datetime import datetime

import pytest

from discussion_reader.parsing import (
    DiscussionParsingEngine,
    InMemoryParsingRepository,
    LocalPageStorage,
    ParseJobPhase,
    ParseJobRecord,
    ParseJobState,
    ParsingWorker,
    SqlAlchemyParsingRepository,
    StoragePaths,
    WorkerBusyError,
    WorkerThread,
)

PAGE = (
    '<div class="mw-parser-output"><h2>Topic</h2>'
    '<p>Question. <a href="/wiki/User:Alice">Alice</a> 10:00, 1 January 2020 (UTC)</p>'
    '<dl><dd>Answer. <a href="/wiki/User:Bob">Bob</a> 11:00, 1 January 2020 (UTC)</dd></dl></div>'
)


class GatedEngine(DiscussionParsingEngine):
    """Blocks every parse until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()

    def parse(self, request):
        self.gate.wait(5)
        return super().parse(request)


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def test_sqlalchemy_repository_roundtrip(tmp_path):
    db_path = tmp_path / "test.db"
    repo = SqlAlchemyParsingRepository(f"sqlite+pysqlite:///{db_path}")

    job = ParseJobRecord(
        id="job-1",
        page_name="Talk:Main",
        state=ParseJobState.QUEUED,
        phase=ParseJobPhase.PRECHECK,
        config_json={"signatureScanLimit": 5},
        globals_json={"currentUserName": "Alice"},
    )
    repo.save_job(job)
    fetched = repo.get_job(job.id)
    assert fetched and fetched.page_name == "Talk:Main"
    assert fetched.config_json == {"signatureScanLimit": 5}

    repo.update_job_state_phase(job.id, state=ParseJobState.RUNNING, phase=ParseJobPhase.PARSE)
    updated = repo.get_job(job.id)
    assert updated.state == ParseJobState.RUNNING
    assert updated.phase == ParseJobPhase.PARSE
    assert updated.started_at is not None

    repo.update_job_state_phase(job.id, state=ParseJobState.COMPLETED, comment_count=2, section_count=1)
    done = repo.get_job(job.id)
    assert done.state == ParseJobState.COMPLETED
    assert (done.comment_count, done.section_count) == (2, 1)

    assert [j.id for j in repo.list_jobs(page_name="Talk:Main")] == ["job-1"]
    assert repo.list_jobs(page_name="Talk:Other") == []
    assert repo.get_job("missing") is None


def test_in_memory_repository_returns_copies():
    repo = InMemoryParsingRepository()
    job = ParseJobRecord(id="job-1", page_name="Talk:Main", state=ParseJobState.QUEUED, phase=ParseJobPhase.PRECHECK)
    repo.save_job(job)

    fetched = repo.get_job("job-1")
    fetched.state = ParseJobState.FAILED
    assert repo.get_job("job-1").state == ParseJobState.QUEUED


def test_worker_runs_persisted_job(tmp_path):
    storage = LocalPageStorage(StoragePaths(tmp_path / "data"))
    repo = InMemoryParsingRepository()
    worker = ParsingWorker(repository=repo, storage=storage, persist_engine_output=True)

    storage.save_page_html("job-1", PAGE)
    repo.save_job(
        ParseJobRecord(
            id="job-1",
            page_name="Talk:Main",
            state=ParseJobState.QUEUED,
            phase=ParseJobPhase.PRECHECK,
            started_at=datetime.utcnow(),
            globals_json={"currentUserName": "Alice", "currentPageName": "Talk:Main"},
        )
    )

    result = worker.run_job("job-1")

    job = repo.get_job("job-1")
    assert job.state == ParseJobState.COMPLETED
    assert job.phase == ParseJobPhase.PERSIST
    assert (job.comment_count, job.section_count) == (2, 1)
    assert len(result.comments) == 2

    stored = storage.read_parse_output("job-1")
    assert stored["type"] == "parse"
    assert [c["authorName"] for c in stored["comments"]] == ["Alice", "Bob"]
    assert stored["comments"][1]["toMe"] is True
    assert stored["sections"][0]["commentIds"] == [0, 1]


def test_worker_marks_job_failed_on_missing_markup(tmp_path):
    storage = LocalPageStorage(StoragePaths(tmp_path / "data"))
    repo = InMemoryParsingRepository()
    worker = ParsingWorker(repository=repo, storage=storage)
    repo.save_job(
        ParseJobRecord(id="job-2", page_name="Talk:Main", state=ParseJobState.QUEUED, phase=ParseJobPhase.PRECHECK)
    )

    with pytest.raises(FileNotFoundError):
        worker.run_job("job-2")

    job = repo.get_job("job-2")
    assert job.state == ParseJobState.FAILED
    assert "not found" in job.error_message


def test_storage_delete_job(tmp_path):
    storage = LocalPageStorage(StoragePaths(tmp_path))
    storage.save_page_html("job-3", "<p></p>")
    storage.write_parse_output("job-3", {"type": "parse", "comments": [], "sections": []})

    storage.delete_job("job-3")

    assert not storage.paths.job_dir("job-3").exists()
    assert storage.read_parse_output("job-3") is None


def test_parse_message_posts_reply():
    replies = []
    worker = ParsingWorker(post_message=replies.append)

    worker.handle_message({"type": "parse", "html": PAGE, "config": {}, "globals": {"currentUserName": "Bob"}})

    assert len(replies) == 1
    assert replies[0]["type"] == "parse"
    assert [c["own"] for c in replies[0]["comments"]] == [False, True]


def test_fatal_parse_posts_parse_error():
    replies = []
    worker = ParsingWorker(post_message=replies.append)

    worker.handle_message({"type": "parse", "html": 12345})

    assert replies == [{"type": "parseError", "message": replies[0]["message"]}]
    assert replies[0]["message"]


def test_reply_is_a_copy():
    replies = []
    worker = ParsingWorker(post_message=replies.append)
    message = {"type": "parse", "html": PAGE, "config": {"signatureScanLimit": 8}}

    worker.handle_message(message)
    worker.handle_message(message)

    assert message == {"type": "parse", "html": PAGE, "config": {"signatureScanLimit": 8}}
    assert replies[0] == replies[1]
    assert replies[0] is not replies[1]


def test_alarm_posts_wake_up():
    woke = threading.Event()
    replies = []

    def post(message):
        replies.append(message)
        woke.set()

    worker = ParsingWorker(post_message=post)
    worker.handle_message({"type": "setAlarm", "intervalMs": 10})

    assert woke.wait(2)
    assert replies == [{"type": "wakeUp"}]
    assert not worker.alarm_armed


def test_alarm_is_replaced_and_removed():
    replies = []
    worker = ParsingWorker(post_message=replies.append)

    worker.handle_message({"type": "setAlarm", "interval": 60_000})
    assert worker.alarm_armed
    worker.handle_message({"type": "setAlarm", "interval": 60_000})
    assert worker.alarm_armed
    worker.handle_message({"type": "removeAlarm"})

    assert not worker.alarm_armed
    assert replies == []


def test_stale_alarm_callback_does_not_orphan_the_new_timer():
    replies = []
    worker = ParsingWorker(post_message=replies.append)

    worker.set_alarm(60_000)
    stale_generation = worker._alarm_generation
    worker.set_alarm(60_000)
    worker._wake_up(stale_generation)

    assert replies == []
    assert worker.alarm_armed

    current_generation = worker._alarm_generation
    worker.remove_alarm()
    worker._wake_up(current_generation)

    assert not worker.alarm_armed
    assert replies == []


def test_invalid_alarm_interval():
    worker = ParsingWorker()
    with pytest.raises(ValueError):
        worker.set_alarm(-1)


def test_worker_thread_round_trip():
    worker_thread = WorkerThread().start()
    try:
        reply = worker_thread.request_parse(PAGE, globals_={"currentPageName": "Talk:Main"}, timeout=5)
        assert reply["type"] == "parse"
        assert len(reply["comments"]) == 2
        assert reply["comments"][0]["sourcePage"] == "Talk:Main"
        assert not worker_thread.busy
    finally:
        worker_thread.stop(timeout=2)


def test_worker_thread_rejects_concurrent_parse():
    engine = GatedEngine()
    worker_thread = WorkerThread(engine=engine).start()
    try:
        worker_thread.post_message({"type": "parse", "html": PAGE})
        assert worker_thread.busy
        with pytest.raises(WorkerBusyError):
            worker_thread.post_message({"type": "parse", "html": PAGE})

        engine.gate.set()
        reply = worker_thread.outbox.get(timeout=5)
        assert reply["type"] == "parse"
        wait_until(lambda: not worker_thread.busy)
    finally:
        engine.gate.set()
        worker_thread.stop(timeout=2)


def test_timed_out_reply_is_not_handed_to_next_request():
    engine = GatedEngine()
    worker_thread = WorkerThread(engine=engine).start()
    try:
        with pytest.raises(queue.Empty):
            worker_thread.request_parse("<p>first</p>", timeout=0.05)

        engine.gate.set()
        wait_until(lambda: not worker_thread.busy)

        reply = worker_thread.request_parse(PAGE, timeout=5)
        assert reply["type"] == "parse"
        assert len(reply["comments"]) == 2
    finally:
        engine.gate.set()
        worker_thread.stop(timeout=2)


def test_concurrent_posts_admit_a_single_parse():
    engine = GatedEngine()
    worker_thread = WorkerThread(engine=engine).start()
    start = threading.Barrier(4)
    outcomes = []

    def post():
        start.wait()
        try:
            worker_thread.post_message({"type": "parse", "html": PAGE})
            outcomes.append("accepted")
        except WorkerBusyError:
            outcomes.append("busy")

    posters = [threading.Thread(target=post) for _ in range(4)]
    try:
        for poster in posters:
            poster.start()
        for poster in posters:
            poster.join(5)

        assert sorted(outcomes) == ["accepted", "busy", "busy", "busy"]
        engine.gate.set()
        assert worker_thread.outbox.get(timeout=5)["type"] == "parse"
    finally:
        engine.gate.set()
        worker_thread.stop(timeout=2)
