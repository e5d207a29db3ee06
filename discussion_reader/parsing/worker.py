from __future__ import annotations

import logging
import queue
import threading
from copy import deepcopy
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import ForeignComponentPredicate
from .engine import DiscussionParsingEngine, ParseRequest, ParsingEngine
from .errors import StructuralError, WorkerBusyError
from .models import ParseJobPhase, ParseJobState, ParseResult
from .repository import ParsingRepository
from .storage import LocalPageStorage

logger = logging.getLogger(__name__)

PARSE = "parse"
PARSE_ERROR = "parseError"
SET_ALARM = "setAlarm"
REMOVE_ALARM = "removeAlarm"
WAKE_UP = "wakeUp"


class ParsingWorker:
    """
    Owns the parse lifecycle and the message boundary with the host.

    Every parse starts from a fresh session; the only state kept between
    messages is the wake-up alarm. Messages are deep-copied on the way in and
    on the way out. Persisted jobs go through `run_job`, which drives a job
    record through precheck -> parse -> persist using the repository for job
    state and the storage adapter for page markup and parse output.
    """

    def __init__(
        self,
        engine: Optional[ParsingEngine] = None,
        post_message: Optional[Callable[[Dict[str, Any]], None]] = None,
        repository: Optional[ParsingRepository] = None,
        storage: Optional[LocalPageStorage] = None,
        foreign_component_checker: Optional[ForeignComponentPredicate] = None,
        persist_engine_output: bool = True,
    ):
        self.engine = engine or DiscussionParsingEngine(foreign_component_checker=foreign_component_checker)
        self.post_message = post_message
        self.repo = repository
        self.storage = storage
        self.persist_engine_output = persist_engine_output
        self._alarm: Optional[threading.Timer] = None
        self._alarm_generation = 0
        self._alarm_lock = threading.Lock()

    # region message protocol
    def handle_message(self, message: Mapping[str, Any]) -> None:
        message = deepcopy(dict(message))
        kind = message.get("type")
        if kind == PARSE:
            self._post(self.parse(message))
        elif kind == SET_ALARM:
            interval = message.get("intervalMs", message.get("interval"))
            self.set_alarm(interval)
        elif kind == REMOVE_ALARM:
            self.remove_alarm()
        else:
            logger.warning("Ignoring message of unknown type %r", kind)

    def parse(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Run one parse for a host message and return the reply message. Fatal
        errors become a `parseError` reply rather than an exception.
        """
        try:
            request = ParseRequest.from_message(message)
            result = self.engine.parse(request)
        except StructuralError as exc:
            logger.error("Parse failed: %s", exc, exc_info=True)
            return {"type": PARSE_ERROR, "message": str(exc)}
        except Exception as exc:  # noqa: BLE001
            logger.exception("Parse failed unexpectedly")
            return {"type": PARSE_ERROR, "message": str(exc)}
        return result.to_message()

    def set_alarm(self, interval_ms) -> None:
        if interval_ms is None or int(interval_ms) < 0:
            raise ValueError(f"Invalid alarm interval: {interval_ms!r}")
        with self._alarm_lock:
            self._cancel_alarm()
            self._alarm = threading.Timer(int(interval_ms) / 1000, self._wake_up, args=(self._alarm_generation,))
            self._alarm.daemon = True
            self._alarm.start()

    def remove_alarm(self) -> None:
        with self._alarm_lock:
            self._cancel_alarm()

    @property
    def alarm_armed(self) -> bool:
        alarm = self._alarm
        return bool(alarm and alarm.is_alive())

    def _cancel_alarm(self) -> None:
        # Invalidates the callback of a timer that already fired.
        self._alarm_generation += 1
        if self._alarm is not None:
            self._alarm.cancel()
            self._alarm = None

    def _wake_up(self, generation: int) -> None:
        with self._alarm_lock:
            if generation != self._alarm_generation:
                return
            self._alarm = None
            self._alarm_generation += 1
        self._post({"type": WAKE_UP})

    def _post(self, message: Dict[str, Any]) -> None:
        if self.post_message is None:
            logger.debug("No host attached, dropping %s message", message.get("type"))
            return
        self.post_message(deepcopy(message))

    # endregion

    # region persisted jobs
    def run_job(self, job_id: str) -> ParseResult:
        if self.repo is None or self.storage is None:
            raise ValueError("run_job needs a repository and a storage adapter")
        job = self.repo.get_job(job_id)
        if not job:
            raise ValueError(f"Parse job {job_id} not found")

        try:
            self.repo.update_job_state_phase(job_id, state=ParseJobState.RUNNING, phase=ParseJobPhase.PRECHECK)
            html = self.storage.read_page_html(job_id)
            if not html.strip():
                raise ValueError(f"Page markup for job {job_id} is empty")

            self.repo.update_job_state_phase(job_id, phase=ParseJobPhase.PARSE)
            request = ParseRequest.from_message(
                {"html": html, "config": job.config_json, "globals": job.globals_json}
            )
            result = self.engine.parse(request)

            self.repo.update_job_state_phase(job_id, phase=ParseJobPhase.PERSIST)
            if self.persist_engine_output:
                self.storage.write_parse_output(job_id, result.to_message())
            self.repo.update_job_state_phase(
                job_id,
                state=ParseJobState.COMPLETED,
                comment_count=len(result.comments),
                section_count=len(result.sections),
            )
            return result
        except Exception as exc:  # noqa: BLE001
            self.repo.update_job_state_phase(job_id, state=ParseJobState.FAILED, error_message=str(exc))
            raise

    # endregion


class WorkerThread:
    """
    Runs a `ParsingWorker` on a dedicated thread. The host talks to it only
    through `post_message` and the `outbox` queue.

    Parsing is not re-entrant: posting a parse while another one is in flight
    raises `WorkerBusyError`. The in-flight flag is cleared before the reply is
    queued, so a host may post the next parse as soon as it has the reply.
    """

    _STOP = object()

    def __init__(
        self,
        engine: Optional[ParsingEngine] = None,
        foreign_component_checker: Optional[ForeignComponentPredicate] = None,
        name: str = "discussion-parser",
    ):
        self.outbox: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self._in_flight = threading.Event()
        self._request_lock = threading.Lock()
        self._post_lock = threading.Lock()
        self._abandoned = 0
        self.worker = ParsingWorker(
            engine=engine,
            post_message=self._on_worker_message,
            foreign_component_checker=foreign_component_checker,
        )
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def start(self) -> "WorkerThread":
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self.worker.remove_alarm()
        if self._thread.is_alive():
            self._inbox.put(self._STOP)
            self._thread.join(timeout)

    @property
    def busy(self) -> bool:
        return self._in_flight.is_set()

    def post_message(self, message: Mapping[str, Any]) -> None:
        if message.get("type") == PARSE:
            with self._post_lock:
                if self._in_flight.is_set():
                    raise WorkerBusyError("A parse is already in flight")
                self._in_flight.set()
        self._inbox.put(deepcopy(dict(message)))

    def request_parse(
        self,
        html: str,
        config: Optional[Mapping[str, Any]] = None,
        globals_: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Post a parse and block until its reply arrives. Other messages received
        meanwhile (wake-ups) are put back on the outbox.
        """
        with self._request_lock:
            self.post_message({"type": PARSE, "html": html, "config": config or {}, "globals": globals_ or {}})
            others: List[Dict[str, Any]] = []
            try:
                while True:
                    try:
                        message = self.outbox.get(timeout=timeout)
                    except queue.Empty:
                        self._abandoned += 1
                        raise
                    if message.get("type") in (PARSE, PARSE_ERROR):
                        if self._abandoned:
                            # Reply to a request that already timed out.
                            self._abandoned -= 1
                            continue
                        return message
                    others.append(message)
            finally:
                for message in others:
                    self.outbox.put(message)

    def _on_worker_message(self, message: Dict[str, Any]) -> None:
        if message.get("type") in (PARSE, PARSE_ERROR):
            self._in_flight.clear()
        self.outbox.put(message)

    def _loop(self) -> None:
        while True:
            message = self._inbox.get()
            if message is self._STOP:
                break
            try:
                self.worker.handle_message(message)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Worker failed to handle a %s message", message.get("type"))
                if message.get("type") == PARSE:
                    self._on_worker_message({"type": PARSE_ERROR, "message": str(exc)})
