"""In-process job engine: event dispatch, concurrency keys, retries and durable steps.

Functions are registered against an event name. ``send()`` creates one run
per matching function and hands it to a pool of worker threads. A run:

- executes under an optional concurrency key (e.g. the user id); at most
  ``concurrency_limit`` runs with the same key execute at once, the rest wait
  in FIFO order behind them;
- is retried from the top on failure, up to ``max_attempts``, after which the
  function's ``on_failure`` hook is called. A sleeping or backing-off run
  keeps its concurrency slot;
- reaches its side effects through ``ctx.step.run(step_id, fn)``. Step outputs
  are checkpointed in the ``job_steps`` table keyed by run id, so a retried or
  re-delivered run skips every step that already finished;
- can ``ctx.step.sleep(step_id, seconds)``; the run is parked on a timer and
  its worker picks up other runs meanwhile. The wake-up time is checkpointed
  too, so a run resumed after a restart only waits for what is left.

With an ``idempotency_key`` the run id is derived from the event payload
instead of the event id, so re-sending the same logical job resumes it
rather than starting a second copy.
"""
import queue
import threading
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, NamedTuple, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError

from devicehub.database import Database
from devicehub.models.job_step import JobStep
from devicehub.utils.dates import utcnow
from devicehub.utils.logger import logger


class Event(NamedTuple):
    id: str
    name: str
    data: Dict[str, Any]
    ts: datetime


@dataclass
class FunctionConfig:
    id: str
    trigger: str
    handler: Callable[["RunContext"], Any]
    concurrency_key: Optional[Callable[[Event], Any]] = None
    concurrency_limit: int = 1
    idempotency_key: Optional[Callable[[Event], Any]] = None
    max_attempts: int = 3
    on_failure: Optional[Callable[["RunContext", Exception], None]] = None


class _Parked(Exception):
    """Raised by ``step.sleep`` to hand the run back to the engine until it is due."""

    def __init__(self, step_id: str, seconds: float):
        super().__init__(step_id)
        self.step_id = step_id
        self.seconds = seconds


class Run:
    def __init__(self, function: FunctionConfig, event: Event, run_id: str):
        self.function = function
        self.event = event
        self.id = run_id
        self.attempt = 0
        self.holds_slot = False
        self.slot: Optional[Tuple[str, str]] = None
        if function.concurrency_key is not None:
            self.slot = (function.id, str(function.concurrency_key(event)))


class Step:
    """Durable step primitives for one run"""

    def __init__(self, engine: "JobEngine", run: Run):
        self._engine = engine
        self._run = run

    def _load(self, step_id: str) -> Tuple[bool, Any]:
        with self._engine.database.session() as db:
            row = db.query(JobStep).filter(
                JobStep.run_id == self._run.id,
                JobStep.step_id == step_id,
            ).first()
            if row is None:
                return False, None
            return True, (row.output or {}).get("value")

    def run(self, step_id: str, fn: Callable, *args, **kwargs) -> Any:
        """Execute ``fn`` once per run and return its (JSON serialisable) result.

        If the step already completed in an earlier attempt its stored result
        is returned and ``fn`` is not called.
        """
        done, value = self._load(step_id)
        if done:
            logger.debug(f"Step {step_id} already completed, using checkpoint", extra={"run_id": self._run.id})
            return value

        value = fn(*args, **kwargs)

        with self._engine.database.session() as db:
            db.add(JobStep(run_id=self._run.id, step_id=step_id, output={"value": value}))
            try:
                db.commit()
            except IntegrityError:
                # Another delivery of the same run checkpointed first; its result wins
                db.rollback()
                _, value = self._load(step_id)
        return value

    def sleep(self, step_id: str, seconds: float) -> None:
        """Pause the run for ``seconds`` measured from the first time this step was reached.

        The handler is unwound and re-run from the top once the wake-up time
        has passed; completed steps replay from their checkpoints.
        """
        wake_at = datetime.fromisoformat(
            self.run(f"sleep:{step_id}", lambda: (utcnow() + timedelta(seconds=seconds)).isoformat())
        )
        remaining = (wake_at - utcnow()).total_seconds()
        if remaining <= 0:
            return
        raise _Parked(step_id, remaining)


class RunContext:
    """What a function handler receives"""

    def __init__(self, engine: "JobEngine", run: Run):
        self.event = run.event
        self.run_id = run.id
        self.attempt = run.attempt
        self.step = Step(engine, run)
        self.logger = logger


class JobEngine:
    """Dispatches events to registered functions on a pool of worker threads"""

    def __init__(self, database: Database, workers: int = 4, retry_backoff: float = 5.0):
        self.database = database
        self.workers = workers
        self.retry_backoff = retry_backoff
        self._functions: Dict[str, FunctionConfig] = {}
        self._schedules: List[Tuple[float, str]] = []
        self._queue: "queue.Queue[Optional[Run]]" = queue.Queue()
        self._lock = threading.Condition()
        self._running: Dict[Tuple[str, str], int] = defaultdict(int)
        self._waiting: Dict[Tuple[str, str], Deque[Run]] = defaultdict(deque)
        self._active: Set[str] = set()
        self._threads: List[threading.Thread] = []
        self._parked: Dict[str, Tuple[threading.Timer, Run]] = {}
        self._stopping = threading.Event()
        self._started = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def function(
        self,
        id: str,
        trigger: str,
        concurrency_key: Optional[Callable[[Event], Any]] = None,
        concurrency_limit: int = 1,
        idempotency_key: Optional[Callable[[Event], Any]] = None,
        max_attempts: int = 3,
        on_failure: Optional[Callable[[RunContext, Exception], None]] = None,
    ) -> Callable:
        """Register the decorated handler for events named ``trigger``.

        Usage::

            @engine.function("large-export-job", trigger="export/large",
                             concurrency_key=lambda event: event.data["userId"])
            def large_export_job(ctx):
                ...
        """
        def decorator(handler: Callable[[RunContext], Any]) -> Callable[[RunContext], Any]:
            self._functions[id] = FunctionConfig(
                id=id,
                trigger=trigger,
                handler=handler,
                concurrency_key=concurrency_key,
                concurrency_limit=concurrency_limit,
                idempotency_key=idempotency_key,
                max_attempts=max(1, max_attempts),
                on_failure=on_failure,
            )
            return handler
        return decorator

    def every(self, interval_seconds: float, event_name: str) -> None:
        """Send ``event_name`` every ``interval_seconds`` while the engine runs."""
        self._schedules.append((interval_seconds, event_name))
        if self._started:
            self._start_schedule(interval_seconds, event_name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._stopping.clear()
        for i in range(self.workers):
            thread = threading.Thread(target=self._worker, name=f"job-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        for interval, event_name in self._schedules:
            self._start_schedule(interval, event_name)
        logger.info(
            f"Job engine started with {self.workers} workers",
            extra={"action": "jobs_start"},
        )

    def close(self, timeout: float = 5.0) -> None:
        if not self._started:
            return
        self._stopping.set()
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

        # Parked and waiting runs resume from their checkpoints when re-sent
        with self._lock:
            parked = list(self._parked.values())
            self._parked.clear()
            for timer, run in parked:
                timer.cancel()
                self._active.discard(run.id)
            for waiting in self._waiting.values():
                for run in waiting:
                    self._active.discard(run.id)
            self._waiting.clear()
            self._running.clear()
            self._lock.notify_all()
        self._started = False
        logger.info("Job engine stopped", extra={"action": "jobs_stop"})

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is queued, waiting, running or backing off."""
        with self._lock:
            return self._lock.wait_for(lambda: not self._active, timeout)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send(self, name: str, data: Dict[str, Any]) -> str:
        """Deliver an event to every function triggered by ``name``; returns the event id."""
        event = Event(id=uuid.uuid4().hex, name=name, data=dict(data), ts=utcnow())

        for function in self._functions.values():
            if function.trigger != name:
                continue

            if function.idempotency_key is not None:
                run_id = f"{function.id}:{function.idempotency_key(event)}"
            else:
                run_id = f"{function.id}:{event.id}"

            with self._lock:
                if run_id in self._active:
                    logger.info(
                        f"Run {run_id} already in flight, event {event.id} ignored",
                        extra={"run_id": run_id, "function": function.id},
                    )
                    continue
                self._active.add(run_id)
            self._queue.put(Run(function, event, run_id))

        logger.debug(f"Event sent: {name}", extra={"action": "send_event"})
        return event.id

    def _start_schedule(self, interval: float, event_name: str) -> None:
        def _loop():
            while not self._stopping.wait(interval):
                self.send(event_name, {})

        threading.Thread(target=_loop, name=f"schedule-{event_name}", daemon=True).start()

    def _worker(self) -> None:
        while True:
            run = self._queue.get()
            if run is None:
                break
            if not run.holds_slot and not self._acquire(run):
                continue
            run.holds_slot = True
            parked = False
            try:
                parked = self._execute(run)
            finally:
                if not parked:
                    self._release(run)

    def _acquire(self, run: Run) -> bool:
        """Take a concurrency slot for ``run`` or queue it behind the runs holding its key."""
        if run.slot is None:
            return True
        with self._lock:
            if self._running[run.slot] >= run.function.concurrency_limit:
                self._waiting[run.slot].append(run)
                return False
            self._running[run.slot] += 1
            return True

    def _release(self, run: Run) -> None:
        run.holds_slot = False
        if run.slot is None:
            return
        with self._lock:
            self._running[run.slot] -= 1
            if self._running[run.slot] <= 0:
                del self._running[run.slot]
            waiting = self._waiting.get(run.slot)
            if waiting:
                self._queue.put(waiting.popleft())
            if waiting is not None and not waiting:
                del self._waiting[run.slot]

    def _finish(self, run: Run) -> None:
        with self._lock:
            self._active.discard(run.id)
            self._lock.notify_all()

    def _execute(self, run: Run) -> bool:
        """Run one attempt of ``run``; True when the run was parked and keeps its slot."""
        run.attempt += 1
        ctx = RunContext(self, run)
        extra = {"run_id": run.id, "function": run.function.id}

        try:
            run.function.handler(ctx)
        except _Parked as sleep:
            # A sleep is not a failed attempt
            run.attempt -= 1
            if self._stopping.is_set():
                logger.info("Run interrupted by shutdown", extra=extra)
                self._finish(run)
                return False
            logger.info(f"Sleeping {sleep.seconds:.0f}s at step {sleep.step_id}", extra=extra)
            self._park(run, sleep.seconds)
            return True
        except Exception as exc:
            if run.attempt < run.function.max_attempts and not self._stopping.is_set():
                logger.warning(
                    f"Run attempt {run.attempt}/{run.function.max_attempts} failed: {exc}",
                    extra=extra,
                    exc_info=True,
                )
                self._park(run, self.retry_backoff * (2 ** (run.attempt - 1)))
                return True

            logger.error(
                f"Run failed after {run.attempt} attempts: {exc}",
                extra=extra,
                exc_info=True,
            )
            self._fail(ctx, run, exc)
            self._finish(run)
            return False

        logger.info(f"Run completed on attempt {run.attempt}", extra=extra)
        self._finish(run)
        return False

    def _park(self, run: Run, delay: float) -> None:
        """Re-queue ``run`` after ``delay`` seconds without giving up its concurrency slot."""
        if delay <= 0:
            self._queue.put(run)
            return
        timer = threading.Timer(delay, self._wake, args=(run.id,))
        timer.daemon = True
        with self._lock:
            self._parked[run.id] = (timer, run)
        timer.start()

    def _wake(self, run_id: str) -> None:
        with self._lock:
            entry = self._parked.pop(run_id, None)
        if entry is not None:
            self._queue.put(entry[1])

    def _fail(self, ctx: RunContext, run: Run, exc: Exception) -> None:
        if run.function.on_failure is None:
            return
        try:
            run.function.on_failure(ctx, exc)
        except Exception:
            logger.error(
                "on_failure hook raised",
                extra={"run_id": run.id, "function": run.function.id},
                exc_info=True,
            )
