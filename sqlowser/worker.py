from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import queue
import threading
import time
from typing import Callable

from sqlowser.errors import QueryTimeoutError, SqlowserError, WriteInProgressError
from sqlowser.sqlite_driver import ConnectionGateway


logger = logging.getLogger(__name__)

SLOTS = ("tables", "browse", "query", "export", "write")
WRITE_SLOT = "write"


@dataclass(frozen=True)
class WorkerResult:
    slot: str
    request_id: int
    value: object = None
    error: SqlowserError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RequestChannel:
    """Tags requests with increasing ids and filters what comes back.

    Each slot has at most one live request. Results for anything else are
    discarded when drained, whatever order they arrive in.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._clock = clock
        self._next_id = 0
        self._live: dict[str, tuple[int, float]] = {}
        self._results: queue.Queue[WorkerResult] = queue.Queue()
        self._lock = threading.Lock()

    def open(self, slot: str) -> int:
        if slot not in SLOTS:
            raise ValueError(f"Unknown request slot: {slot}")
        with self._lock:
            self._next_id += 1
            self._live[slot] = (self._next_id, self._clock())
            return self._next_id

    def live_id(self, slot: str) -> int | None:
        with self._lock:
            live = self._live.get(slot)
        return live[0] if live else None

    def is_live(self, slot: str, request_id: int) -> bool:
        return self.live_id(slot) == request_id

    def cancel(self, slot: str) -> None:
        with self._lock:
            self._live.pop(slot, None)

    def post(self, result: WorkerResult) -> None:
        self._results.put(result)

    def drain(self) -> list[WorkerResult]:
        delivered: list[WorkerResult] = []
        while True:
            try:
                result = self._results.get_nowait()
            except queue.Empty:
                break
            with self._lock:
                live = self._live.get(result.slot)
                current = live is not None and live[0] == result.request_id
                if current:
                    del self._live[result.slot]
            if current:
                delivered.append(result)
            else:
                logger.debug(
                    "Discarding stale result %s for slot %s",
                    result.request_id,
                    result.slot,
                )
        delivered.extend(self._expire())
        return delivered

    def _expire(self) -> list[WorkerResult]:
        now = self._clock()
        expired: list[WorkerResult] = []
        with self._lock:
            for slot, (request_id, started) in list(self._live.items()):
                if now - started <= self._timeout_seconds:
                    continue
                del self._live[slot]
                expired.append(
                    WorkerResult(
                        slot=slot,
                        request_id=request_id,
                        error=QueryTimeoutError(
                            f"No response after {self._timeout_seconds:g}s; request cancelled"
                        ),
                    )
                )
        for result in expired:
            logger.warning("Request %s in slot %s timed out", result.request_id, result.slot)
        return expired

    def pending(self, slot: str) -> bool:
        return self.live_id(slot) is not None


class BackgroundWorker:
    def __init__(
        self,
        gateway: ConnectionGateway,
        executor: Executor | None = None,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="sqlowser-worker",
        )
        self.channel = RequestChannel(timeout_seconds=timeout_seconds, clock=clock)
        self._state_lock = threading.Lock()
        self._running: tuple[str, int] | None = None
        self._write_busy = False

    @property
    def gateway(self) -> ConnectionGateway:
        return self._gateway

    @property
    def write_in_progress(self) -> bool:
        with self._state_lock:
            return self._write_busy

    def submit(self, slot: str, fn: Callable[..., object], *args: object) -> int:
        if slot == WRITE_SLOT:
            raise ValueError("Writes go through submit_write")
        previous = self.channel.live_id(slot)
        request_id = self.channel.open(slot)
        if previous is not None:
            self._interrupt_if_running(slot, previous)
        logger.debug("Submitting request %s to slot %s", request_id, slot)
        self._executor.submit(self._run, slot, request_id, fn, args)
        return request_id

    def submit_write(self, fn: Callable[..., object], *args: object) -> int:
        with self._state_lock:
            if self._write_busy:
                raise WriteInProgressError("Another write is still running; wait for it to finish")
            self._write_busy = True
        request_id = self.channel.open(WRITE_SLOT)
        logger.debug("Submitting write %s", request_id)
        try:
            future = self._executor.submit(self._run, WRITE_SLOT, request_id, fn, args)
        except RuntimeError:
            self._release_write(None)
            raise
        future.add_done_callback(self._release_write)
        return request_id

    def _release_write(self, _future: Future | None) -> None:
        with self._state_lock:
            self._write_busy = False

    def _interrupt_if_running(self, slot: str, request_id: int) -> None:
        with self._state_lock:
            if self._running == (slot, request_id):
                logger.debug("Cancelling superseded request %s", request_id)
                self._gateway.cancel_in_flight()

    def _run(
        self,
        slot: str,
        request_id: int,
        fn: Callable[..., object],
        args: tuple[object, ...],
    ) -> None:
        if not self.channel.is_live(slot, request_id):
            logger.debug("Skipping superseded request %s", request_id)
            return
        with self._state_lock:
            self._running = (slot, request_id)
        try:
            result = WorkerResult(slot=slot, request_id=request_id, value=fn(*args))
        except SqlowserError as error:
            if slot == WRITE_SLOT:
                logger.error("Write %s failed: %s", request_id, error)
            result = WorkerResult(slot=slot, request_id=request_id, error=error)
        except Exception as error:
            logger.exception("Request %s in slot %s crashed", request_id, slot)
            result = WorkerResult(
                slot=slot,
                request_id=request_id,
                error=SqlowserError(f"Unexpected error: {error}"),
            )
        finally:
            with self._state_lock:
                self._running = None
        self.channel.post(result)

    def cancel(self, slot: str) -> None:
        live = self.channel.live_id(slot)
        self.channel.cancel(slot)
        if live is not None:
            self._interrupt_if_running(slot, live)

    def drain(self) -> list[WorkerResult]:
        results = self.channel.drain()
        for result in results:
            if isinstance(result.error, QueryTimeoutError):
                self._interrupt_if_running(result.slot, result.request_id)
        return results

    def shutdown(self) -> None:
        self._gateway.cancel_in_flight()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
