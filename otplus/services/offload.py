from __future__ import annotations

import asyncio
import logging
import multiprocessing
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from multiprocessing.connection import Connection
from typing import Any

from otplus.domain import CalculationSnapshot, DateRange, TimeEntry, UserAnalysisResult
from otplus.errors import OffloadError
from otplus.services.analysis import calculate
from otplus.services.wire import decode_request, decode_results, encode_request, encode_results

logger = logging.getLogger("otplus.offload")

MODE_SYNC = "sync"
MODE_WORKER = "worker"

MESSAGE_READY = "ready"
MESSAGE_CALCULATE = "calculate"
MESSAGE_RESULT = "result"
MESSAGE_ERROR = "error"
MESSAGE_SHUTDOWN = "shutdown"

_JOIN_TIMEOUT_SECONDS = 1.0


def worker_main(conn: Connection) -> None:
    """Run inside the worker process: announce readiness, then serve requests."""
    conn.send({"type": MESSAGE_READY})
    while True:
        try:
            message = conn.recv()
        except EOFError:
            break

        kind = message.get("type")
        request_id = message.get("id")
        if kind == MESSAGE_SHUTDOWN:
            break
        if kind != MESSAGE_CALCULATE:
            conn.send({"type": MESSAGE_ERROR, "id": request_id, "message": f"Unknown message type: {kind}"})
            continue

        try:
            entries, snapshot, date_range = decode_request(message["payload"])
            results = calculate(entries, snapshot, date_range)
        except Exception as exc:
            conn.send({"type": MESSAGE_ERROR, "id": request_id, "message": str(exc) or type(exc).__name__})
            continue
        conn.send({"type": MESSAGE_RESULT, "id": request_id, "payload": encode_results(results)})

    conn.close()


class Calculator(ABC):
    mode: str

    @abstractmethod
    async def calculate(
        self,
        entries: list[TimeEntry | None],
        snapshot: CalculationSnapshot,
        date_range: DateRange | None,
    ) -> list[UserAnalysisResult]:
        raise NotImplementedError

    def start(self) -> bool:
        return True

    def close(self) -> None:
        return None


class SyncCalculator(Calculator):
    mode = MODE_SYNC

    async def calculate(
        self,
        entries: list[TimeEntry | None],
        snapshot: CalculationSnapshot,
        date_range: DateRange | None,
    ) -> list[UserAnalysisResult]:
        return await asyncio.to_thread(calculate, entries, snapshot, date_range)


class ProcessCalculator(Calculator):
    """Runs the engine in a dedicated worker process connected by a pipe."""

    mode = MODE_WORKER

    def __init__(self, *, init_timeout_seconds: float, mp_context: Any | None = None) -> None:
        self.init_timeout_seconds = init_timeout_seconds
        self._context = mp_context if mp_context is not None else multiprocessing.get_context("spawn")
        self._process: Any | None = None
        self._conn: Any | None = None
        self._lock = asyncio.Lock()
        self._next_request_id = 0

    @property
    def is_running(self) -> bool:
        return self._conn is not None

    def start(self) -> bool:
        parent_conn, child_conn = self._context.Pipe()
        process = self._context.Process(
            target=worker_main,
            args=(child_conn,),
            name="otplus-calc-worker",
            daemon=True,
        )
        process.start()
        child_conn.close()

        if not parent_conn.poll(self.init_timeout_seconds):
            logger.warning(
                "offload_init_timeout",
                extra={"timeout_seconds": self.init_timeout_seconds},
            )
            self._stop(parent_conn, process)
            return False

        message = parent_conn.recv()
        if message.get("type") != MESSAGE_READY:
            logger.warning("offload_init_unexpected_message", extra={"message_type": message.get("type")})
            self._stop(parent_conn, process)
            return False

        self._conn = parent_conn
        self._process = process
        return True

    def _round_trip(self, message: dict[str, Any]) -> dict[str, Any]:
        self._conn.send(message)
        return self._conn.recv()

    async def calculate(
        self,
        entries: list[TimeEntry | None],
        snapshot: CalculationSnapshot,
        date_range: DateRange | None,
    ) -> list[UserAnalysisResult]:
        if self._conn is None:
            raise OffloadError("Calculation worker is not running")

        async with self._lock:
            self._next_request_id += 1
            request_id = self._next_request_id
            message = {
                "type": MESSAGE_CALCULATE,
                "id": request_id,
                "payload": encode_request(entries, snapshot, date_range),
            }
            reply = await asyncio.to_thread(self._round_trip, message)

        if reply.get("type") == MESSAGE_ERROR:
            raise OffloadError(reply.get("message") or "Worker calculation failed")
        if reply.get("type") != MESSAGE_RESULT or reply.get("id") != request_id:
            raise OffloadError("Unexpected reply from calculation worker")
        return decode_results(reply["payload"])

    def close(self) -> None:
        conn, process = self._conn, self._process
        self._conn = None
        self._process = None
        if conn is not None:
            try:
                conn.send({"type": MESSAGE_SHUTDOWN})
            except (BrokenPipeError, OSError):
                logger.debug("offload_shutdown_pipe_closed")
        self._stop(conn, process)

    @staticmethod
    def _stop(conn: Any | None, process: Any | None) -> None:
        if conn is not None:
            conn.close()
        if process is None:
            return
        process.join(timeout=_JOIN_TIMEOUT_SECONDS)
        if process.is_alive():
            process.terminate()
            process.join(timeout=_JOIN_TIMEOUT_SECONDS)


class OffloadAdapter:
    """Chooses between in-process and worker-process calculation.

    The worker is only used once it has reported ready within the init
    timeout; every other situation degrades to the synchronous path.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        init_timeout_seconds: float,
        min_entries: int = 0,
        worker_factory: Callable[[float], Calculator] | None = None,
    ) -> None:
        self.enabled = enabled
        self.init_timeout_seconds = init_timeout_seconds
        self.min_entries = max(0, min_entries)
        self._worker_factory = worker_factory or (
            lambda timeout: ProcessCalculator(init_timeout_seconds=timeout)
        )
        self._sync = SyncCalculator()
        self._worker: Calculator | None = None
        self._started = False
        self._terminated = False

    @classmethod
    def from_settings(cls, settings: Any) -> "OffloadAdapter":
        return cls(
            enabled=settings.offload_enabled,
            init_timeout_seconds=settings.offload_init_timeout_seconds,
            min_entries=settings.offload_min_entries,
        )

    @property
    def mode(self) -> str:
        return MODE_WORKER if self._worker is not None else MODE_SYNC

    def start(self) -> str:
        if self._started or self._terminated:
            return self.mode
        self._started = True

        if not self.enabled:
            logger.info("offload_disabled")
            return self.mode

        worker = self._worker_factory(self.init_timeout_seconds)
        try:
            ready = worker.start()
        except (OSError, RuntimeError, ValueError) as exc:
            logger.warning("offload_start_failed", extra={"error": str(exc)})
            ready = False

        if ready:
            self._worker = worker
        else:
            worker.close()
        logger.info("offload_started", extra={"mode": self.mode})
        return self.mode

    def _should_offload(self, entries: list[TimeEntry | None], date_range: DateRange | None) -> bool:
        if self._worker is None:
            return False
        if not entries or date_range is None:
            return False
        return len(entries) >= self.min_entries

    async def calculate(
        self,
        entries: Iterable[TimeEntry | None] | None,
        snapshot: CalculationSnapshot,
        date_range: DateRange | None,
    ) -> list[UserAnalysisResult]:
        entry_list = list(entries or ())
        worker = self._worker
        if worker is None or not self._should_offload(entry_list, date_range):
            return await self._sync.calculate(entry_list, snapshot, date_range)

        try:
            return await worker.calculate(entry_list, snapshot, date_range)
        except (EOFError, OSError) as exc:
            logger.warning("offload_worker_lost", extra={"error": str(exc)})
            self._drop_worker()
            return await self._sync.calculate(entry_list, snapshot, date_range)

    def terminate(self) -> None:
        self._terminated = True
        self._drop_worker()

    def _drop_worker(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.close()
