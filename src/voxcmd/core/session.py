"""Per-session dispatch pipelines.

Each session gets one worker task draining a FIFO queue, so utterances of
a session are dispatched strictly in arrival order while independent
sessions run concurrently.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from voxcmd.constants import DEFAULT_SESSION_QUEUE_MAXSIZE, DEFAULT_SWEEP_INTERVAL
from voxcmd.core.context import ContextStore
from voxcmd.core.dispatcher import Dispatcher
from voxcmd.core.env import LOGGER
from voxcmd.core.errors import ContextStoreUnavailable, SessionClosed
from voxcmd.core.types import DispatchResult, Utterance


@dataclass(slots=True)
class _Job:
    utterance: Utterance
    future: asyncio.Future[DispatchResult]


@dataclass(slots=True)
class _Worker:
    session_id: str
    queue: asyncio.Queue[_Job]
    task: asyncio.Task[None] | None = None
    current: _Job | None = None
    last_active: float = field(default_factory=time.monotonic)


class SessionManager:
    """Serializes dispatches per session and owns session teardown.

    Args:
        dispatcher: Dispatcher shared by all sessions.
        store: Context store the dispatcher writes to.
        on_result: Called with every DispatchResult, in order.
        on_session_failed: Called with ``(session_id, error)`` when a
            session is torn down because its context store failed.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        store: ContextStore,
        *,
        on_result: Callable[[DispatchResult], Any] | None = None,
        on_session_failed: Callable[[str, BaseException], Any] | None = None,
        queue_maxsize: int = DEFAULT_SESSION_QUEUE_MAXSIZE,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._dispatcher = dispatcher
        self._store = store
        self._on_result = on_result
        self._on_session_failed = on_session_failed
        self._queue_maxsize = queue_maxsize
        self._sweep_interval = sweep_interval
        self._last_sweep = time.monotonic()
        self._workers: dict[str, _Worker] = {}

    def active_sessions(self) -> tuple[str, ...]:
        return tuple(self._workers)

    async def submit(self, utterance: Utterance) -> asyncio.Future[DispatchResult]:
        """Queue *utterance* behind its session's in-flight work.

        Returns a future resolved with the DispatchResult, or failed with
        SessionClosed / ContextStoreUnavailable on teardown.
        """
        self._sweep()
        worker = self._worker(utterance.session_id)
        future: asyncio.Future[DispatchResult] = (
            asyncio.get_running_loop().create_future()
        )
        await worker.queue.put(_Job(utterance, future))
        worker.last_active = time.monotonic()
        return future

    async def dispatch(self, utterance: Utterance) -> DispatchResult:
        """Submit and wait for the result."""
        future = await self.submit(utterance)
        return await future

    def _worker(self, session_id: str) -> _Worker:
        worker = self._workers.get(session_id)
        if worker is None:
            worker = _Worker(session_id, asyncio.Queue(maxsize=self._queue_maxsize))
            worker.task = asyncio.create_task(
                self._run(worker), name=f"voxcmd-session-{session_id}"
            )
            self._workers[session_id] = worker
        return worker

    async def _run(self, worker: _Worker) -> None:
        while True:
            job = await worker.queue.get()
            try:
                if job.future.done():
                    continue
                worker.current = job
                try:
                    result = await self._dispatcher.dispatch(job.utterance)
                except ContextStoreUnavailable as exc:
                    worker.current = None
                    job.future.set_exception(exc)
                    await self._fail_session(worker, exc)
                    return
                except Exception as exc:
                    worker.current = None
                    LOGGER.exception(
                        "Dispatch crashed in session %s", worker.session_id
                    )
                    job.future.set_exception(exc)
                    continue
                worker.current = None
                if not job.future.done():
                    job.future.set_result(result)
                self._notify_result(result)
            finally:
                worker.queue.task_done()

    def _notify_result(self, result: DispatchResult) -> None:
        if self._on_result is None:
            return
        try:
            self._on_result(result)
        except Exception:
            LOGGER.warning("on_result callback failed", exc_info=True)

    async def _fail_session(self, worker: _Worker, exc: ContextStoreUnavailable) -> None:
        LOGGER.error("Session %s torn down: %s", worker.session_id, exc.message)
        if self._workers.get(worker.session_id) is worker:
            del self._workers[worker.session_id]
        self._fail_queued(worker)
        await self._store.clear(worker.session_id)
        if self._on_session_failed is not None:
            try:
                self._on_session_failed(worker.session_id, exc)
            except Exception:
                LOGGER.warning("on_session_failed callback failed", exc_info=True)

    def _fail_queued(self, worker: _Worker) -> None:
        while not worker.queue.empty():
            job = worker.queue.get_nowait()
            if not job.future.done():
                job.future.set_exception(SessionClosed(worker.session_id))
            worker.queue.task_done()

    async def close_session(self, session_id: str) -> None:
        """Cancel in-flight work, fail queued submissions, clear context.

        The in-flight submission's future is cancelled; queued ones fail
        with SessionClosed. Nothing is appended for cancelled work.
        """
        worker = self._workers.pop(session_id, None)
        if worker is not None:
            if worker.task is not None:
                worker.task.cancel()
                await asyncio.gather(worker.task, return_exceptions=True)
            if worker.current is not None:
                worker.current.future.cancel()
                worker.current = None
            self._fail_queued(worker)
            LOGGER.info("Closed session %s", session_id)
        await self._store.clear(session_id)

    async def shutdown(self) -> None:
        """Close every session."""
        for session_id in list(self._workers):
            await self.close_session(session_id)

    def _sweep(self) -> None:
        """Stop workers of sessions the store has evicted as idle."""
        now = time.monotonic()
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        live = set(self._store.sessions())
        for session_id, worker in list(self._workers.items()):
            if (
                session_id not in live
                and worker.current is None
                and worker.queue.empty()
                and now - worker.last_active >= self._sweep_interval
            ):
                del self._workers[session_id]
                if worker.task is not None:
                    worker.task.cancel()
                LOGGER.debug("Stopped idle session worker %s", session_id)
