"""
Streaming task registry and shared application state.

Long-lived work (log tails, metrics streams, shell sessions) runs as one
asyncio task per stream. The registry keeps a StreamHandle for every running
stream, grouped by category, so a caller can stop a whole category without
tracking individual handles.

Stopping is cooperative: ``stop`` only signals the handles. Each worker checks
its handle between suspension points and returns once it sees the signal; a
worker blocked in a network read finishes that read first. ``shutdown`` also
runs the closers a worker registered, which release such reads.

Key Components:
- StreamCategory: The independently stoppable classes of streams
- StreamState: Lifecycle of a stream
- StreamHandle: Cancellation signal, shell inbox and state of one stream
- TaskRegistry: Category -> live handles, with start/stop/send
- AppState: Current cluster context plus the registry, behind one lock

Example:
    ```python
    state = AppState(ClusterContext(name="staging"))
    handle = state.registry.start(StreamCategory.METRICS, worker, label="web-1")
    ...
    state.registry.stop_all_metrics()
    ```
"""

import asyncio
import itertools
import logging
import queue
import threading
from dataclasses import replace
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from .config import log_exception
from .models import ClusterContext

log = logging.getLogger('kubedeck')

_handle_ids = itertools.count(1)


class StreamCategory(str, Enum):
    LOGS = "logs"
    SHELL = "shell"
    METRICS = "metrics"


class StreamState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINATED = "terminated"


_OUTCOMES = (StreamState.CANCELLED, StreamState.COMPLETED, StreamState.FAILED)


class StreamHandle:
    """
    Control endpoint of one running stream.

    The stop signal is a one-shot flag: any ``cancel`` call, whatever its
    reason, means stop, and ``is_set`` never blocks. Shell streams also read
    forwarded input from ``inbox``.

    Attributes:
        id: Process-unique handle number
        category: Category the stream was started under
        label: Human readable target (pod or deployment name)
        reason: Reason given to the first cancel call, None while running
        state: Current StreamState
        outcome: Terminal state reached before TERMINATED (cancelled, completed or failed)
        task: The asyncio task running the stream
    """

    def __init__(self, category: StreamCategory, label: str = ""):
        self.id = next(_handle_ids)
        self.category = category
        self.label = label
        self.reason: Optional[str] = None
        self.state = StreamState.STARTING
        self.outcome: Optional[StreamState] = None
        self.task: Optional[asyncio.Task] = None
        self.inbox: "queue.Queue[str]" = queue.Queue()
        self._stop = threading.Event()
        self._closers: List[Callable[[], None]] = []
        self._released = False

    def __repr__(self):
        return f"<StreamHandle {self.id} {self.category.value}:{self.label} {self.state.value}>"

    def cancel(self, reason: str = "stop") -> None:
        if self.reason is None:
            self.reason = reason
        self._stop.set()

    def is_set(self) -> bool:
        return self._stop.is_set()

    def send(self, text: str) -> None:
        self.inbox.put_nowait(text)

    def drain(self) -> List[str]:
        """Pop every pending inbox message without blocking."""
        pending = []
        while True:
            try:
                pending.append(self.inbox.get_nowait())
            except queue.Empty:
                return pending

    def mark(self, state: StreamState) -> None:
        if self.state is not StreamState.TERMINATED:
            self.state = state

    def add_closer(self, closer: Callable[[], None]) -> None:
        """Register a callable that releases a blocking read of this stream; run by ``release``."""
        self._closers.append(closer)
        if self._released:
            self.release()

    def release(self) -> None:
        self._released = True
        closers, self._closers = self._closers, []
        for closer in closers:
            try:
                closer()
            except Exception as e:
                log_exception(f"[{self.category.value}] stream {self.id} failed to release", e)


Worker = Callable[[StreamHandle], Awaitable[None]]


class TaskRegistry:
    """
    Owns the live streams of every category.

    ``start`` never stops an earlier stream of the same category; every
    started stream is tracked until its task finishes, so ``stop`` reaches all
    of them.
    """

    def __init__(self, lock: Optional[threading.RLock] = None):
        self._lock = lock or threading.RLock()
        self._streams: Dict[StreamCategory, List[StreamHandle]] = {c: [] for c in StreamCategory}

    def start(self, category: StreamCategory, worker: Worker, label: str = "") -> StreamHandle:
        """Spawn ``worker(handle)`` as its own task and track its handle. Must be called from the event loop."""
        handle = StreamHandle(category, label)
        with self._lock:
            self._streams[category].append(handle)
        loop = asyncio.get_event_loop()
        handle.task = loop.create_task(self._run(handle, worker))
        log.info(f"[{category.value}] stream {handle.id} started label='{label}'")
        return handle

    async def _run(self, handle: StreamHandle, worker: Worker) -> None:
        try:
            await worker(handle)
            if handle.state not in _OUTCOMES:
                handle.mark(StreamState.CANCELLED if handle.is_set() else StreamState.COMPLETED)
        except asyncio.CancelledError:
            handle.mark(StreamState.CANCELLED)
            raise
        except Exception as e:
            handle.mark(StreamState.FAILED)
            log_exception(f"[{handle.category.value}] stream {handle.id} crashed", e, logging.ERROR)
        finally:
            handle.outcome = handle.state
            handle.state = StreamState.TERMINATED
            with self._lock:
                streams = self._streams[handle.category]
                if handle in streams:
                    streams.remove(handle)
            log.info(f"[{handle.category.value}] stream {handle.id} terminated outcome={handle.outcome.value}")

    def stop(self, category: StreamCategory, reason: str = "stop") -> int:
        """Signal every live stream of a category; returns how many were signalled."""
        with self._lock:
            handles = list(self._streams[category])
        for handle in handles:
            handle.cancel(reason)
        log.info(f"[{category.value}] stop requested for {len(handles)} stream(s)")
        return len(handles)

    def stop_all_metrics(self) -> int:
        return self.stop(StreamCategory.METRICS)

    def stop_all_logs(self) -> int:
        return self.stop(StreamCategory.LOGS)

    def send_to_shell(self, text: str) -> int:
        """Forward input to every live shell stream; returns how many received it."""
        with self._lock:
            handles = [h for h in self._streams[StreamCategory.SHELL] if not h.is_set()]
        for handle in handles:
            handle.send(text)
        return len(handles)

    def active(self, category: StreamCategory) -> List[StreamHandle]:
        with self._lock:
            return list(self._streams[category])

    async def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop every stream and wait for the tasks.

        Unlike ``stop``, blocked reads are released through the handles'
        closers, so no executor thread outlives the loop. Tasks still running
        after ``timeout`` are cancelled.
        """
        tasks = []
        for category in StreamCategory:
            for handle in self.active(category):
                handle.cancel("shutdown")
                handle.release()
                if handle.task is not None:
                    tasks.append(handle.task)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class AppState:
    """
    The current cluster context and the task registry, guarded by one lock.

    Readers get the context object itself; contexts are immutable, so the
    value a worker captured stays valid after a switch.
    """

    def __init__(self, context: Optional[ClusterContext] = None):
        self._lock = threading.RLock()
        self._context = context or ClusterContext()
        self.registry = TaskRegistry(self._lock)

    @property
    def context(self) -> ClusterContext:
        with self._lock:
            return self._context

    def set_context(self, name: str) -> ClusterContext:
        with self._lock:
            self._context = replace(self._context, name=name)
            log.info(f"[context] switched to '{name}'")
            return self._context
