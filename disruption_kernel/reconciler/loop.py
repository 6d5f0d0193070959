"""
Controller Loop: delivers reconcile requests to the reconciler.

Triggers arrive at-least-once and may be bursty. The work queue collapses
duplicates and never hands the same key to two workers at once, so each
key is reconciled serially while different keys run concurrently.

After every pass the key is scheduled again:
  success with requeue_after → check again after the fixed re-poll interval
  failure                    → retry after a per-key exponential backoff
  invalid guard identity     → dropped; retrying cannot fix it
"""

import asyncio
import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from disruption_kernel.models.meta import ObjectKey
from disruption_kernel.models.reconciler import ReconcilerConfig
from disruption_kernel.reconciler.disruption import DisruptionGuardReconciler
from disruption_kernel.reconciler.naming import InvalidGuardError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class WorkQueue:
    """
    De-duplicating, delay-capable queue of object keys.

    A key added while it is being processed is held back until done()
    is called for it.
    """

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._queue: Deque[ObjectKey] = deque()
        self._dirty: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._waiting: List[Tuple[float, int, ObjectKey]] = []
        self._waiting_due: Dict[ObjectKey, float] = {}
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: ObjectKey) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: ObjectKey) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: ObjectKey, delay_seconds: float) -> None:
        """
        Add key once delay_seconds have passed. A key has at most one
        waiting entry; the sooner due time wins.
        """
        if delay_seconds <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            due = self._clock() + delay_seconds
            current = self._waiting_due.get(key)
            if current is not None and current <= due:
                return
            self._waiting_due[key] = due
            heapq.heappush(self._waiting, (due, next(self._seq), key))
            self._cond.notify()

    def _promote_due_locked(self) -> Optional[float]:
        """Move due delayed keys onto the queue. Returns seconds until the next one."""
        now = self._clock()
        while self._waiting:
            due, _, key = self._waiting[0]
            if self._waiting_due.get(key) != due:
                # Superseded by a sooner entry for the same key
                heapq.heappop(self._waiting)
                continue
            if due > now:
                return due - now
            heapq.heappop(self._waiting)
            del self._waiting_due[key]
            self._add_locked(key)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[ObjectKey]:
        """
        Next key to process, or None on timeout or shutdown.
        The caller must call done(key) when finished with it.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_due = self._promote_due_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None

                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: ObjectKey) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def is_processing(self, key: ObjectKey) -> bool:
        with self._cond:
            return key in self._processing

    def pending_delayed(self) -> List[Tuple[float, ObjectKey]]:
        """Delayed keys with their due times, soonest first."""
        with self._cond:
            return sorted(
                ((due, key) for key, due in self._waiting_due.items()),
                key=lambda entry: entry[0],
            )

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()


class ExponentialBackoff:
    """Per-key retry delay: base * 2**failures, capped at max."""

    def __init__(self, base_seconds: float = 0.5, max_seconds: float = 300):
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self._failures: Dict[ObjectKey, int] = {}
        self._lock = threading.Lock()

    def when(self, key: ObjectKey) -> float:
        """Delay before the next retry of key. Counts one more failure."""
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        return min(self.base_seconds * (2 ** failures), self.max_seconds)

    def failures(self, key: ObjectKey) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: ObjectKey) -> None:
        with self._lock:
            self._failures.pop(key, None)


class ControllerLoop:
    """
    Drives the disruption guard reconciler from a work queue.

    States:
      IDLE → RUNNING (workers + periodic resync) → IDLE on stop
    """

    def __init__(
        self,
        reconciler: DisruptionGuardReconciler,
        config: Optional[ReconcilerConfig] = None,
        queue: Optional[WorkQueue] = None,
        list_keys: Optional[Callable[[], Iterable[ObjectKey]]] = None,
    ):
        self.reconciler = reconciler
        self.config = config if config is not None else reconciler.config
        self.queue = queue if queue is not None else WorkQueue()
        self.backoff = ExponentialBackoff(
            base_seconds=self.config.backoff_base_seconds,
            max_seconds=self.config.backoff_max_seconds,
        )
        self._list_keys = list_keys if list_keys is not None else self._list_cluster_keys
        self._running = False
        self._stats_lock = threading.Lock()
        self.stats = {"reconciles": 0, "errors": 0, "dropped": 0}

    @property
    def status(self) -> str:
        """Current loop status."""
        return "running" if self._running else "stopped"

    def _list_cluster_keys(self) -> List[ObjectKey]:
        return [c.key for c in self.reconciler.clusters.list()]

    def _count(self, stat: str) -> None:
        with self._stats_lock:
            self.stats[stat] += 1

    def enqueue(self, key: ObjectKey) -> None:
        """Trigger a reconcile of key. Duplicate triggers collapse."""
        self.queue.add(key)

    def resync(self) -> int:
        """Enqueue every known storage cluster. Returns how many were enqueued."""
        keys = list(self._list_keys())
        for key in keys:
            self.queue.add(key)
        logger.debug("resync enqueued %d clusters", len(keys))
        return len(keys)

    def process_next_item(self, timeout: Optional[float] = 0) -> bool:
        """
        Reconcile one queued key. Returns False if no key was available.
        """
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False

        try:
            self._count("reconciles")
            result = self.reconciler.reconcile(key)
        except InvalidGuardError as e:
            self._count("dropped")
            self.backoff.forget(key)
            logger.error("dropping %s: %s", key, e)
        except Exception as e:
            self._count("errors")
            delay = self.backoff.when(key)
            logger.warning(
                "reconcile of %s failed (attempt %d), retrying in %.1fs: %s",
                key, self.backoff.failures(key), delay, e,
            )
            self.queue.add_after(key, delay)
        else:
            self.backoff.forget(key)
            if result.requeue_after is not None:
                self.queue.add_after(key, result.requeue_after.total_seconds())
            elif result.requeue:
                self.queue.add_after(key, self.backoff.when(key))
        finally:
            self.queue.done(key)
        return True

    async def _worker(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set() and not self.queue.shutting_down:
            await asyncio.to_thread(self.process_next_item, 0.5)

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run workers and the periodic resync until stop_event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        workers = [
            asyncio.create_task(self._worker(stop_event))
            for _ in range(self.config.max_concurrent_reconciles)
        ]
        logger.info(
            "controller started with %d workers", self.config.max_concurrent_reconciles
        )
        try:
            while not stop_event.is_set():
                self.resync()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.resync_period_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self.queue.shutdown()
            stop_event.set()
            await asyncio.gather(*workers, return_exceptions=True)
            self._running = False
            logger.info("controller stopped")
