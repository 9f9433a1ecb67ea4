"""
Request scheduler enforcing the records backend's per-second quota.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from shared.errors import AccessLayerException, QueueFullError, RateLimitError, ValidationError
from shared.logging import get_logger, new_request_id, set_request_context


ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE")


class Lane(str, Enum):
    """Scheduler lanes."""
    USER = "user"                      # user-initiated traffic
    INFRASTRUCTURE = "infrastructure"  # cache bookkeeping and sweeps


@dataclass
class QueuedOperation:
    """A pending HTTP operation owned by the scheduler until resolved."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Optional[Any] = None
    lane: Lane = Lane.USER
    request_id: str = field(default_factory=new_request_id)
    requeues: int = 0
    future: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        self.method = self.method.upper()
        if self.method not in ALLOWED_METHODS:
            raise ValidationError(
                f"Unsupported method {self.method}",
                details={"allowed": list(ALLOWED_METHODS)}
            )
        self.lane = Lane(self.lane)


@dataclass
class RateWindow:
    """Dispatch counter for the current rate window."""
    budget: int
    window_start: float
    count: int = 0

    def remaining(self) -> int:
        return max(0, self.budget - self.count)


Transport = Callable[[QueuedOperation], Awaitable[Any]]
QueueObserver = Callable[[Dict[str, Any]], None]


class RequestScheduler:
    """Single-dispatcher FIFO queue with a fixed per-window request budget.

    Operations are dispatched one at a time. The window counter is charged
    before the network call completes, so slow responses never let a burst
    exceed the budget. A window starts at the first dispatch after the
    previous one elapsed and is reset either by the background timer or
    lazily on the next dispatch attempt.

    A 429 from the transport is never surfaced: the operation goes back to the
    head of its lane and is redispatched after ``cooldown_seconds``.

    Cache traffic runs in the bounded ``INFRASTRUCTURE`` lane. It is served
    after user traffic except for ``infrastructure_reserved_budget``
    dispatches per window, which it may take even while users are waiting.
    """

    def __init__(self,
                 transport: Transport,
                 budget: int = 6,
                 window_seconds: float = 1.0,
                 buffer_seconds: float = 0.05,
                 cooldown_seconds: float = 1.0,
                 infrastructure_reserved_budget: int = 1,
                 max_infrastructure_queue: int = 200,
                 clock: Callable[[], float] = time.monotonic,
                 on_queue_change: Optional[QueueObserver] = None,
                 metrics=None):
        if budget < 1:
            raise ValueError("budget must be at least 1")
        self._transport = transport
        self._clock = clock
        self.window_seconds = window_seconds
        self.buffer_seconds = buffer_seconds
        self.cooldown_seconds = cooldown_seconds
        # Users always keep at least one slot per window
        self.infrastructure_reserved_budget = max(0, min(infrastructure_reserved_budget, budget - 1))
        self.max_infrastructure_queue = max_infrastructure_queue
        self.on_queue_change = on_queue_change
        self.metrics = metrics
        self.logger = get_logger("records.scheduler")

        self.window = RateWindow(budget=budget, window_start=clock())
        self._queues: Dict[Lane, Deque[QueuedOperation]] = {lane: deque() for lane in Lane}
        self._lane_counts: Dict[Lane, int] = {lane: 0 for lane in Lane}
        self._in_flight: Optional[QueuedOperation] = None
        self._worker: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def budget(self) -> int:
        return self.window.budget

    async def submit(self, op: QueuedOperation) -> Any:
        """Queue ``op`` and wait for its result.

        Raises whatever the transport raised for the operation, except
        ``RateLimitError`` which is absorbed by requeueing.
        """
        if self._closed:
            raise AccessLayerException("SCHEDULER_CLOSED", "Request scheduler is closed")

        queue = self._queues[op.lane]
        if op.lane is Lane.INFRASTRUCTURE and len(queue) >= self.max_infrastructure_queue:
            self.logger.warning(
                "Infrastructure lane full, rejecting operation",
                url=op.url,
                limit=self.max_infrastructure_queue
            )
            raise QueueFullError(op.lane.value, self.max_infrastructure_queue)

        op.future = asyncio.get_running_loop().create_future()
        queue.append(op)
        self.logger.debug(
            "Operation queued",
            method=op.method,
            url=op.url,
            lane=op.lane.value,
            queue_length=self.queue_length
        )
        self._ensure_running()
        self._notify()
        return await op.future

    @property
    def queue_length(self) -> int:
        return sum(len(queue) for queue in self._queues.values())

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of queue depth and rate window state."""
        now = self._clock()
        reset_in = self.window.window_start + self.window_seconds - now if self.window.count else 0
        return {
            "queue_length": self.queue_length,
            "user_queue_length": len(self._queues[Lane.USER]),
            "infrastructure_queue_length": len(self._queues[Lane.INFRASTRUCTURE]),
            "count_this_window": self.window.count,
            "budget": self.window.budget,
            "ms_until_window_reset": max(0, int(reset_in * 1000)),
            "in_flight": self._in_flight is not None,
        }

    def force_reset(self):
        """Clear the window counters and start a fresh window now."""
        self._start_window(self._clock())
        self.logger.info("Force reset request counter")
        self._notify()

    async def aclose(self):
        """Stop background tasks and fail anything still queued."""
        self._closed = True
        in_flight = self._in_flight
        for task in (self._worker, self._timer):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._worker = None
        self._timer = None

        pending = [op for queue in self._queues.values() for op in queue]
        if in_flight is not None:
            pending.append(in_flight)
        self._in_flight = None
        for queue in self._queues.values():
            queue.clear()
        for op in pending:
            if op.future is not None and not op.future.done():
                op.future.set_exception(
                    AccessLayerException("SCHEDULER_CLOSED", "Request scheduler closed before dispatch")
                )
        if pending:
            self.logger.warning("Scheduler closed with pending operations", pending=len(pending))
        self._notify()

    def _ensure_running(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._process_queue())
        if self._timer is None or self._timer.done():
            self._timer = asyncio.get_running_loop().create_task(self._reset_timer())

    def _start_window(self, now: float):
        self.window.count = 0
        self.window.window_start = now
        for lane in Lane:
            self._lane_counts[lane] = 0

    def _roll_window(self, now: float) -> bool:
        """Start a new window if the current one has elapsed."""
        if now - self.window.window_start >= self.window_seconds:
            self._start_window(now)
            return True
        return False

    def _next_lane(self) -> Optional[Lane]:
        if not self.window.remaining():
            return None
        user = self._queues[Lane.USER]
        infrastructure = self._queues[Lane.INFRASTRUCTURE]
        if infrastructure and self._lane_counts[Lane.INFRASTRUCTURE] < self.infrastructure_reserved_budget:
            return Lane.INFRASTRUCTURE
        if user:
            return Lane.USER
        if infrastructure:
            return Lane.INFRASTRUCTURE
        return None

    async def _reset_timer(self):
        """Periodic window reset; exits once the scheduler is idle."""
        while True:
            await asyncio.sleep(self.window_seconds)
            if self._roll_window(self._clock()):
                self.logger.debug("Request counter reset")
                self._notify()
            if not self.queue_length and self._in_flight is None and self.window.count == 0:
                return

    async def _process_queue(self):
        while self.queue_length:
            now = self._clock()
            self._roll_window(now)

            lane = self._next_lane()
            if lane is None:
                delay = self.window.window_start + self.window_seconds - now + self.buffer_seconds
                self.logger.debug(
                    "Rate budget exhausted, deferring dispatch",
                    delay=round(delay, 3),
                    queue_length=self.queue_length
                )
                await asyncio.sleep(max(0.0, delay))
                continue

            op = self._queues[lane].popleft()
            if op.future is None or op.future.done():
                # Submitter went away before dispatch
                continue

            if not self.window.count:
                # A window is anchored at its first dispatch
                self.window.window_start = now
            self.window.count += 1
            self._lane_counts[lane] += 1
            self._in_flight = op
            self._notify()
            try:
                await self._dispatch(op)
            finally:
                self._in_flight = None
                self._notify()

    async def _dispatch(self, op: QueuedOperation):
        set_request_context(op.request_id, op.lane.value)
        try:
            result = await self._transport(op)
        except RateLimitError:
            op.requeues += 1
            self.logger.warning(
                "Rate limit hit, requeueing request",
                method=op.method,
                url=op.url,
                requeues=op.requeues,
                cooldown=self.cooldown_seconds
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_requeues_total", lane=op.lane.value)
            await asyncio.sleep(self.cooldown_seconds)
            self._queues[op.lane].appendleft(op)
        except Exception as e:
            self.logger.info(
                "Operation failed",
                method=op.method,
                url=op.url,
                error_type=type(e).__name__,
                error=str(e)
            )
            if not op.future.done():
                op.future.set_exception(e)
        else:
            if not op.future.done():
                op.future.set_result(result)

    def _notify(self):
        stats = self.get_stats()
        if self.metrics:
            self.metrics.set_gauge("scheduler_queue_depth", stats["user_queue_length"], lane=Lane.USER.value)
            self.metrics.set_gauge(
                "scheduler_queue_depth", stats["infrastructure_queue_length"], lane=Lane.INFRASTRUCTURE.value
            )
            self.metrics.set_gauge("scheduler_window_requests", stats["count_this_window"])
        if self.on_queue_change is None:
            return
        try:
            self.on_queue_change(stats)
        except Exception as e:
            self.logger.warning("Queue observer failed", error=str(e))
