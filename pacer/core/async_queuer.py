"""
AsyncQueuer — concurrency-bounded worker pool over a single Queue.

Up to `concurrency` handler coroutines are in flight at once, each in its
own asyncio task on the running loop:

  add_item(a) ─┐
  add_item(b) ─┼─> Queue ──admit──> active {a, b}  (concurrency=2)
  add_item(c) ─┘      c waits        │
                                     a settles ──> counters, callbacks,
                                                   admit c into a's slot

Admission
---------
Admission re-runs on add_item(), on every settlement, on start(), on
set_options() and when a wait timer fires:

    while running and len(active) < concurrency:
        sweep expired items; stop if the queue is empty
        stop (arming a timer) if the last launch was less than `wait` ago
        dequeue the next item, add it to active, launch its task

Items are admitted strictly in queue order. Completion order is a race:
on_success / on_error / on_settled fire in the order tasks actually finish.

Failure isolation
-----------------
A failing handler never reaches add_item(). The item still settles, its
slot is freed and processing continues. With throw_on_error (default: no
on_error callback given) the error is kept and raised from the next
flush(); several errors are raised together as an ExceptionGroup. At most
MAX_COLLECTED_ERRORS are kept between flushes, the oldest are dropped
first. Errors raised by on_success / on_error callbacks inside a task are
kept the same way, and on_settled still fires.

Cancellation
------------
stop() only halts admission. Nothing already running is cancelled. Each
task instead gets an asyncio.Event abort signal, readable from inside the
handler via current_abort_signal(); abort() sets the signal of every active
task and leaves it to the handler to give up cooperatively.
"""

from __future__ import annotations

import asyncio
import collections
import dataclasses
import time
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import Any, TypeVar

from pacer.core.base import BaseQueuer
from pacer.domain.errors import ConfigurationError
from pacer.domain.models import (
    AsyncQueuerOptions,
    AsyncQueuerState,
    QueueItem,
    QueuePosition,
)
from pacer.ports.store import StateStorePort

T = TypeVar("T")

# Handler errors kept for the next flush(); older ones are dropped first.
MAX_COLLECTED_ERRORS = 1000

_abort_signal: ContextVar[asyncio.Event | None] = ContextVar(
    "pacer_abort_signal", default=None
)


def current_abort_signal() -> asyncio.Event | None:
    """
    The abort signal of the task currently being handled.

    Returns None outside a handler invocation. The event is set once
    AsyncQueuer.abort() is called while the task is active.
    """
    return _abort_signal.get()


@dataclasses.dataclass
class _ActiveTask:
    """An admitted item whose handler is in flight."""

    item: QueueItem[Any]
    abort: asyncio.Event = dataclasses.field(default_factory=asyncio.Event)
    task: asyncio.Task[Any] | None = None


class AsyncQueuer(BaseQueuer[T]):
    """
    Asynchronous queue processing up to `concurrency` items at a time.

    Parameters
    ----------
    fn      : async handler, awaited with each value
    store   : snapshot receiver (default: a fresh InMemoryStateStore)
    options : any AsyncQueuerOptions field — concurrency, wait, max_size,
              started, key, add_items_to, get_items_from, get_priority,
              expiration_duration, get_is_expired, initial_items,
              throw_on_error, on_success, on_error, on_settled, on_reject,
              on_expire, on_items_change, on_is_running_change

    Usage
    -----
        async def fetch(url: str) -> bytes: ...

        queuer = AsyncQueuer(fetch, concurrency=4, on_success=store_page)
        for url in urls:
            queuer.add_item(url)
        await queuer.flush()
    """

    options_type = AsyncQueuerOptions
    state_type = AsyncQueuerState

    def __init__(
        self,
        fn: Callable[[T], Awaitable[Any]],
        *,
        store: StateStorePort | None = None,
        **options: Any,
    ) -> None:
        self._fn = fn
        self._active: dict[str, _ActiveTask] = {}
        self._execution_count = 0
        self._success_count = 0
        self._error_count = 0
        self._settled_count = 0
        self._last_result: Any = None
        self._manual = 0
        self._errors = self._new_error_buffer()
        super().__init__(store=store, **options)

    # ------------------------------------------------------------------ #
    # Read-only views                                                      #
    # ------------------------------------------------------------------ #

    @property
    def concurrency(self) -> int:
        """Current concurrency bound (callables are evaluated now)."""
        concurrency = self._options.concurrency
        if callable(concurrency):
            concurrency = concurrency(self)
        if not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigurationError(
                f"concurrency must be an int >= 1, got {concurrency!r}",
                option="concurrency",
            )
        return concurrency

    @property
    def throw_on_error(self) -> bool:
        if self._options.throw_on_error is not None:
            return self._options.throw_on_error
        return self._options.on_error is None

    @property
    def is_idle(self) -> bool:
        return not self.is_executing and self._queue.is_empty

    @property
    def is_executing(self) -> bool:
        return bool(self._active) or self._manual > 0

    @property
    def execution_count(self) -> int:
        return self._execution_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def settled_count(self) -> int:
        return self._settled_count

    @property
    def last_result(self) -> Any:
        return self._last_result

    def peek_active_items(self) -> tuple[T, ...]:
        """Values whose handler is currently in flight, in admission order."""
        return tuple(active.item.value for active in self._active.values())

    def peek_all_items(self) -> tuple[T, ...]:
        return self.peek_active_items() + self.peek_pending_items()

    # ------------------------------------------------------------------ #
    # Manual draining                                                      #
    # ------------------------------------------------------------------ #

    async def execute(self, position: QueuePosition | None = None) -> Any:
        """
        Take the next value and await the handler on it now.

        Ignores the running flag and `wait`. The call runs on the caller's
        task, outside the concurrency slots: it never appears in
        active_items and abort() does not reach it. Returns the handler's
        result (None when the queue was empty). A handler error is re-raised
        when throw_on_error is set.
        """
        item = self._queue.dequeue(position)
        if item is None:
            self._changed()
            return None
        self._items_dirty = True
        self._manual += 1
        self._changed()
        try:
            failed, outcome = await self._run(
                _ActiveTask(item=item, task=asyncio.current_task()),
                collect_errors=False,
            )
        finally:
            self._manual -= 1
            self._changed()
        if failed:
            if self.throw_on_error:
                raise outcome
            return None
        return outcome

    async def flush(self) -> None:
        """
        Process every pending item now and wait until nothing is active.

        Ignores the running flag and `wait`, but never exceeds `concurrency`.
        Afterwards raises any handler errors collected under throw_on_error:
        the error itself when there is one, an ExceptionGroup otherwise.
        Only the newest MAX_COLLECTED_ERRORS are kept between flushes.
        """
        self._cancel_timer()
        current = asyncio.current_task()
        while True:
            self._tick(force=True)
            pending = {
                active.task
                for active in self._active.values()
                if active.task is not None and active.task is not current
            }
            if not pending:
                break
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

        errors, self._errors = list(self._errors), self._new_error_buffer()
        if self._running:
            self._tick()
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise ExceptionGroup(f"{len(errors)} queued tasks failed", errors)

    def abort(self) -> int:
        """Signal every active task to give up. Returns how many were signalled."""
        for active in self._active.values():
            active.abort.set()
        self._log.info("tasks_aborted", count=len(self._active))
        return len(self._active)

    # ------------------------------------------------------------------ #
    # Admission & settlement                                               #
    # ------------------------------------------------------------------ #

    def _tick(self, force: bool = False) -> None:
        if self._ticking:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Admission needs a loop; the next trigger inside one picks up.
            self._log.debug("admission_deferred", size=self._queue.size)
            self._changed()
            return

        self._ticking = True
        try:
            while (force or self._running) and len(self._active) < self.concurrency:
                self._queue.sweep_expired()
                if self._queue.is_empty:
                    break
                if not force:
                    if self._timer is not None:
                        break
                    delay = self._remaining_wait()
                    if delay > 0:
                        self._arm_timer(delay)
                        break
                item = self._queue.dequeue()
                if item is None:
                    break
                self._launch(item)
        finally:
            self._ticking = False
            self._changed()

    def _admit(self, item: QueueItem[T]) -> _ActiveTask:
        active = _ActiveTask(item=item)
        self._active[item.id] = active
        self._items_dirty = True
        self._last_started_at = time.monotonic()
        self._log.debug("task_admitted", item_id=item.id, active=len(self._active))
        self._changed()
        return active

    def _launch(self, item: QueueItem[T]) -> None:
        active = self._admit(item)
        active.task = asyncio.create_task(
            self._run(active, collect_errors=True), name=f"pacer-task-{item.id}"
        )

    async def _run(
        self, active: _ActiveTask, *, collect_errors: bool
    ) -> tuple[bool, Any]:
        """
        Await the handler, settle the item, then refill the freed slot.

        A CancelledError from the handler settles the item as an error and is
        re-raised once the slot has been refilled. Callback errors on a
        launched task are kept for flush(); on execute() they propagate.
        """
        value = active.item.value
        cancelled: asyncio.CancelledError | None = None
        token = _abort_signal.set(active.abort)
        try:
            result = await self._fn(value)
        except asyncio.CancelledError as exc:
            cancelled = exc
            failed, outcome = True, exc
        except Exception as exc:
            failed, outcome = True, exc
        else:
            failed, outcome = False, result
        finally:
            _abort_signal.reset(token)
            self._active.pop(active.item.id, None)
            self._items_dirty = True

        try:
            if failed:
                self._settle_error(
                    outcome, value, collect_errors and cancelled is None
                )
            else:
                self._settle_success(outcome, value)
        except Exception as exc:
            if not collect_errors:
                raise
            self._log.error("callback_failed", error=repr(exc))
            self._collect(exc)
        finally:
            self._tick()

        if cancelled is not None:
            raise cancelled
        return failed, outcome

    def _settle_success(self, result: Any, value: T) -> None:
        self._execution_count += 1
        self._success_count += 1
        self._settled_count += 1
        self._last_result = result
        self._changed()
        try:
            self._fire("on_success", result, value, self)
        finally:
            self._fire("on_settled", result, value, self)

    def _settle_error(self, error: BaseException, value: T, collect: bool) -> None:
        self._execution_count += 1
        self._error_count += 1
        self._settled_count += 1
        self._log.warning(
            "task_failed", error=repr(error), error_count=self._error_count
        )
        if collect and self.throw_on_error:
            self._collect(error)
        self._changed()
        try:
            self._fire("on_error", error, value, self)
        finally:
            self._fire("on_settled", error, value, self)

    def _new_error_buffer(self) -> collections.deque[Exception]:
        return collections.deque(maxlen=MAX_COLLECTED_ERRORS)

    def _collect(self, error: Exception) -> None:
        if len(self._errors) == self._errors.maxlen:
            self._log.warning("error_dropped", kept=self._errors.maxlen)
        self._errors.append(error)

    def _reset_counters(self) -> None:
        self._execution_count = 0
        self._success_count = 0
        self._error_count = 0
        self._settled_count = 0
        self._last_result = None
        self._errors = self._new_error_buffer()

    def _state_fields(self) -> dict[str, Any]:
        fields = super()._state_fields()
        active = self.peek_active_items()
        pending = fields["items"]
        fields.update(
            items=active + pending,
            active_items=active,
            pending_items=pending,
            execution_count=self._execution_count,
            success_count=self._success_count,
            error_count=self._error_count,
            settled_count=self._settled_count,
            is_executing=self.is_executing,
            last_result=self._last_result,
        )
        return fields


def async_queued(fn: Callable[[T], Awaitable[Any]], **options: Any) -> Callable[..., bool]:
    """
    Build a started AsyncQueuer around `fn` and return its add_item.

        enqueue = async_queued(send, concurrency=3, on_error=log_failure)
        enqueue(message)
    """
    return AsyncQueuer(fn, **options).add_item
